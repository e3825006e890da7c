import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from splitledger.app.api.v1.router import api_router
from splitledger.app.config import get_settings
from splitledger.app.database import create_tables

logger = logging.getLogger(__name__)

def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(get_settings().log_level)
    create_tables()
    logger.info("Starting up application...")
    yield
    logger.info("Shutting down application...")

app = FastAPI(title="SplitLedger", lifespan=lifespan)

# Include all API routes
app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("splitledger.app.main:app", host="0.0.0.0", port=8000, reload=True)
