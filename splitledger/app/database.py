from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import sessionmaker, Session

from splitledger.app.config import get_settings

DATABASE_URL = get_settings().database_url

# Create SQLAlchemy engine
engine = create_engine(
    DATABASE_URL, connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
)

# Create sessionmaker
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create tables in the database
def create_tables():
    from splitledger.app.models.models import Base
    Base.metadata.create_all(bind=engine)

# Dependency to get the database session
def get_db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def atomic(db: Session):
    """
    Run a block of writes as a single all-or-nothing unit.

    Everything staged on the session inside the block is committed together when the
    block exits normally, and rolled back if it raises.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise

def _insert_for(db: Session, table: Table):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Additive upsert is not supported on dialect '{dialect}'")

def additive_upsert(
    db: Session,
    table: Table,
    key_values: Dict[str, Any],
    column: str,
    delta: float,
    extra_values: Optional[Dict[str, Any]] = None,
):
    """
    Insert a row keyed by the table's primary key, or add ``delta`` to ``column`` if it exists.

    The increment happens inside the database (no read-modify-write), so concurrent upserts
    against the same key commute.
    """
    extra_values = extra_values or {}
    if "updated_at" in table.c and "updated_at" not in extra_values:
        extra_values["updated_at"] = datetime.now(timezone.utc)

    stmt = _insert_for(db, table).values(**key_values, **{column: delta}, **extra_values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[c.name for c in table.primary_key.columns],
        set_={column: table.c[column] + stmt.excluded[column], **{k: stmt.excluded[k] for k in extra_values}},
    )
    db.execute(stmt)
