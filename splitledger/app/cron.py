"""
Daily entry point for recurring actions.

Meant to be invoked once a day by an external scheduler (cron, a k8s CronJob, ...):

    python -m splitledger.app.cron
"""
import logging
from datetime import date
from typing import Optional

from splitledger.app.config import get_settings
from splitledger.app.database import SessionLocal, create_tables
from splitledger.app.main import configure_logging
from splitledger.app.schemas.scheduled_actions import SchedulerRunResult
from splitledger.app.services.scheduled_action_service import run_due_scheduled_actions

logger = logging.getLogger(__name__)


def run_scheduled_pass(today: Optional[date] = None) -> SchedulerRunResult:
    db = SessionLocal()
    try:
        result = run_due_scheduled_actions(db, today)
    finally:
        db.close()

    logger.info(
        "Scheduled pass for %s: %d processed, %d succeeded, %d failed, %d skipped",
        result.run_date, result.total_processed, result.succeeded, result.failed, result.skipped,
    )
    return result


if __name__ == "__main__":
    configure_logging(get_settings().log_level)
    create_tables()
    run_scheduled_pass()
