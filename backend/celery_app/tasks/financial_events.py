"""
Scheduled financial events sync.

Beat enqueues this every FINANCES_SYNC_CRON_HOURS hours. The run claims the
same Redis-backed slot as an API-triggered run; a run that finds it taken is
skipped, not queued, since the next tick covers the same trailing window.
"""
import logging
from typing import Optional

from celery_app.celery_config import SYNC_TASK_NAME, celery_app
from celery_app.tasks.base import BaseTask, run_async
from feesync.container import get_financial_sync_service
from feesync.core.config import settings
from feesync.core.exceptions import SyncAlreadyRunningError

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=BaseTask,
    name=SYNC_TASK_NAME,
    max_retries=0,  # the next scheduled run is the retry
)
def sync_financial_events(self, days: Optional[int] = None):
    """
    Run one financial events sync over the trailing `days` days.

    Returns:
        dict: The run summary, or a skipped marker when another run is active
    """
    days = days or settings.finances_sync_scheduled_days
    holder = f"celery:{self.request.id or 'unknown'}"

    logger.info(f"=== Scheduled financial events sync: {days} days ===")

    try:
        summary = run_async(get_financial_sync_service().run(days, holder=holder))
    except SyncAlreadyRunningError as e:
        logger.info(f"Skipping scheduled sync: {e}")
        return {"status": "skipped", "reason": str(e)}

    return summary.model_dump(mode="json")
