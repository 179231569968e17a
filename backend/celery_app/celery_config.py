"""
Celery application configuration.
Configures the Redis broker, the finances queue and the Beat schedule.

Note: On Windows, Celery's prefork pool doesn't work properly.
Use --pool=solo or --pool=threads on Windows.

=============================================================================
RUNNING
=============================================================================
    Worker (one at a time; runs must not overlap):
        celery -A celery_app worker --pool=solo -Q finances --concurrency=1 -l info -n finances@%h

    Beat (scheduler):
        celery -A celery_app beat -l info

=============================================================================
ENVIRONMENT VARIABLES
=============================================================================
    FINANCES_SYNC_ENABLED: Schedule the periodic sync (default: true)
    FINANCES_SYNC_CRON_HOURS: Hours between scheduled runs (default: 2)
    FINANCES_SYNC_SCHEDULED_DAYS: Trailing days per scheduled run (default: 14)
"""
import logging
import platform

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from feesync.core.config import settings

logger = logging.getLogger(__name__)

IS_WINDOWS = platform.system() == "Windows"

FINANCES_QUEUE = "finances"
SYNC_TASK_NAME = "celery_app.tasks.financial_events.sync_financial_events"


def build_beat_schedule() -> dict:
    """Beat entries for the periodic financial events sync."""
    if not settings.finances_sync_enabled:
        logger.info("Scheduled financial events sync disabled (FINANCES_SYNC_ENABLED=false)")
        return {}

    return {
        "sync-financial-events": {
            "task": SYNC_TASK_NAME,
            "schedule": crontab(minute=0, hour=f"*/{settings.finances_sync_cron_hours}"),
            "kwargs": {"days": settings.finances_sync_scheduled_days},
            "options": {"queue": FINANCES_QUEUE},
        },
    }


celery_app = Celery(
    "marketplace_fee_sync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["celery_app.tasks.financial_events"],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    task_queues=(Queue(FINANCES_QUEUE),),
    task_default_queue=FINANCES_QUEUE,
    task_routes={"celery_app.tasks.financial_events.*": {"queue": FINANCES_QUEUE}},

    beat_schedule=build_beat_schedule(),

    # Result expiration
    result_expires=86400,  # 1 day

    worker_pool="solo" if IS_WINDOWS else "prefork",

    # A full run can take hours; keep the broker from redelivering it meanwhile
    broker_transport_options={"visibility_timeout": settings.finances_run_lock_ttl_seconds},

    worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
    worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s] [%(task_name)s] %(message)s",
)
