"""
Sync routes — trigger, watch and stop the financial events sync.

POST   /sync/financial-events?days=N   run and return the summary (409 if any process is syncing)
GET    /sync/financial-events          live status of the current or last run
DELETE /sync/financial-events          cooperative cancellation, also of a worker's run
GET    /sync/logs                      recent SyncLog rows
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from feesync.container import get_financial_sync_service, get_sync_log_store
from feesync.core.constants import MAX_SYNC_DAYS
from feesync.core.exceptions import (
    AuthError,
    CredentialsNotConfiguredError,
    FeeSyncException,
    FinancesAPIError,
    PersistenceError,
    RateLimitError,
    SyncAlreadyRunningError,
    TokenExpiredError,
    ValidationError,
)
from feesync.db.sync_log_store import SyncLogStore
from feesync.schemas.sync import (
    CancelResponse,
    SyncLogItem,
    SyncLogListResponse,
    SyncRunStatus,
    SyncSummary,
)
from feesync.services.financial_sync_service import FinancialSyncService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/financial-events", response_model=SyncSummary)
async def start_financial_events_sync(
    days: int = Query(30, ge=1, le=MAX_SYNC_DAYS, description="Trailing days to sync"),
    service: FinancialSyncService = Depends(get_financial_sync_service),
):
    """Run a financial events sync for the trailing N days."""
    if service.is_running:
        raise HTTPException(status_code=409, detail="Financial events sync is already running")

    try:
        return await service.run(days)

    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (CredentialsNotConfiguredError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (AuthError, FinancesAPIError, RateLimitError, TokenExpiredError) as e:
        raise HTTPException(status_code=502, detail=str(e))
    except FeeSyncException as e:
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Error running financial events sync: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/financial-events", response_model=SyncRunStatus)
async def get_financial_events_status(
    service: FinancialSyncService = Depends(get_financial_sync_service),
):
    """Current sync status."""
    return service.status()


@router.delete("/financial-events", response_model=CancelResponse)
async def cancel_financial_events_sync(
    service: FinancialSyncService = Depends(get_financial_sync_service),
):
    """Ask the running sync to stop at its next page or batch boundary."""
    if service.request_cancel():
        return CancelResponse(success=True, message="Cancellation requested")
    return CancelResponse(success=False, message="No sync is running")


@router.get("/logs", response_model=SyncLogListResponse)
async def get_sync_logs(
    limit: int = Query(50, ge=1, le=200),
    type: Optional[str] = Query(None, description="Filter by sync type"),
    store: SyncLogStore = Depends(get_sync_log_store),
):
    """Recent sync logs, newest first."""
    try:
        rows = await store.list_recent(limit=limit, sync_type=type)
    except PersistenceError as e:
        logger.error(f"Error getting sync logs: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    logs = [
        SyncLogItem(
            id=str(row["id"]),
            sync_type=row["sync_type"],
            status=row["status"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            duration_seconds=row.get("duration_seconds"),
            records_processed=row.get("records_processed") or 0,
            records_updated=row.get("records_updated") or 0,
            error_message=row.get("error_message"),
            metadata=row.get("metadata") or {},
        )
        for row in rows
    ]
    return SyncLogListResponse(logs=logs, total=len(logs))
