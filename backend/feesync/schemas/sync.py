"""
Sync schemas — run status, run summary and SyncLog models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SyncCountsModel(BaseModel):
    fees_processed: int = 0
    fees_updated: int = 0
    fees_not_found: int = 0
    refunds_processed: int = 0
    refunds_updated: int = 0
    refunds_not_found: int = 0
    events_skipped: int = 0
    persistence_errors: int = 0
    batches_completed: int = 0
    batches_incomplete: int = 0
    rate_limit_restarts: int = 0
    token_refreshes: int = 0


class IncompleteBatch(BaseModel):
    """A batch whose date range was not fully walked."""
    index: int
    start_date: datetime
    end_date: datetime
    reason: str  # 'token_expired', 'cancelled', 'error'
    pages_fetched: int = 0


class SyncRunStatus(BaseModel):
    """Live status of the current (or last) run."""
    is_running: bool
    phase: str
    current_batch: int = 0
    total_batches: int = 0
    total_days: int = 0
    pages_processed: int = 0
    counts: SyncCountsModel = Field(default_factory=SyncCountsModel)
    incomplete_batches: List[IncompleteBatch] = Field(default_factory=list)
    cancel_requested: bool = False
    start_time: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    elapsed_seconds: Optional[float] = None
    message: str = ""
    error: Optional[str] = None


class SyncSummary(BaseModel):
    """Returned when a run ends without a fatal error."""
    success: bool
    status: str  # 'success' or 'cancelled'
    total_days: int
    batches_planned: int
    pages_processed: int
    fees_processed: int
    fees_updated: int
    refunds_processed: int
    refunds_updated: int
    counts: SyncCountsModel
    incomplete_batches: List[IncompleteBatch] = Field(default_factory=list)
    elapsed_seconds: float


class CancelResponse(BaseModel):
    success: bool
    message: str


class SyncLogEntry(BaseModel):
    """One audit row per run, written regardless of outcome."""
    sync_type: str
    status: str  # 'success', 'failed', 'cancelled'
    started_at: datetime
    completed_at: datetime
    records_processed: int = 0
    records_updated: int = 0
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SyncLogItem(BaseModel):
    id: str
    sync_type: str
    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_seconds: Optional[int] = None
    records_processed: int = 0
    records_updated: int = 0
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SyncLogListResponse(BaseModel):
    logs: List[SyncLogItem]
    total: int
