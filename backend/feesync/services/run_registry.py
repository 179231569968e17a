"""
Run registry — the single-flight slot and the live state of a sync run.

The SyncRun object is created when a run claims the slot and is then passed
by reference through that run; the registry only hands it out, accepts
cancellation requests and releases the slot. A claim while another run is
active is rejected, never queued.
"""
import logging
import os
import socket
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

import redis

from feesync.core.config import settings
from feesync.core.exceptions import SyncAlreadyRunningError
from feesync.schemas.sync import IncompleteBatch, SyncCountsModel, SyncRunStatus
from feesync.utils.run_lock import (
    acquire_run_lock,
    current_run_holder,
    release_run_lock,
    request_run_cancel,
    run_cancel_requested,
)

logger = logging.getLogger("run_registry")


class RunPhase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    FETCHING = "fetching"
    FLUSHING = "flushing"
    BACKOFF = "backoff"
    WAITING = "waiting"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"
    REMOTE = "remote"


@dataclass
class SyncCounts:
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

    @property
    def records_processed(self) -> int:
        return self.fees_processed + self.refunds_processed

    @property
    def records_updated(self) -> int:
        return self.fees_updated + self.refunds_updated


@dataclass
class SyncRun:
    total_days: int
    holder: Optional[str] = None
    is_running: bool = True
    phase: RunPhase = RunPhase.STARTING
    current_batch: int = 0
    total_batches: int = 0
    pages_processed: int = 0
    counts: SyncCounts = field(default_factory=SyncCounts)
    incomplete_batches: List[IncompleteBatch] = field(default_factory=list)
    cancel_requested: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    message: str = "Starting..."
    error: Optional[str] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return round((end - self.start_time).total_seconds(), 1)

    def to_status(self) -> SyncRunStatus:
        return SyncRunStatus(
            is_running=self.is_running,
            phase=self.phase.value,
            current_batch=self.current_batch,
            total_batches=self.total_batches,
            total_days=self.total_days,
            pages_processed=self.pages_processed,
            counts=SyncCountsModel(**vars(self.counts)),
            incomplete_batches=list(self.incomplete_batches),
            cancel_requested=self.cancel_requested,
            start_time=self.start_time,
            finished_at=self.finished_at,
            elapsed_seconds=self.elapsed_seconds,
            message=self.message,
            error=self.error,
        )


class SyncRunRegistry:
    """Single-flight guard for financial event sync runs.

    The in-memory slot covers this process. With use_run_lock the slot is
    also taken in Redis, so a run started by the API and one started by a
    Celery worker exclude each other, and status and cancel requests reach
    a run owned by another process.
    """

    def __init__(self, use_run_lock: bool = False) -> None:
        self._lock = threading.Lock()
        self._current: Optional[SyncRun] = None
        self._use_run_lock = use_run_lock

    @property
    def is_running(self) -> bool:
        with self._lock:
            if self._current is not None and self._current.is_running:
                return True
        return self._use_run_lock and current_run_holder() is not None

    def claim(self, total_days: int, holder: Optional[str] = None) -> SyncRun:
        """Create and register a new run, or raise if one is active."""
        holder = holder or _process_holder()
        with self._lock:
            if self._current is not None and self._current.is_running:
                raise SyncAlreadyRunningError("Financial events sync is already running")
            if self._use_run_lock and not acquire_run_lock(holder):
                raise SyncAlreadyRunningError("Financial events sync is already running in another process")
            run = SyncRun(total_days=total_days, holder=holder)
            self._current = run
        logger.info(f"Sync run claimed: {total_days} days, holder={holder}")
        return run

    def release(self, run: SyncRun) -> None:
        """Mark the run finished; it stays visible as the last run."""
        with self._lock:
            run.is_running = False
            if run.finished_at is None:
                run.finished_at = datetime.now(timezone.utc)
        if self._use_run_lock:
            try:
                release_run_lock(run.holder)
            except redis.RedisError as e:
                # The TTL frees the slot
                logger.error(f"Could not release run lock for {run.holder}: {e}")

    def cancel_requested(self, run: SyncRun) -> bool:
        """True once the run should stop, including on a request from another process."""
        if run.cancel_requested or not self._use_run_lock:
            return run.cancel_requested
        try:
            flagged = run_cancel_requested()
        except redis.RedisError as e:
            logger.warning(f"Could not read run cancel flag: {e}")
            return False
        if flagged:
            with self._lock:
                run.cancel_requested = True
                run.message = "Cancellation requested"
            logger.info("Sync cancellation requested by another process")
        return run.cancel_requested

    def request_cancel(self) -> bool:
        """Ask the active run to stop at its next page or batch boundary."""
        with self._lock:
            run = self._current
            if run is not None and run.is_running:
                run.cancel_requested = True
                run.message = "Cancellation requested"
                logger.info("Sync cancellation requested")
                return True
        return self._use_run_lock and request_run_cancel()

    def status(self) -> SyncRunStatus:
        with self._lock:
            run = self._current
            if run is not None and run.is_running:
                return run.to_status()
        holder = current_run_holder() if self._use_run_lock else None
        if holder is not None:
            return SyncRunStatus(
                is_running=True,
                phase=RunPhase.REMOTE.value,
                message=f"Sync running in another process ({holder})",
            )
        if run is None:
            return SyncRunStatus(is_running=False, phase=RunPhase.IDLE.value, message="No sync has run yet")
        return run.to_status()


def _process_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


_registry: Optional[SyncRunRegistry] = None


def get_run_registry() -> SyncRunRegistry:
    """Get or create the process-wide registry."""
    global _registry
    if _registry is None:
        _registry = SyncRunRegistry(use_run_lock=settings.finances_run_lock_enabled)
    return _registry


def reset_run_registry() -> None:
    """Reset the singleton instance (for testing)."""
    global _registry
    _registry = None
