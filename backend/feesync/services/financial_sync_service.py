"""
Financial events sync — the run controller.

Walks the Finances API batch by batch (oldest first), page by page within a
batch, folding every page into in-memory accumulators and flushing them to
the order store whenever a batch ends or a fault interrupts it. What a page
outcome leads to is decided by services.recovery.classify; this module only
carries the plan out.

Cancellation is cooperative: it is checked before every page fetch and
before every batch, so an in-flight request always completes first.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional

from feesync.clients.finances_client import FinancesClient
from feesync.clients.lwa_client import AmazonCredentials, LwaTokenManager, Token
from feesync.core.config import Settings
from feesync.core.constants import (
    SYNC_LOG_CANCELLED,
    SYNC_LOG_FAILED,
    SYNC_LOG_SUCCESS,
    SYNC_TYPE_FINANCIAL_EVENTS,
)
from feesync.core.exceptions import (
    CredentialsNotConfiguredError,
    FeeSyncException,
    FinancesAPIError,
    RateLimitError,
    TokenExpiredError,
)
from feesync.db.credentials_store import CredentialsStore
from feesync.db.sync_log_store import SyncLogStore
from feesync.schemas.finances import PageRateLimited
from feesync.schemas.sync import IncompleteBatch, SyncCountsModel, SyncLogEntry, SyncRunStatus, SyncSummary
from feesync.services.flush_service import FAILED, NOT_FOUND, UPDATED, FlushService
from feesync.services.recovery import RecoveryAction, classify
from feesync.services.run_registry import RunPhase, SyncRun, SyncRunRegistry
from feesync.utils.batch_planner import Batch, plan_batches
from feesync.utils.event_aggregator import AbsorbStats, AggregateKey, FeeAccumulator, RefundAccumulator, absorb

logger = logging.getLogger("financial_sync")

_OUTCOME_RANK = {FAILED: 0, NOT_FOUND: 1, UPDATED: 2}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _RunContext:
    run: SyncRun
    credentials: AmazonCredentials
    token: Optional[Token] = None
    fee_acc: FeeAccumulator = field(default_factory=dict)
    refund_acc: RefundAccumulator = field(default_factory=dict)
    # Best flush outcome per key within the current batch
    fee_outcomes: Dict[AggregateKey, str] = field(default_factory=dict)
    refund_outcomes: Dict[AggregateKey, str] = field(default_factory=dict)


class FinancialSyncService:
    def __init__(
        self,
        token_manager: LwaTokenManager,
        finances_client: FinancesClient,
        flush_service: FlushService,
        credentials_store: CredentialsStore,
        sync_log_store: SyncLogStore,
        registry: SyncRunRegistry,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._tokens = token_manager
        self._finances = finances_client
        self._flusher = flush_service
        self._credentials = credentials_store
        self._sync_logs = sync_log_store
        self._registry = registry
        self._sleep = sleep
        self._clock = clock

        self._batch_days = settings.finances_batch_days
        self._page_delay = settings.finances_page_delay_seconds
        self._batch_delay = settings.finances_batch_delay_seconds
        self._backoff = settings.finances_rate_limit_backoff_seconds
        self._safety_skew = timedelta(minutes=settings.finances_safety_skew_minutes)
        self._max_restarts = settings.finances_max_rate_limit_restarts
        self._token_expired_policy = settings.finances_token_expired_policy

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def status(self) -> SyncRunStatus:
        return self._registry.status()

    def request_cancel(self) -> bool:
        return self._registry.request_cancel()

    @property
    def is_running(self) -> bool:
        return self._registry.is_running

    async def run(self, total_days: int, holder: Optional[str] = None) -> SyncSummary:
        """Run one sync over the trailing total_days.

        Raises SyncAlreadyRunningError without touching the active run's
        state, whether that run lives in this process or another one.
        Every other outcome writes exactly one SyncLog row.
        """
        run = self._registry.claim(total_days, holder)
        run.start_time = self._clock()
        log_status = SYNC_LOG_FAILED
        try:
            summary = await self._execute(run)
            log_status = SYNC_LOG_CANCELLED if run.phase == RunPhase.CANCELLED else SYNC_LOG_SUCCESS
            return summary
        except FeeSyncException as e:
            run.phase = RunPhase.ERROR
            run.error = str(e)
            run.message = f"Error: {e}"
            logger.error(f"Financial events sync failed: {e}")
            raise
        finally:
            if run.phase not in (RunPhase.COMPLETE, RunPhase.CANCELLED, RunPhase.ERROR):
                run.phase = RunPhase.ERROR
                run.error = run.error or "Sync aborted unexpectedly"
                run.message = f"Error: {run.error}"
            run.finished_at = self._clock()
            try:
                await self._write_sync_log(run, log_status)
            finally:
                self._registry.release(run)

    # ------------------------------------------------------------------
    # Run level
    # ------------------------------------------------------------------

    async def _execute(self, run: SyncRun) -> SyncSummary:
        credentials = await self._credentials.get_amazon_credentials()
        if credentials is None:
            raise CredentialsNotConfiguredError("No Amazon credentials configured")

        ctx = _RunContext(run=run, credentials=credentials)
        ctx.token = await self._tokens.obtain(credentials)

        batches = plan_batches(
            run.total_days, self._batch_days, now=self._clock(), safety_skew=self._safety_skew,
        )
        run.total_batches = len(batches)

        logger.info("=" * 60)
        logger.info("FINANCIAL EVENTS SYNC")
        logger.info(f"   {run.total_days} days in {len(batches)} batches of {self._batch_days} days")
        logger.info("=" * 60)

        for batch in batches:
            if self._registry.cancel_requested(run):
                break

            run.current_batch = batch.index
            logger.info(f"Batch {batch.index}/{run.total_batches}: {batch.label}")
            await self._run_batch(ctx, batch)

            if self._registry.cancel_requested(run):
                break
            if batch.index < run.total_batches:
                run.phase = RunPhase.WAITING
                run.message = f"Batch {batch.index}/{run.total_batches}: done, waiting {self._batch_delay:g}s"
                await self._sleep(self._batch_delay)

        counts = run.counts
        if run.cancel_requested:
            run.phase = RunPhase.CANCELLED
            run.message = (
                f"Stopped after {counts.batches_completed}/{run.total_batches} batches: "
                f"{counts.fees_updated} fees, {counts.refunds_updated} refunds updated"
            )
        else:
            run.phase = RunPhase.COMPLETE
            run.message = (
                f"Done: {counts.fees_updated} fees, {counts.refunds_updated} refunds updated"
                + (f", {counts.batches_incomplete} batches incomplete" if counts.batches_incomplete else "")
            )

        logger.info("=" * 60)
        logger.info(f"SYNC {run.phase.value.upper()}")
        logger.info(f"   Pages: {run.pages_processed}")
        logger.info(f"   Fee items processed/updated: {counts.fees_processed}/{counts.fees_updated}")
        logger.info(f"   Refunds processed/updated: {counts.refunds_processed}/{counts.refunds_updated}")
        logger.info(f"   Incomplete batches: {counts.batches_incomplete}")
        logger.info("=" * 60)

        return self._summary(run)

    # ------------------------------------------------------------------
    # Batch level
    # ------------------------------------------------------------------

    async def _run_batch(self, ctx: _RunContext, batch: Batch) -> None:
        run = ctx.run
        cursor: Optional[str] = None
        pages = 0
        restarts = 0
        attempt = AbsorbStats()
        ctx.fee_outcomes.clear()
        ctx.refund_outcomes.clear()

        while True:
            if self._registry.cancel_requested(run):
                await self._flush(ctx)
                self._mark_incomplete(run, batch, "cancelled", pages)
                return

            if self._tokens.is_stale(ctx.token, self._clock()):
                logger.info("Access token is stale, refreshing")
                await self._refresh_token(ctx)

            run.phase = RunPhase.FETCHING
            outcome = await self._finances.fetch_page(ctx.token, batch, cursor)
            plan = classify(outcome, self._token_expired_policy)
            logger.debug(
                f"Batch {batch.index}: {type(outcome).__name__} -> {plan.action.value} ({plan.next_state.value})"
            )

            if plan.absorb:
                stats = absorb(outcome.events, ctx.fee_acc, ctx.refund_acc)
                pages += 1
                run.pages_processed += 1
                attempt.fee_items += stats.fee_items
                attempt.refund_items += stats.refund_items
                attempt.skipped += stats.skipped
                run.counts.fees_processed += stats.fee_items
                run.counts.refunds_processed += stats.refund_items
                run.counts.events_skipped += stats.skipped
                run.message = (
                    f"Batch {batch.index}/{run.total_batches}: page {pages}, "
                    f"{len(ctx.fee_acc)} items, {len(ctx.refund_acc)} refunds"
                )

            if plan.flush_first:
                await self._flush(ctx)

            if plan.action == RecoveryAction.NEXT_PAGE:
                cursor = outcome.next_cursor
                await self._sleep(self._page_delay)
                continue

            if plan.action == RecoveryAction.COMPLETE_BATCH:
                run.counts.batches_completed += 1
                logger.info(f"Batch {batch.index} complete after {pages} pages")
                return

            if plan.action == RecoveryAction.RESTART_BATCH:
                restarts += 1
                rate_limited = isinstance(outcome, PageRateLimited)
                # The restarted walk reads these pages again
                run.pages_processed -= pages
                run.counts.fees_processed -= attempt.fee_items
                run.counts.refunds_processed -= attempt.refund_items
                run.counts.events_skipped -= attempt.skipped
                attempt = AbsorbStats()
                if rate_limited:
                    run.counts.rate_limit_restarts += 1
                if restarts > self._max_restarts:
                    self._mark_incomplete(run, batch, "error", pages)
                    if rate_limited:
                        raise RateLimitError("Finances", restarts - 1, int(self._backoff))
                    raise TokenExpiredError(f"Access token kept expiring in batch {batch.index}")

                logger.warning(
                    f"Batch {batch.index}: {'rate limited' if rate_limited else 'token expired'} "
                    f"on page {pages + 1}, restarting batch (restart {restarts})"
                )
                if plan.backoff:
                    run.phase = RunPhase.BACKOFF
                    run.message = f"Batch {batch.index}: rate limited, waiting {self._backoff:g}s"
                    await self._sleep(self._backoff)
                if plan.refresh_token:
                    await self._refresh_token(ctx)
                cursor = None
                pages = 0
                continue

            if plan.action == RecoveryAction.SKIP_TO_NEXT_BATCH:
                logger.warning(
                    f"Batch {batch.index}: token expired after {pages} pages, "
                    f"skipping rest of {batch.label}"
                )
                self._mark_incomplete(run, batch, "token_expired", pages)
                await self._refresh_token(ctx)
                return

            self._mark_incomplete(run, batch, "error", pages)
            raise FinancesAPIError(outcome.message, outcome.status_code)

    async def _refresh_token(self, ctx: _RunContext) -> None:
        ctx.token = await self._tokens.obtain(ctx.credentials)
        ctx.run.counts.token_refreshes += 1

    async def _flush(self, ctx: _RunContext) -> None:
        if not ctx.fee_acc and not ctx.refund_acc:
            return
        run = ctx.run
        previous = run.phase
        run.phase = RunPhase.FLUSHING
        result = await self._flusher.flush(ctx.fee_acc, ctx.refund_acc)
        self._tally(run, ctx.fee_outcomes, result.fee_outcomes, "fees_updated", "fees_not_found")
        self._tally(run, ctx.refund_outcomes, result.refund_outcomes, "refunds_updated", "refunds_not_found")
        run.phase = previous

    @staticmethod
    def _tally(
        run: SyncRun,
        seen: Dict[AggregateKey, str],
        outcomes: Dict[AggregateKey, str],
        updated: str,
        not_found: str,
    ) -> None:
        """Count each key once per batch, under the best outcome it has had.

        A batch restarted after a rate limit writes its keys again; those
        rewrites move a key to a better outcome at most, never add to it.
        """
        counter = {UPDATED: updated, NOT_FOUND: not_found, FAILED: "persistence_errors"}
        counts = run.counts
        for key, outcome in outcomes.items():
            previous = seen.get(key)
            if previous is not None:
                if _OUTCOME_RANK[outcome] <= _OUTCOME_RANK[previous]:
                    continue
                setattr(counts, counter[previous], getattr(counts, counter[previous]) - 1)
            setattr(counts, counter[outcome], getattr(counts, counter[outcome]) + 1)
            seen[key] = outcome

    @staticmethod
    def _mark_incomplete(run: SyncRun, batch: Batch, reason: str, pages: int) -> None:
        run.counts.batches_incomplete += 1
        run.incomplete_batches.append(IncompleteBatch(
            index=batch.index,
            start_date=batch.start_date,
            end_date=batch.end_date,
            reason=reason,
            pages_fetched=pages,
        ))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def _summary(run: SyncRun) -> SyncSummary:
        counts = run.counts
        return SyncSummary(
            success=run.phase == RunPhase.COMPLETE,
            status=SYNC_LOG_CANCELLED if run.phase == RunPhase.CANCELLED else SYNC_LOG_SUCCESS,
            total_days=run.total_days,
            batches_planned=run.total_batches,
            pages_processed=run.pages_processed,
            fees_processed=counts.fees_processed,
            fees_updated=counts.fees_updated,
            refunds_processed=counts.refunds_processed,
            refunds_updated=counts.refunds_updated,
            counts=SyncCountsModel(**vars(counts)),
            incomplete_batches=list(run.incomplete_batches),
            elapsed_seconds=run.elapsed_seconds,
        )

    async def _write_sync_log(self, run: SyncRun, status: str) -> None:
        counts = run.counts
        entry = SyncLogEntry(
            sync_type=SYNC_TYPE_FINANCIAL_EVENTS,
            status=status,
            started_at=run.start_time,
            completed_at=run.finished_at or self._clock(),
            records_processed=counts.records_processed,
            records_updated=counts.records_updated,
            error_message=run.error,
            metadata={
                "days": run.total_days,
                "pages": run.pages_processed,
                "batches_planned": run.total_batches,
                "last_batch": run.current_batch,
                **vars(counts),
                "incomplete_batches": [b.model_dump(mode="json") for b in run.incomplete_batches],
            },
        )
        try:
            await self._sync_logs.append(entry)
        except Exception as e:
            logger.error(f"Could not write SyncLog for {status} run: {e}")
