"""
Flush service — durable write of accumulated fee and refund sums.

Keys are written in fixed-size groups; members of a group run concurrently
and the next group starts when the previous one has finished. A failed key is
logged and counted, never retried. Both accumulators are cleared once every
group has been attempted, so flushing again without new absorbs is a no-op.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Sequence, Tuple, TypeVar

from feesync.core.exceptions import PersistenceError
from feesync.db.order_store import OrderStore
from feesync.utils.event_aggregator import (
    AggregateKey,
    FeeAccumulator,
    FeeAggregate,
    RefundAccumulator,
    RefundAggregate,
)

logger = logging.getLogger("flush_service")

T = TypeVar("T")

UPDATED = "updated"
NOT_FOUND = "not_found"
FAILED = "failed"


@dataclass
class FlushResult:
    fees_updated: int = 0
    fees_not_found: int = 0
    refunds_updated: int = 0
    refunds_not_found: int = 0
    errors: int = 0
    # Per-key outcome (UPDATED, NOT_FOUND or FAILED) of this flush
    fee_outcomes: Dict[AggregateKey, str] = field(default_factory=dict)
    refund_outcomes: Dict[AggregateKey, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (
            self.fees_updated or self.fees_not_found
            or self.refunds_updated or self.refunds_not_found or self.errors
        )


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    """Split items into consecutive groups of at most size."""
    return [items[i:i + size] for i in range(0, len(items), size)]


class FlushService:
    def __init__(self, order_store: OrderStore, chunk_size: int = 50) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self._store = order_store
        self._chunk_size = chunk_size

    async def _apply(self, key: AggregateKey, write: Callable[[], Awaitable[int]]) -> str:
        try:
            rows = await write()
        except PersistenceError as e:
            logger.error(f"Flush failed for {key}: {e}")
            return FAILED
        return UPDATED if rows > 0 else NOT_FOUND

    async def _flush_fee(self, key: AggregateKey, fees: FeeAggregate) -> str:
        return await self._apply(key, lambda: self._store.update_item_fees(key, fees))

    async def _flush_refund(self, key: AggregateKey, refund: RefundAggregate) -> str:
        return await self._apply(key, lambda: self._store.set_refund_if_unset(key, refund.amount))

    async def _run_groups(self, entries: List[Tuple], flush_one) -> List[str]:
        outcomes: List[str] = []
        for group in chunked(entries, self._chunk_size):
            outcomes.extend(await asyncio.gather(*(flush_one(key, agg) for key, agg in group)))
        return outcomes

    async def flush(self, fee_acc: FeeAccumulator, refund_acc: RefundAccumulator) -> FlushResult:
        """Persist and clear both accumulators."""
        result = FlushResult()
        if not fee_acc and not refund_acc:
            return result

        fee_entries = list(fee_acc.items())
        refund_entries = list(refund_acc.items())

        fee_results = await self._run_groups(fee_entries, self._flush_fee)
        result.fee_outcomes = {key: outcome for (key, _), outcome in zip(fee_entries, fee_results)}
        for outcome in fee_results:
            if outcome == UPDATED:
                result.fees_updated += 1
            elif outcome == NOT_FOUND:
                result.fees_not_found += 1
            else:
                result.errors += 1

        refund_results = await self._run_groups(refund_entries, self._flush_refund)
        result.refund_outcomes = {key: outcome for (key, _), outcome in zip(refund_entries, refund_results)}
        for outcome in refund_results:
            if outcome == UPDATED:
                result.refunds_updated += 1
            elif outcome == NOT_FOUND:
                result.refunds_not_found += 1
            else:
                result.errors += 1

        fee_acc.clear()
        refund_acc.clear()

        logger.info(
            f"Flushed {len(fee_entries)} fee keys ({result.fees_updated} updated, "
            f"{result.fees_not_found} not found) and {len(refund_entries)} refund keys "
            f"({result.refunds_updated} updated, {result.refunds_not_found} not found), "
            f"{result.errors} errors"
        )
        return result
