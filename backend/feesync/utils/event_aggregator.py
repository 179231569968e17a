"""
Event aggregator — fold one page of financial events into per-key sums.

Pure functions, no I/O: ``absorb`` mutates the accumulators it is given and
returns counters, which keeps it testable from JSON fixtures alone.

Fee lines are classified by first-match substring on FeeType:
    "Commission" / "Referral"  -> referral
    "FBA" / "Fulfillment"      -> fulfillment
    any other nonzero amount   -> other
The provider encodes fees as negative charges; absolute values are summed.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, NamedTuple, Optional

from feesync.core.constants import FULFILLMENT_FEE_MARKERS, REFERRAL_FEE_MARKERS
from feesync.schemas.finances import FinancialEvents, ShipmentItem
from feesync.utils.type_converters import ZERO

FEE_REFERRAL = "referral"
FEE_FULFILLMENT = "fulfillment"
FEE_OTHER = "other"


class AggregateKey(NamedTuple):
    order_id: str
    sku: str

    def __str__(self) -> str:
        return f"{self.order_id}|{self.sku}"


@dataclass
class FeeAggregate:
    referral: Decimal = ZERO
    fulfillment: Decimal = ZERO
    other: Decimal = ZERO
    actual_revenue: Decimal = ZERO
    posted_at: Optional[datetime] = None

    @property
    def total_fees(self) -> Decimal:
        return self.referral + self.fulfillment + self.other


@dataclass
class RefundAggregate:
    amount: Decimal = ZERO


FeeAccumulator = Dict[AggregateKey, FeeAggregate]
RefundAccumulator = Dict[AggregateKey, RefundAggregate]


@dataclass
class AbsorbStats:
    fee_items: int = 0
    refund_items: int = 0
    skipped: int = 0


def classify_fee(fee_type: str, amount: Decimal) -> Optional[str]:
    """Return the fee bucket for a fee line, or None when it carries nothing."""
    if any(marker in fee_type for marker in REFERRAL_FEE_MARKERS):
        return FEE_REFERRAL
    if any(marker in fee_type for marker in FULFILLMENT_FEE_MARKERS):
        return FEE_FULFILLMENT
    if amount != ZERO:
        return FEE_OTHER
    return None


def _item_aggregate(item: ShipmentItem, posted_at: Optional[datetime]) -> FeeAggregate:
    agg = FeeAggregate(posted_at=posted_at)
    for fee in item.fees:
        amount = abs(fee.fee_amount.amount)
        bucket = classify_fee(fee.fee_type, amount)
        if bucket == FEE_REFERRAL:
            agg.referral += amount
        elif bucket == FEE_FULFILLMENT:
            agg.fulfillment += amount
        elif bucket == FEE_OTHER:
            agg.other += amount

    # Settled revenue: money collected from the buyer, net of promotions
    for charge in item.charges:
        if charge.charge_amount.amount > ZERO:
            agg.actual_revenue += charge.charge_amount.amount
    for promo in item.promotions:
        agg.actual_revenue -= abs(promo.promotion_amount.amount)
    return agg


def _latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def absorb(
    events: FinancialEvents,
    fee_acc: FeeAccumulator,
    refund_acc: RefundAccumulator,
) -> AbsorbStats:
    """Add one page of events to the fee and refund accumulators.

    Events without an order id and items without a SKU are counted as
    skipped and otherwise ignored.
    """
    stats = AbsorbStats()

    for event in events.shipment_events:
        if not event.amazon_order_id:
            stats.skipped += 1
            continue
        for item in event.items:
            if not item.seller_sku:
                stats.skipped += 1
                continue
            item_agg = _item_aggregate(item, event.posted_date)
            if item_agg.total_fees == ZERO and item_agg.actual_revenue <= ZERO:
                continue

            key = AggregateKey(event.amazon_order_id, item.seller_sku)
            existing = fee_acc.setdefault(key, FeeAggregate())
            existing.referral += item_agg.referral
            existing.fulfillment += item_agg.fulfillment
            existing.other += item_agg.other
            existing.actual_revenue += item_agg.actual_revenue
            existing.posted_at = _latest(existing.posted_at, item_agg.posted_at)
            stats.fee_items += 1

    for event in events.refund_events:
        if not event.amazon_order_id:
            stats.skipped += 1
            continue
        for adjustment in event.adjustments:
            if not adjustment.seller_sku:
                stats.skipped += 1
                continue
            refund_amount = sum(
                (abs(charge.charge_amount.amount) for charge in adjustment.charge_adjustments),
                ZERO,
            )
            if refund_amount <= ZERO:
                continue

            key = AggregateKey(event.amazon_order_id, adjustment.seller_sku)
            refund_acc.setdefault(key, RefundAggregate()).amount += refund_amount
            stats.refund_items += 1

    return stats
