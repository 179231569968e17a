"""
Order store — keyed fee and refund updates on order lines and returns.

Both updates match on (order_id, master_sku) and report how many rows they
touched; zero means the order line or return is not in the store yet.
"""
import logging

from feesync.db.base_store import BaseStore
from feesync.utils.event_aggregator import AggregateKey, FeeAggregate
from feesync.utils.type_converters import ZERO, to_money

logger = logging.getLogger("order_store")

ORDER_ITEMS_TABLE = "order_items"
RETURNS_TABLE = "returns"


class OrderStore(BaseStore):
    """Persistence target for financial event aggregates."""

    @staticmethod
    def build_fee_payload(fees: FeeAggregate) -> dict:
        payload = {
            "referral_fee": to_money(fees.referral),
            "fba_fee": to_money(fees.fulfillment),
            "other_fees": to_money(fees.other),
            "amazon_fees": to_money(fees.total_fees),
        }
        if fees.actual_revenue > ZERO:
            payload["actual_revenue"] = to_money(fees.actual_revenue)
            payload["actual_revenue_posted_at"] = (
                fees.posted_at.isoformat() if fees.posted_at else None
            )
        return payload

    async def update_item_fees(self, key: AggregateKey, fees: FeeAggregate) -> int:
        """Write fee totals onto every order line for the key. Returns rows updated."""
        query = self._client.table(ORDER_ITEMS_TABLE) \
            .update(self.build_fee_payload(fees)) \
            .eq("order_id", key.order_id) \
            .eq("master_sku", key.sku)
        result = await self._execute(ORDER_ITEMS_TABLE, query, str(key))
        return len(result.data or [])

    async def set_refund_if_unset(self, key: AggregateKey, amount) -> int:
        """Set refund_amount on returns that have none yet. Returns rows updated."""
        query = self._client.table(RETURNS_TABLE) \
            .update({"refund_amount": to_money(amount)}) \
            .eq("order_id", key.order_id) \
            .eq("master_sku", key.sku) \
            .or_("refund_amount.is.null,refund_amount.eq.0")
        result = await self._execute(RETURNS_TABLE, query, str(key))
        return len(result.data or [])
