"""
Unit tests for OrderStore — keyed fee and refund updates.

Tests cover:
- Fee payload built from an aggregate, rounded to cents
- Fee update matches order_id + master_sku and reports affected rows
- Refund update only touches returns whose refund_amount is unset
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from unittest.mock import MagicMock

from feesync.db.order_store import OrderStore
from feesync.utils.event_aggregator import AggregateKey, FeeAggregate

KEY = AggregateKey("111-2222222-3333333", "ABC")


@pytest.fixture
def store(mock_supabase):
    supabase_client, _ = mock_supabase
    return OrderStore(supabase_client=supabase_client)


@pytest.mark.unit
class TestBuildFeePayload:

    def test_fulfillment_only(self):
        payload = OrderStore.build_fee_payload(FeeAggregate(fulfillment=Decimal("2.50")))

        assert payload == {
            "referral_fee": 0.0,
            "fba_fee": 2.5,
            "other_fees": 0.0,
            "amazon_fees": 2.5,
        }

    def test_all_buckets_rounded(self):
        payload = OrderStore.build_fee_payload(FeeAggregate(
            referral=Decimal("3.001"), fulfillment=Decimal("2.5"), other=Decimal("0.4"),
        ))

        assert payload["referral_fee"] == 3.0
        assert payload["amazon_fees"] == 5.9

    def test_actual_revenue_included_when_positive(self):
        posted = datetime(2024, 1, 3, tzinfo=timezone.utc)
        payload = OrderStore.build_fee_payload(FeeAggregate(
            referral=Decimal("3"), actual_revenue=Decimal("19.60"), posted_at=posted,
        ))

        assert payload["actual_revenue"] == 19.6
        assert payload["actual_revenue_posted_at"] == posted.isoformat()


@pytest.mark.unit
class TestUpdateItemFees:

    @pytest.mark.asyncio
    async def test_updates_matching_order_line(self, store, mock_supabase):
        _, mock_table = mock_supabase
        mock_table.execute.return_value = MagicMock(data=[{"id": 1}])

        rows = await store.update_item_fees(KEY, FeeAggregate(fulfillment=Decimal("2.50")))

        assert rows == 1
        store._client.table.assert_called_with("order_items")
        mock_table.update.assert_called_once_with({
            "referral_fee": 0.0, "fba_fee": 2.5, "other_fees": 0.0, "amazon_fees": 2.5,
        })
        mock_table.eq.assert_any_call("order_id", "111-2222222-3333333")
        mock_table.eq.assert_any_call("master_sku", "ABC")

    @pytest.mark.asyncio
    async def test_zero_rows_when_order_line_missing(self, store, mock_supabase):
        _, mock_table = mock_supabase
        mock_table.execute.return_value = MagicMock(data=[])

        assert await store.update_item_fees(KEY, FeeAggregate(referral=Decimal("1"))) == 0


@pytest.mark.unit
class TestSetRefundIfUnset:

    @pytest.mark.asyncio
    async def test_sets_refund_on_unset_return(self, store, mock_supabase):
        _, mock_table = mock_supabase
        mock_table.execute.return_value = MagicMock(data=[{"id": 9}])

        rows = await store.set_refund_if_unset(KEY, Decimal("5.00"))

        assert rows == 1
        store._client.table.assert_called_with("returns")
        mock_table.update.assert_called_once_with({"refund_amount": 5.0})
        mock_table.or_.assert_called_once_with("refund_amount.is.null,refund_amount.eq.0")

    @pytest.mark.asyncio
    async def test_already_refunded_return_is_untouched(self, store, mock_supabase):
        # The or_ filter excludes returns with a nonzero refund_amount
        _, mock_table = mock_supabase
        mock_table.execute.return_value = MagicMock(data=[])

        assert await store.set_refund_if_unset(KEY, Decimal("5.00")) == 0
