"""
Unit tests for the event aggregator — folding pages into per-key sums.

Tests cover:
- Fee classification by FeeType substring
- Absolute-value sums across pages and items
- Refund sums from charge adjustments
- Skipping of events without order id or SKU
- Actual revenue and posted date tracking
- The two-page fee + refund scenario
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from feesync.schemas.finances import FinancialEventsPage
from feesync.utils.event_aggregator import (
    FEE_FULFILLMENT,
    FEE_OTHER,
    FEE_REFERRAL,
    AggregateKey,
    FeeAggregate,
    absorb,
    classify_fee,
)

ORDER = "111-2222222-3333333"


def _events(body):
    return FinancialEventsPage.model_validate(body).payload.events


@pytest.mark.unit
class TestClassifyFee:

    @pytest.mark.parametrize("fee_type,expected", [
        ("Commission", FEE_REFERRAL),
        ("ReferralFee", FEE_REFERRAL),
        ("FBAPerUnitFulfillmentFee", FEE_FULFILLMENT),
        ("FBAWeightBasedFee", FEE_FULFILLMENT),
        ("FulfillmentNetworkFee", FEE_FULFILLMENT),
        ("ShippingChargeback", FEE_OTHER),
    ])
    def test_buckets(self, fee_type, expected):
        assert classify_fee(fee_type, Decimal("1.00")) == expected

    def test_unknown_zero_fee_carries_nothing(self):
        assert classify_fee("VariableClosingFee", Decimal("0")) is None

    def test_first_match_wins(self):
        # Names both markers; referral is checked first
        assert classify_fee("FBACommission", Decimal("1")) == FEE_REFERRAL


@pytest.mark.unit
class TestAbsorbShipments:

    def test_fees_partitioned_and_absolute(self, events_page, shipment_event):
        page = events_page(shipments=[
            shipment_event(ORDER, "ABC", fees=[
                ("Commission", "-3.00"),
                ("FBAPerUnitFulfillmentFee", "-2.50"),
                ("ShippingChargeback", "-0.40"),
            ]),
        ])
        fee_acc, refund_acc = {}, {}

        stats = absorb(_events(page), fee_acc, refund_acc)

        agg = fee_acc[AggregateKey(ORDER, "ABC")]
        assert agg.referral == Decimal("3.00")
        assert agg.fulfillment == Decimal("2.50")
        assert agg.other == Decimal("0.40")
        assert agg.total_fees == Decimal("5.90")
        assert stats.fee_items == 1
        assert refund_acc == {}

    def test_sums_across_pages(self, events_page, shipment_event):
        fee_acc, refund_acc = {}, {}
        for amount in ("-1.10", "-2.20", "-3.30"):
            page = events_page(shipments=[shipment_event(ORDER, "ABC", fees=[("Commission", amount)])])
            absorb(_events(page), fee_acc, refund_acc)

        assert fee_acc[AggregateKey(ORDER, "ABC")].referral == Decimal("6.60")

    def test_keys_are_per_order_and_sku(self, events_page, shipment_event):
        page = events_page(shipments=[
            shipment_event(ORDER, "ABC", fees=[("Commission", "-1")]),
            shipment_event(ORDER, "XYZ", fees=[("Commission", "-2")]),
            shipment_event("222-0000000-0000000", "ABC", fees=[("Commission", "-4")]),
        ])
        fee_acc = {}

        absorb(_events(page), fee_acc, {})

        assert len(fee_acc) == 3
        assert fee_acc[AggregateKey(ORDER, "XYZ")].referral == Decimal("2")

    def test_missing_order_id_is_skipped(self, events_page, shipment_event):
        page = events_page(shipments=[shipment_event(None, "ABC", fees=[("Commission", "-1")])])
        fee_acc = {}

        stats = absorb(_events(page), fee_acc, {})

        assert fee_acc == {}
        assert stats.skipped == 1

    def test_missing_sku_is_skipped(self, events_page, shipment_event):
        page = events_page(shipments=[shipment_event(ORDER, None, fees=[("Commission", "-1")])])
        fee_acc = {}

        stats = absorb(_events(page), fee_acc, {})

        assert fee_acc == {}
        assert stats.skipped == 1

    def test_item_without_fees_or_revenue_is_ignored(self, events_page, shipment_event):
        page = events_page(shipments=[shipment_event(ORDER, "ABC", fees=[("Other", "0")])])
        fee_acc = {}

        stats = absorb(_events(page), fee_acc, {})

        assert fee_acc == {}
        assert stats.fee_items == 0
        assert stats.skipped == 0

    def test_actual_revenue_is_charges_minus_promotions(self, events_page, shipment_event):
        page = events_page(shipments=[
            shipment_event(
                ORDER, "ABC",
                fees=[("Commission", "-3.00")],
                charges=[("Principal", "20.00"), ("Tax", "1.60"), ("ShippingCharge", "0")],
                promotions=["-2.00"],
            ),
        ])
        fee_acc = {}

        absorb(_events(page), fee_acc, {})

        assert fee_acc[AggregateKey(ORDER, "ABC")].actual_revenue == Decimal("19.60")

    def test_posted_at_keeps_latest(self, events_page, shipment_event):
        page = events_page(shipments=[
            shipment_event(ORDER, "ABC", fees=[("Commission", "-1")], posted="2024-01-03T00:00:00Z"),
            shipment_event(ORDER, "ABC", fees=[("Commission", "-1")], posted="2024-01-02T00:00:00Z"),
        ])
        fee_acc = {}

        absorb(_events(page), fee_acc, {})

        assert fee_acc[AggregateKey(ORDER, "ABC")].posted_at == datetime(2024, 1, 3, tzinfo=timezone.utc)

    def test_posted_at_mixes_naive_and_offset_dates(self, events_page, shipment_event):
        page = events_page(shipments=[
            shipment_event(ORDER, "ABC", fees=[("Commission", "-1")], posted="2024-01-03T10:00:00"),
            shipment_event(ORDER, "ABC", fees=[("Commission", "-1")], posted="2024-01-03T12:00:00+05:00"),
        ])
        fee_acc = {}

        absorb(_events(page), fee_acc, {})

        # 12:00+05:00 is 07:00 UTC; the offset-less date is read as UTC
        assert fee_acc[AggregateKey(ORDER, "ABC")].posted_at == datetime(2024, 1, 3, 10, tzinfo=timezone.utc)

    def test_posted_dates_normalized_to_utc(self, events_page, shipment_event, refund_event):
        page = events_page(
            shipments=[shipment_event(ORDER, "ABC", posted="2024-01-03T10:00:00")],
            refunds=[refund_event(ORDER, "ABC", posted="2024-01-05T09:30:00-02:00")],
        )

        events = _events(page)

        assert events.shipment_events[0].posted_date == datetime(2024, 1, 3, 10, tzinfo=timezone.utc)
        assert events.refund_events[0].posted_date == datetime(2024, 1, 5, 11, 30, tzinfo=timezone.utc)
        assert events.refund_events[0].posted_date.utcoffset().total_seconds() == 0

    def test_null_lists_are_tolerated(self):
        body = {"payload": {"FinancialEvents": {
            "ShipmentEventList": None,
            "RefundEventList": [{"AmazonOrderId": ORDER, "ShipmentItemAdjustmentList": None}],
        }}}
        fee_acc, refund_acc = {}, {}

        stats = absorb(_events(body), fee_acc, refund_acc)

        assert fee_acc == {} and refund_acc == {}
        assert stats.refund_items == 0


@pytest.mark.unit
class TestAbsorbRefunds:

    def test_refund_sums_absolute_adjustments(self, events_page, refund_event):
        page = events_page(refunds=[refund_event(ORDER, "ABC", amounts=["-5.00", "-0.40"])])
        refund_acc = {}

        stats = absorb(_events(page), {}, refund_acc)

        assert refund_acc[AggregateKey(ORDER, "ABC")].amount == Decimal("5.40")
        assert stats.refund_items == 1

    def test_zero_refund_is_ignored(self, events_page, refund_event):
        page = events_page(refunds=[refund_event(ORDER, "ABC", amounts=["0.00"])])
        refund_acc = {}

        absorb(_events(page), {}, refund_acc)

        assert refund_acc == {}

    def test_refund_without_order_id_is_skipped(self, events_page, refund_event):
        page = events_page(refunds=[refund_event(None, "ABC", amounts=["-5.00"])])
        refund_acc = {}

        stats = absorb(_events(page), {}, refund_acc)

        assert refund_acc == {}
        assert stats.skipped == 1


@pytest.mark.unit
class TestTwoPageScenario:
    """Fee on page 1, refund on the cursor-continued page 2, same key."""

    def test_fee_and_refund_aggregates(self, events_page, shipment_event, refund_event):
        page_1 = events_page(
            shipments=[shipment_event(ORDER, "ABC", fees=[("FBAPerUnitFulfillmentFee", "-2.50")])],
            next_token="cursor-2",
        )
        page_2 = events_page(refunds=[refund_event(ORDER, "ABC", amounts=["-5.00"])])
        fee_acc, refund_acc = {}, {}

        absorb(_events(page_1), fee_acc, refund_acc)
        absorb(_events(page_2), fee_acc, refund_acc)

        key = AggregateKey(ORDER, "ABC")
        assert fee_acc[key].fulfillment == Decimal("2.50")
        assert fee_acc[key].referral == Decimal("0")
        assert fee_acc[key].other == Decimal("0")
        assert refund_acc[key].amount == Decimal("5.00")


@pytest.mark.unit
def test_aggregate_key_str():
    assert str(AggregateKey(ORDER, "ABC")) == f"{ORDER}|ABC"


@pytest.mark.unit
def test_fee_aggregate_total():
    agg = FeeAggregate(referral=Decimal("1"), fulfillment=Decimal("2"), other=Decimal("0.5"))
    assert agg.total_fees == Decimal("3.5")
