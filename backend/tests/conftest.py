"""
Pytest configuration and shared fixtures for marketplace fee sync tests.

Provides test settings, chainable Supabase mocks and builders for
SP-API financial event payloads.
"""
from datetime import datetime, timezone

import pytest
from unittest.mock import MagicMock

from feesync.services.run_registry import reset_run_registry


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_settings():
    """Settings object with test defaults (no real credentials, no delays)."""
    from feesync.core.config import Settings
    return Settings(
        supabase_url="https://test.supabase.co",
        supabase_service_role_key="test-service-key",
        amazon_lwa_token_url="https://lwa.test/auth/o2/token",
        amazon_sp_api_endpoint="https://sp-api.test",
        amazon_client_id=None,
        amazon_client_secret=None,
        amazon_refresh_token=None,
        finances_batch_days=7,
        finances_max_results_per_page=100,
        finances_page_delay_seconds=0,
        finances_batch_delay_seconds=0,
        finances_rate_limit_backoff_seconds=0,
        finances_token_freshness_minutes=25,
        finances_safety_skew_minutes=5,
        finances_flush_chunk_size=50,
        finances_max_rate_limit_restarts=3,
        finances_token_expired_policy="skip",
        finances_token_expiry_markers=["TTL exceeded", "expired"],
    )


@pytest.fixture(autouse=True)
def _fresh_run_registry():
    """Every test starts with an empty single-flight registry."""
    reset_run_registry()
    yield
    reset_run_registry()


@pytest.fixture
def fixed_now():
    return datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Supabase mocks
# ---------------------------------------------------------------------------

def build_mock_table(data=None):
    """Fully chainable mock of a postgrest request builder."""
    mock_table = MagicMock()
    for method in ("select", "insert", "update", "eq", "or_", "order", "limit", "ilike"):
        getattr(mock_table, method).return_value = mock_table
    mock_table.execute.return_value = MagicMock(data=data if data is not None else [])
    return mock_table


@pytest.fixture
def mock_supabase():
    """Mock SupabaseClient whose .client.table() returns one chainable table."""
    supabase_client = MagicMock()
    mock_table = build_mock_table()
    supabase_client.client.table.return_value = mock_table
    return supabase_client, mock_table


# ---------------------------------------------------------------------------
# SP-API payload builders
# ---------------------------------------------------------------------------

def _money(amount):
    return {"CurrencyCode": "USD", "CurrencyAmount": amount}


@pytest.fixture
def shipment_event():
    """Build one ShipmentEvent dict: fees and charges are (type, amount) pairs."""
    def _build(order_id, sku, fees=(), charges=(), posted="2024-01-02T10:00:00Z", promotions=()):
        return {
            "AmazonOrderId": order_id,
            "PostedDate": posted,
            "ShipmentItemList": [{
                "SellerSKU": sku,
                "ItemFeeList": [{"FeeType": t, "FeeAmount": _money(a)} for t, a in fees],
                "ItemChargeList": [{"ChargeType": t, "ChargeAmount": _money(a)} for t, a in charges],
                "PromotionList": [{"PromotionType": "Promo", "PromotionAmount": _money(a)} for a in promotions],
            }],
        }
    return _build


@pytest.fixture
def refund_event():
    """Build one RefundEvent dict with one adjustment line per amount."""
    def _build(order_id, sku, amounts=(), posted="2024-01-05T10:00:00Z"):
        return {
            "AmazonOrderId": order_id,
            "PostedDate": posted,
            "ShipmentItemAdjustmentList": [{
                "SellerSKU": sku,
                "ItemChargeAdjustmentList": [
                    {"ChargeType": "Principal", "ChargeAmount": _money(a)} for a in amounts
                ],
            }],
        }
    return _build


@pytest.fixture
def events_page():
    """Wrap shipment and refund events in a financialEvents response body."""
    def _build(shipments=(), refunds=(), next_token=None):
        payload = {
            "FinancialEvents": {
                "ShipmentEventList": list(shipments),
                "RefundEventList": list(refunds),
            },
        }
        if next_token:
            payload["NextToken"] = next_token
        return {"payload": payload}
    return _build


@pytest.fixture
def make_mock_table():
    """Factory for extra chainable tables (e.g. one per Supabase table)."""
    return build_mock_table
