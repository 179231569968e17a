"""
Unit tests for FinancesClient — one page fetch mapped to a PageOutcome.

Tests cover:
- Request params (posted window, page size, continuation token) and headers
- 200 -> PageOk with events and cursor
- 429 -> PageRateLimited
- Expired-token error bodies -> PageTokenExpired
- Other failures and unreadable bodies -> PageHardError
"""
from datetime import datetime, timezone

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from feesync.clients.finances_client import FinancesClient
from feesync.clients.lwa_client import Token
from feesync.schemas.finances import PageHardError, PageOk, PageRateLimited, PageTokenExpired
from feesync.utils.batch_planner import Batch

BATCH = Batch(
    index=1,
    start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    end_date=datetime(2024, 1, 8, tzinfo=timezone.utc),
)
TOKEN = Token(value="Atza|access", obtained_at=datetime(2024, 1, 8, tzinfo=timezone.utc))


@pytest.fixture
def client(mock_settings):
    return FinancesClient(mock_settings)


async def _fetch(client, response=None, side_effect=None, cursor=None):
    mock_http = AsyncMock()
    if side_effect is not None:
        mock_http.get.side_effect = side_effect
    else:
        mock_http.get.return_value = response
    mock_ctx = AsyncMock()
    mock_ctx.__aenter__.return_value = mock_http

    with patch("feesync.clients.finances_client.httpx.AsyncClient", return_value=mock_ctx):
        outcome = await client.fetch_page(TOKEN, BATCH, cursor)
    return outcome, mock_http


@pytest.mark.unit
class TestRequest:

    @pytest.mark.asyncio
    async def test_first_page_params(self, client, events_page):
        _, mock_http = await _fetch(client, httpx.Response(200, json=events_page()))

        call_args = mock_http.get.call_args
        assert call_args[0][0] == "https://sp-api.test/finances/v0/financialEvents"
        assert call_args[1]["params"] == {
            "PostedAfter": "2024-01-01T00:00:00Z",
            "PostedBefore": "2024-01-08T00:00:00Z",
            "MaxResultsPerPage": 100,
        }
        assert call_args[1]["headers"]["x-amz-access-token"] == "Atza|access"

    @pytest.mark.asyncio
    async def test_cursor_is_sent_as_next_token(self, client, events_page):
        _, mock_http = await _fetch(client, httpx.Response(200, json=events_page()), cursor="cursor-2")

        assert mock_http.get.call_args[1]["params"]["NextToken"] == "cursor-2"


@pytest.mark.unit
class TestOutcomes:

    @pytest.mark.asyncio
    async def test_ok_with_cursor(self, client, events_page, shipment_event):
        body = events_page(
            shipments=[shipment_event("111-2222222-3333333", "ABC", fees=[("Commission", "-1")])],
            next_token="cursor-2",
        )

        outcome, _ = await _fetch(client, httpx.Response(200, json=body))

        assert isinstance(outcome, PageOk)
        assert outcome.next_cursor == "cursor-2"
        assert outcome.events.shipment_events[0].amazon_order_id == "111-2222222-3333333"

    @pytest.mark.asyncio
    async def test_ok_last_page_has_no_cursor(self, client, events_page):
        outcome, _ = await _fetch(client, httpx.Response(200, json=events_page()))

        assert isinstance(outcome, PageOk)
        assert outcome.next_cursor is None

    @pytest.mark.asyncio
    async def test_empty_next_token_means_last_page(self, client):
        body = {"payload": {"NextToken": "", "FinancialEvents": {}}}

        outcome, _ = await _fetch(client, httpx.Response(200, json=body))

        assert outcome.next_cursor is None

    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self, client):
        outcome, _ = await _fetch(client, httpx.Response(429, text="QuotaExceeded"))

        assert isinstance(outcome, PageRateLimited)

    @pytest.mark.asyncio
    async def test_ttl_exceeded_is_token_expired(self, client):
        body = '{"errors":[{"code":"Unauthorized","message":"Access to requested resource is denied.","details":"The access token you provided has expired."}]}'

        outcome, _ = await _fetch(client, httpx.Response(403, text=body))

        assert isinstance(outcome, PageTokenExpired)

    @pytest.mark.asyncio
    async def test_other_failure_is_hard_error(self, client):
        outcome, _ = await _fetch(client, httpx.Response(500, text="Internal failure " + "x" * 500))

        assert isinstance(outcome, PageHardError)
        assert outcome.status_code == 500
        assert outcome.message.startswith("API 500: Internal failure")
        assert len(outcome.message) <= len("API 500: ") + 200

    @pytest.mark.asyncio
    async def test_unreadable_body_is_hard_error(self, client):
        outcome, _ = await _fetch(client, httpx.Response(200, text="<html>oops</html>"))

        assert isinstance(outcome, PageHardError)

    @pytest.mark.asyncio
    async def test_transport_error_is_hard_error(self, client):
        outcome, _ = await _fetch(client, side_effect=httpx.ReadTimeout("timed out"))

        assert isinstance(outcome, PageHardError)
        assert "timed out" in outcome.message
