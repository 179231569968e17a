"""
SP-API Finances client — one page of financial events per call.

Every transport result is mapped to a PageOutcome right here; callers never
see raw responses or HTTP exceptions.
"""
import logging
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from feesync.clients.lwa_client import Token
from feesync.core.config import Settings
from feesync.core.constants import MAX_ERROR_MESSAGE_LENGTH
from feesync.schemas.finances import (
    FinancialEventsPage,
    PageHardError,
    PageOk,
    PageOutcome,
    PageRateLimited,
    PageTokenExpired,
)
from feesync.utils.batch_planner import Batch

logger = logging.getLogger("finances_client")

FINANCIAL_EVENTS_PATH = "/finances/v0/financialEvents"


def _iso(dt) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class FinancesClient:
    def __init__(self, settings: Settings) -> None:
        self._endpoint = settings.amazon_sp_api_endpoint.rstrip("/")
        self._timeout = settings.amazon_sp_api_timeout_seconds
        self._page_size = settings.finances_max_results_per_page
        self._expiry_markers = list(settings.finances_token_expiry_markers)

    def _build_params(self, batch: Batch, cursor: Optional[str]) -> dict:
        params = {
            "PostedAfter": _iso(batch.start_date),
            "PostedBefore": _iso(batch.end_date),
            "MaxResultsPerPage": self._page_size,
        }
        if cursor:
            params["NextToken"] = cursor
        return params

    def _is_token_expired(self, body: str) -> bool:
        return any(marker in body for marker in self._expiry_markers)

    async def fetch_page(self, token: Token, batch: Batch, cursor: Optional[str]) -> PageOutcome:
        """Fetch one page of events for a batch window."""
        headers = {
            "Content-Type": "application/json",
            "x-amz-access-token": token.value,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(
                    f"{self._endpoint}{FINANCIAL_EVENTS_PATH}",
                    params=self._build_params(batch, cursor),
                    headers=headers,
                )
        except httpx.HTTPError as e:
            logger.warning("finances request failed batch=%s error=%s", batch.index, e)
            return PageHardError(message=str(e)[:MAX_ERROR_MESSAGE_LENGTH])

        if resp.status_code == 429:
            return PageRateLimited()

        if not resp.is_success:
            text = resp.text or ""
            if self._is_token_expired(text):
                return PageTokenExpired(message=text[:MAX_ERROR_MESSAGE_LENGTH])
            return PageHardError(
                message=f"API {resp.status_code}: {text[:MAX_ERROR_MESSAGE_LENGTH]}",
                status_code=resp.status_code,
            )

        try:
            page = FinancialEventsPage.model_validate(resp.json())
        except (ValueError, PydanticValidationError) as e:
            return PageHardError(
                message=f"Unreadable financial events page: {str(e)[:MAX_ERROR_MESSAGE_LENGTH]}",
                status_code=resp.status_code,
            )

        return PageOk(
            events=page.payload.events,
            next_cursor=page.payload.next_token or None,
        )
