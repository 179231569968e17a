"""
Login-with-Amazon client — refresh-token exchange and token freshness.

Tokens are treated as stale well before the provider's one-hour expiry so
long runs refresh proactively. Nothing is cached across runs.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from pydantic import BaseModel

from feesync.core.config import Settings
from feesync.core.constants import MAX_ERROR_MESSAGE_LENGTH
from feesync.core.exceptions import AuthError

logger = logging.getLogger("lwa_client")


class AmazonCredentials(BaseModel):
    client_id: str
    client_secret: str
    refresh_token: str
    region: str = "na"


@dataclass(frozen=True)
class Token:
    value: str
    obtained_at: datetime


class LwaTokenManager:
    def __init__(self, settings: Settings) -> None:
        self._token_url = settings.amazon_lwa_token_url
        self._timeout = settings.amazon_token_timeout_seconds
        self._freshness = timedelta(minutes=settings.finances_token_freshness_minutes)

    async def obtain(self, credentials: AmazonCredentials) -> Token:
        """Exchange the refresh token for a fresh access token."""
        data = {
            "grant_type": "refresh_token",
            "refresh_token": credentials.refresh_token,
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._token_url,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            logger.error("lwa token request failed error=%s", e)
            raise AuthError(str(e)) from e

        if resp.status_code != 200:
            logger.error("lwa token rejected status=%s", resp.status_code)
            raise AuthError(
                f"{resp.status_code} {resp.text[:MAX_ERROR_MESSAGE_LENGTH]}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise AuthError("token response is not JSON") from e

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise AuthError("No access_token in LWA response")

        logger.info("lwa access token obtained")
        return Token(value=access_token, obtained_at=datetime.now(timezone.utc))

    def is_stale(self, token: Optional[Token], now: Optional[datetime] = None) -> bool:
        """True when the token is missing or older than the freshness window."""
        if token is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - token.obtained_at >= self._freshness
