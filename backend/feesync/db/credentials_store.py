"""
Credentials store — marketplace credentials from the api_connections table.

Falls back to AMAZON_* environment settings when no connected row exists.
"""
import json
import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from feesync.clients.lwa_client import AmazonCredentials
from feesync.core.config import Settings, settings as default_settings
from feesync.db.base_store import BaseStore

logger = logging.getLogger("credentials_store")

API_CONNECTIONS_TABLE = "api_connections"

# Stored credential JSON uses camelCase keys
_KEY_MAP = {
    "clientId": "client_id",
    "clientSecret": "client_secret",
    "refreshToken": "refresh_token",
}


def parse_credentials(raw) -> Optional[AmazonCredentials]:
    """Parse stored credentials (JSON string or dict), None if unusable."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None
    normalized = {_KEY_MAP.get(k, k): v for k, v in raw.items()}
    try:
        return AmazonCredentials.model_validate(normalized)
    except PydanticValidationError:
        return None


class CredentialsStore(BaseStore):
    def __init__(self, supabase_client=None, settings: Settings | None = None) -> None:
        super().__init__(supabase_client)
        self._settings = settings or default_settings

    def _from_settings(self) -> Optional[AmazonCredentials]:
        if not self._settings.has_fallback_credentials:
            return None
        return AmazonCredentials(
            client_id=self._settings.amazon_client_id,
            client_secret=self._settings.amazon_client_secret,
            refresh_token=self._settings.amazon_refresh_token,
        )

    async def get_amazon_credentials(self) -> Optional[AmazonCredentials]:
        """Credentials of the connected Amazon account, or None."""
        query = self._client.table(API_CONNECTIONS_TABLE) \
            .select("credentials, is_connected") \
            .eq("platform", "amazon") \
            .limit(1)
        result = await self._execute(API_CONNECTIONS_TABLE, query, "amazon")

        row = result.data[0] if result.data else None
        if row and row.get("is_connected") and row.get("credentials"):
            credentials = parse_credentials(row["credentials"])
            if credentials:
                return credentials
            logger.warning("api_connections amazon row has unreadable credentials")

        return self._from_settings()
