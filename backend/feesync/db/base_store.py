"""
Base store — shared Supabase client access for all stores.

supabase-py is synchronous; queries are executed in a worker thread so
several keyed updates can be in flight at once from the event loop.
Failures surface as PersistenceError carrying the table and key.
"""

import asyncio
import logging
from typing import Any

import httpx
from postgrest.exceptions import APIError

from feesync.core.config import settings
from feesync.core.exceptions import PersistenceError
from feesync.clients.supabase_client import SupabaseClient

logger = logging.getLogger("base_store")


class BaseStore:
    """Base class for Supabase stores."""

    def __init__(self, supabase_client: SupabaseClient | None = None) -> None:
        self._supabase_client = supabase_client

    @property
    def _client(self):
        """Get or create the Supabase client instance."""
        if self._supabase_client is None:
            self._supabase_client = SupabaseClient(settings)
        return self._supabase_client.client

    async def _execute(self, table: str, query: Any, key: str = "-") -> Any:
        """Run a prepared query off the event loop."""
        try:
            return await asyncio.to_thread(query.execute)
        except (APIError, httpx.HTTPError) as e:
            logger.info("supabase error table=%s key=%s detail=%s", table, key, str(e))
            raise PersistenceError(table, key, str(e)) from e
