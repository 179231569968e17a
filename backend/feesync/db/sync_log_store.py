"""
Sync log store — append-only audit rows in the sync_logs table.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from feesync.db.base_store import BaseStore
from feesync.schemas.sync import SyncLogEntry

logger = logging.getLogger("sync_log_store")

SYNC_LOGS_TABLE = "sync_logs"


def _duration_seconds(row: Dict[str, Any]) -> Optional[int]:
    started, completed = row.get("started_at"), row.get("completed_at")
    if not started or not completed:
        return None
    try:
        start_dt = datetime.fromisoformat(str(started).replace("Z", "+00:00"))
        end_dt = datetime.fromisoformat(str(completed).replace("Z", "+00:00"))
    except ValueError:
        return None
    return round((end_dt - start_dt).total_seconds())


class SyncLogStore(BaseStore):
    """Append and read SyncLog records."""

    async def append(self, entry: SyncLogEntry) -> Dict[str, Any]:
        """Insert one SyncLog row."""
        row = entry.model_dump(mode="json")
        query = self._client.table(SYNC_LOGS_TABLE).insert(row)
        result = await self._execute(SYNC_LOGS_TABLE, query, entry.sync_type)
        logger.info(
            f"SyncLog written: type={entry.sync_type} status={entry.status} "
            f"processed={entry.records_processed} updated={entry.records_updated}"
        )
        return result.data[0] if result.data else row

    async def list_recent(self, limit: int = 50, sync_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent SyncLog rows, newest first, with a computed duration."""
        query = self._client.table(SYNC_LOGS_TABLE).select("*")
        if sync_type:
            query = query.ilike("sync_type", f"%{sync_type}%")
        query = query.order("started_at", desc=True).limit(limit)

        result = await self._execute(SYNC_LOGS_TABLE, query)
        rows = result.data or []
        for row in rows:
            row["duration_seconds"] = _duration_seconds(row)
        return rows
