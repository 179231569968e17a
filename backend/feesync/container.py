"""
Lazy DI container — singleton access to clients, stores, and services.

Works in both FastAPI (async) and Celery (sync) contexts. Nothing touches
Supabase until a store is first used, so importing this module is free.
"""

from functools import lru_cache

from feesync.core.config import settings
from feesync.clients.finances_client import FinancesClient
from feesync.clients.lwa_client import LwaTokenManager
from feesync.db.credentials_store import CredentialsStore
from feesync.db.order_store import OrderStore
from feesync.db.sync_log_store import SyncLogStore
from feesync.services.financial_sync_service import FinancialSyncService
from feesync.services.flush_service import FlushService
from feesync.services.run_registry import get_run_registry


# -- Clients ---------------------------------------------------------------

@lru_cache(maxsize=1)
def get_token_manager():
    return LwaTokenManager(settings)


@lru_cache(maxsize=1)
def get_finances_client():
    return FinancesClient(settings)


# -- DB Stores -------------------------------------------------------------

@lru_cache(maxsize=1)
def get_order_store():
    return OrderStore()


@lru_cache(maxsize=1)
def get_sync_log_store():
    return SyncLogStore()


@lru_cache(maxsize=1)
def get_credentials_store():
    return CredentialsStore(settings=settings)


# -- Services --------------------------------------------------------------

@lru_cache(maxsize=1)
def get_flush_service():
    return FlushService(get_order_store(), chunk_size=settings.finances_flush_chunk_size)


@lru_cache(maxsize=1)
def get_financial_sync_service():
    return FinancialSyncService(
        token_manager=get_token_manager(),
        finances_client=get_finances_client(),
        flush_service=get_flush_service(),
        credentials_store=get_credentials_store(),
        sync_log_store=get_sync_log_store(),
        registry=get_run_registry(),
        settings=settings,
    )
