"""
Route aggregator — mounts the API routers under the /api/v1 prefix.

Health is exported separately so main.py can mount it at root.
"""
from fastapi import APIRouter

from feesync.routes.health import router as health_router
from feesync.routes.sync import router as sync_router

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(sync_router)

__all__ = ["v1_router", "health_router"]
