import logging
import os
import platform
import signal
import subprocess
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from feesync.core.config import settings
from feesync.routes import health_router, v1_router

logger = logging.getLogger(__name__)

# Track Celery subprocesses for cleanup
_celery_processes: List[subprocess.Popen] = []


def _start_celery(*args: str) -> Optional[subprocess.Popen]:
    """Start a Celery worker or beat as a subprocess of the API."""
    is_windows = platform.system() == "Windows"
    backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    cmd = [sys.executable, "-m", "celery", "-A", "celery_app", *args, "-l", "info"]

    try:
        kwargs = {"cwd": backend_dir}
        if is_windows:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

        process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, **kwargs)
        logger.info(f"Celery {args[0]} started (PID: {process.pid})")
        return process
    except OSError as e:
        logger.error(f"Failed to start Celery {args[0]}: {e}")
        return None


def _stop_celery_processes():
    """Stop all Celery subprocesses."""
    for process in _celery_processes:
        if process and process.poll() is None:
            try:
                logger.info(f"Stopping Celery process (PID: {process.pid})...")
                if platform.system() == "Windows":
                    process.terminate()
                else:
                    process.send_signal(signal.SIGTERM)
                process.wait(timeout=10)
            except subprocess.TimeoutExpired:
                logger.warning(f"Force killing Celery process {process.pid}")
                process.kill()

    _celery_processes.clear()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    On startup, optionally spawn a worker on the finances queue plus Beat
    (AUTO_START_CELERY=true). On shutdown, stop them again.
    """
    logger.info("=== Marketplace Fee Sync Starting ===")

    if os.getenv("AUTO_START_CELERY", "false").lower() == "true":
        pool = "solo" if platform.system() == "Windows" else "prefork"
        for args in (("worker", f"--pool={pool}", "-Q", "finances", "--concurrency=1"), ("beat",)):
            process = _start_celery(*args)
            if process:
                _celery_processes.append(process)
        logger.info(f"Started {len(_celery_processes)} Celery processes")
    else:
        logger.info("Celery auto-start disabled (AUTO_START_CELERY=false)")

    if not settings.has_fallback_credentials:
        logger.info("No Amazon credentials in env; relying on api_connections")

    logger.info("=== Marketplace Fee Sync Ready ===")

    yield

    logger.info("=== Marketplace Fee Sync Shutting Down ===")
    if _celery_processes:
        _stop_celery_processes()
    logger.info("Shutdown complete")


app = FastAPI(title="Marketplace Fee Sync", lifespan=lifespan)
logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(v1_router)
