"""
Run lock — Redis-backed single-flight slot shared by every process.

The API process and each Celery worker keep their own in-memory registry, so
the slot that decides "one sync at a time" lives in Redis:

1. Run Lock: SET NX EX on RUN_LOCK_KEY, value is the holder id. The TTL
   outlives the longest expected run and clears a crashed holder.
2. Cancel Flag: set by a process that does not own the run; the owner polls
   it at page and batch boundaries.

Redis connection follows the same pattern as the other Redis helpers.
"""
import logging
from typing import Optional

import redis

from feesync.core.config import settings

logger = logging.getLogger(__name__)

RUN_LOCK_KEY = "feesync:run_lock:financial-events"
RUN_CANCEL_KEY = "feesync:run_cancel:financial-events"


def _get_redis() -> redis.Redis:
    """Create a Redis client from the configured URL."""
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


# ── 1. Run Lock ─────────────────────────────────────────────────────────────

def acquire_run_lock(holder: str = "unknown") -> bool:
    """Acquire the sync run lock.

    Returns True if the lock was acquired (this run should proceed).
    Returns False if another run holds it.
    """
    r = _get_redis()
    ttl = settings.finances_run_lock_ttl_seconds

    acquired = r.set(RUN_LOCK_KEY, holder, nx=True, ex=ttl)

    if acquired:
        # A flag left behind by an earlier run must not stop this one
        r.delete(RUN_CANCEL_KEY)
        logger.info(f"Run lock ACQUIRED: holder={holder}, ttl={ttl}s")
    else:
        logger.info(f"Run lock HELD: holder={r.get(RUN_LOCK_KEY)}, skipping")

    return bool(acquired)


def release_run_lock(holder: Optional[str] = None) -> None:
    """Release the sync run lock.

    With a holder, the key is only deleted while that holder still owns it,
    so a run whose lock expired cannot free a newer run's slot.
    """
    r = _get_redis()
    if holder is not None and r.get(RUN_LOCK_KEY) != holder:
        logger.warning(f"Run lock not owned by {holder}, leaving it")
        return
    r.delete(RUN_LOCK_KEY, RUN_CANCEL_KEY)
    logger.debug(f"Run lock released: holder={holder}")


def current_run_holder() -> Optional[str]:
    """Holder id of the active run, or None when no run holds the lock."""
    return _get_redis().get(RUN_LOCK_KEY)


# ── 2. Cancel Flag ──────────────────────────────────────────────────────────

def request_run_cancel() -> bool:
    """Flag the lock holder's run for cancellation.

    Returns False when no run holds the lock.
    """
    r = _get_redis()
    holder = r.get(RUN_LOCK_KEY)
    if holder is None:
        return False
    r.set(RUN_CANCEL_KEY, holder, ex=settings.finances_run_lock_ttl_seconds)
    logger.info(f"Run cancel flag SET: holder={holder}")
    return True


def run_cancel_requested() -> bool:
    """True when another process asked the active run to stop."""
    return bool(_get_redis().exists(RUN_CANCEL_KEY))
