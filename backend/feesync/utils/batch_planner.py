"""
Batch planner — split a trailing date window into bounded sub-windows.

The window runs from ``now - total_days`` to ``now - safety_skew`` (the skew
keeps unsettled events out of the request). It is cut backward from its end
in ``batch_size_days`` chunks, so only the oldest chunk can be short, and the
result is returned oldest-first: an interrupted run leaves the freshest dates
for the next run instead of redoing stale dates ahead of fresh ones.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from feesync.core.exceptions import ValidationError

logger = logging.getLogger("batch_planner")

DEFAULT_SAFETY_SKEW = timedelta(minutes=5)


@dataclass(frozen=True)
class Batch:
    """One pagination unit: events posted in [start_date, end_date)."""
    index: int
    start_date: datetime
    end_date: datetime

    @property
    def label(self) -> str:
        return f"{self.start_date.date().isoformat()} to {self.end_date.date().isoformat()}"


def plan_batches(
    total_days: int,
    batch_size_days: int,
    now: Optional[datetime] = None,
    safety_skew: timedelta = DEFAULT_SAFETY_SKEW,
) -> List[Batch]:
    """Plan oldest-first batches covering the trailing total_days.

    Args:
        total_days: Size of the trailing window in days (>= 1)
        batch_size_days: Maximum days per batch (>= 1)
        now: Reference time, defaults to the current UTC time
        safety_skew: Gap kept between the window end and now

    Returns:
        Contiguous batches, indexed 1..n in processing order
    """
    if total_days < 1:
        raise ValidationError(f"total_days must be >= 1, got {total_days}")
    if batch_size_days < 1:
        raise ValidationError(f"batch_size_days must be >= 1, got {batch_size_days}")

    now = now or datetime.now(timezone.utc)
    window_start = now - timedelta(days=total_days)
    window_end = now - safety_skew
    if window_end <= window_start:
        raise ValidationError("safety skew leaves an empty sync window")

    step = timedelta(days=batch_size_days)
    windows = []
    end = window_end
    while end > window_start:
        start = max(end - step, window_start)
        windows.append((start, end))
        end = start

    windows.reverse()
    batches = [
        Batch(index=i, start_date=start, end_date=end)
        for i, (start, end) in enumerate(windows, start=1)
    ]

    logger.info(
        f"Planned {len(batches)} batches of <= {batch_size_days} days "
        f"covering {window_start.isoformat()} to {window_end.isoformat()}"
    )
    return batches
