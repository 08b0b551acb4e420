"""
Thread list grouping by last activity.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from threadsync.client.models import ThreadData

TODAY = "Today"
YESTERDAY = "Yesterday"
PREVIOUS_7_DAYS = "Previous 7 Days"
PREVIOUS_30_DAYS = "Previous 30 Days"
OLDER = "Older"

BUCKETS = (TODAY, YESTERDAY, PREVIOUS_7_DAYS, PREVIOUS_30_DAYS, OLDER)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def group_threads_by_recency(
    threads: Sequence[ThreadData], now: Optional[datetime] = None
) -> dict[str, list[ThreadData]]:
    """
    Bucket threads by ``updated_at`` relative to ``now``.

    Day boundaries are calendar days in UTC. Every bucket is present in the
    result (possibly empty), in display order; threads keep their input order
    within a bucket.
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    today = now.date()
    groups: dict[str, list[ThreadData]] = {name: [] for name in BUCKETS}

    for thread in threads:
        day = _as_utc(thread.updated_at).date()
        if day >= today:
            groups[TODAY].append(thread)
        elif day == today - timedelta(days=1):
            groups[YESTERDAY].append(thread)
        elif day > today - timedelta(days=7):
            groups[PREVIOUS_7_DAYS].append(thread)
        elif day > today - timedelta(days=30):
            groups[PREVIOUS_30_DAYS].append(thread)
        else:
            groups[OLDER].append(thread)

    return groups
