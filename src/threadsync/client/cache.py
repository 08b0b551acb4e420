"""
Client-side query cache.

An explicit, passed-in mirror of server state keyed by tuples:

    ("threads",)              the user's thread list
    ("thread", thread_id)     one thread
    ("messages", thread_id)   a thread's messages
    ("shares",)               the user's share links

Invalidation is targeted key removal; the next ``fetch`` reloads.
"""

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

CacheKey = tuple[str, ...]

THREADS_KEY: CacheKey = ("threads",)
SHARES_KEY: CacheKey = ("shares",)


def thread_key(thread_id: str) -> CacheKey:
    return ("thread", thread_id)


def messages_key(thread_id: str) -> CacheKey:
    return ("messages", thread_id)


class _Missing:
    """Marker for keys absent from a snapshot."""

    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()

Snapshot = dict[CacheKey, Any]


class QueryCache:
    """In-memory cache of API results with deduplicated fetches."""

    def __init__(self) -> None:
        self._entries: dict[CacheKey, Any] = {}
        self._fetches: dict[CacheKey, asyncio.Task] = {}

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def get(self, key: CacheKey, default: Any = None) -> Any:
        return self._entries.get(key, default)

    def set(self, key: CacheKey, value: Any) -> None:
        self._entries[key] = value

    def update(self, key: CacheKey, updater: Callable[[Any], Any]) -> Any:
        """
        Replace a cached value with ``updater(current)``.

        Absent keys are left absent: there is nothing to update optimistically
        until the data has been loaded once.

        Returns:
            The new value, or None if the key was not cached
        """
        if key not in self._entries:
            return None
        value = updater(self._entries[key])
        self._entries[key] = value
        return value

    def remove(self, key: CacheKey) -> bool:
        return self._entries.pop(key, MISSING) is not MISSING

    def snapshot(self, keys: Iterable[CacheKey]) -> Snapshot:
        """Deep-copy the current values of ``keys`` (absent keys recorded too)."""
        return {
            key: copy.deepcopy(self._entries[key]) if key in self._entries else MISSING
            for key in keys
        }

    def restore(self, snapshot: Snapshot) -> None:
        """Put every key of a snapshot back to its recorded state."""
        for key, value in snapshot.items():
            if value is MISSING:
                self._entries.pop(key, None)
            else:
                self._entries[key] = value

    def invalidate(self, prefix: CacheKey) -> list[CacheKey]:
        """
        Remove every key starting with ``prefix`` and cancel its fetches.

        Returns:
            The keys that were removed
        """
        removed = [k for k in self._entries if k[: len(prefix)] == prefix]
        for key in removed:
            del self._entries[key]
        for key in [k for k in self._fetches if k[: len(prefix)] == prefix]:
            self.cancel_fetch(key)
        if removed:
            logger.debug(f"Invalidated {len(removed)} cache keys under {prefix}")
        return removed

    async def fetch(
        self,
        key: CacheKey,
        fetcher: Callable[[], Awaitable[Any]],
        force: bool = False,
    ) -> Any:
        """
        Return the cached value for ``key``, loading it with ``fetcher`` if needed.

        Concurrent fetches of one key share a single request. A fetch
        cancelled by a mutation never writes its result; callers then get the
        value currently cached.
        """
        if not force and key in self._entries:
            return self._entries[key]

        task = self._fetches.get(key)
        if task is None:
            task = asyncio.ensure_future(fetcher())
            self._fetches[key] = task
            task.add_done_callback(lambda t: self._fetch_done(key, t))

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return self._entries.get(key)
            raise

    def cancel_fetch(self, key: CacheKey) -> bool:
        """Cancel an in-flight fetch so it cannot overwrite newer local state."""
        task = self._fetches.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def _fetch_done(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._fetches.get(key) is task:
            del self._fetches[key]
        else:
            # Cancelled or superseded; its result is stale
            return
        if task.cancelled() or task.exception() is not None:
            return
        self._entries[key] = task.result()

    def clear(self) -> None:
        for key in list(self._fetches):
            self.cancel_fetch(key)
        self._entries.clear()


def replace_item(items: Optional[list], item: Any, key: str = "id") -> list:
    """Return ``items`` with the element matching ``item``'s key replaced."""
    target = getattr(item, key)
    return [item if getattr(i, key) == target else i for i in items or []]


def remove_item(items: Optional[list], value: Any, key: str = "id") -> list:
    """Return ``items`` without the element whose key equals ``value``."""
    return [i for i in items or [] if getattr(i, key) != value]
