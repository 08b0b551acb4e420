"""
Optimistic mutation runner for the client cache.

Each mutation follows the same lifecycle:

    1. cancel in-flight fetches of the affected keys
    2. snapshot the affected keys
    3. apply the optimistic update
    4. await the server call
    5. on success, reconcile the cache with the server's answer;
       on failure, restore the snapshot and re-raise
    6. in either case, invalidate the settle prefixes

Mutations touching a common key are serialized, so a rollback can never
clobber a later mutation's optimistic state.
"""

import asyncio
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from threadsync.client.cache import CacheKey, QueryCache

logger = logging.getLogger(__name__)


@dataclass
class Mutation:
    """
    A single optimistic mutation.

    Attributes:
        keys: Cache keys the optimistic update and reconcile step touch
        call: Coroutine factory performing the server request
        optimistic: Applies the expected result to the cache before the call
        reconcile: Writes the server's result into the cache after success
        invalidate: Key prefixes dropped once the mutation settles
        mutation_id: Optional idempotency key; concurrent runs share one call
        name: Label used in logs
    """

    keys: list[CacheKey]
    call: Callable[[], Awaitable[Any]]
    optimistic: Optional[Callable[[QueryCache], None]] = None
    reconcile: Optional[Callable[[QueryCache, Any], None]] = None
    invalidate: list[CacheKey] = field(default_factory=list)
    mutation_id: Optional[str] = None
    name: str = "mutation"


class CacheSynchronizer:
    """Runs mutations against a QueryCache with rollback on failure."""

    def __init__(self, cache: QueryCache):
        self.cache = cache
        self._locks: dict[CacheKey, asyncio.Lock] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    def _lock_for(self, key: CacheKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def run(self, mutation: Mutation) -> Any:
        """
        Execute a mutation.

        Returns:
            The server call's result

        Raises:
            Whatever the server call raised, after the cache was restored
        """
        if mutation.mutation_id is None:
            return await self._execute(mutation)

        existing = self._inflight.get(mutation.mutation_id)
        if existing is not None:
            logger.debug(f"Joining in-flight {mutation.name} {mutation.mutation_id}")
            return await asyncio.shield(existing)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[mutation.mutation_id] = future
        try:
            result = await self._execute(mutation)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Retrieved so joiners are optional
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(mutation.mutation_id, None)

    async def _execute(self, mutation: Mutation) -> Any:
        async with AsyncExitStack() as stack:
            # Sorted acquisition keeps overlapping mutations deadlock-free
            for key in sorted(set(mutation.keys)):
                await stack.enter_async_context(self._lock_for(key))

            for key in mutation.keys:
                self.cache.cancel_fetch(key)

            snapshot = self.cache.snapshot(mutation.keys)
            if mutation.optimistic is not None:
                mutation.optimistic(self.cache)

            try:
                result = await mutation.call()
            except BaseException as e:
                self.cache.restore(snapshot)
                logger.warning(f"{mutation.name} failed, cache restored: {e!r}")
                raise
            else:
                if mutation.reconcile is not None:
                    mutation.reconcile(self.cache, result)
                return result
            finally:
                for prefix in mutation.invalidate:
                    self.cache.invalidate(prefix)
