"""
Client-side conversation operations.

Each write is a Mutation run through the CacheSynchronizer, pairing the API
call with its optimistic cache change, reconciliation and invalidation set.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from threadsync.client.api_client import ApiClient
from threadsync.client.cache import (
    SHARES_KEY,
    THREADS_KEY,
    QueryCache,
    messages_key,
    remove_item,
    replace_item,
    thread_key,
)
from threadsync.client.models import (
    GenerationEvent,
    MessageData,
    ShareData,
    ThreadData,
    TrailingDeleteResult,
)
from threadsync.client.sync import CacheSynchronizer, Mutation

logger = logging.getLogger(__name__)

OPTIMISTIC_PREFIX = "optimistic-"


def _placeholder_id() -> str:
    return f"{OPTIMISTIC_PREFIX}{uuid.uuid4().hex}"


def _placeholder_message(
    thread_id: str, role: str, content: Optional[str], parts: Optional[list[Any]] = None
) -> MessageData:
    now = datetime.now(timezone.utc)
    return MessageData(
        id=_placeholder_id(),
        thread_id=thread_id,
        role=role,
        content=content,
        parts=parts or [],
        status="pending" if role == "assistant" else "done",
        created_at=now,
        updated_at=now,
    )


def _with_field(item: Any, **changes: Any) -> Any:
    return item.model_copy(update=changes)


class ConversationSync:
    """
    Keeps a QueryCache in step with the server for one signed-in user.

    Usage:
        cache = QueryCache()
        sync = ConversationSync(api, cache)
        threads = await sync.load_threads()
        await sync.delete_trailing(threads[0].id, message_id)
    """

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        synchronizer: Optional[CacheSynchronizer] = None,
    ):
        self.api = api
        self.cache = cache
        self.synchronizer = synchronizer or CacheSynchronizer(cache)

    # ===== Reads =====

    async def load_threads(self, force: bool = False) -> list[ThreadData]:
        return await self.cache.fetch(THREADS_KEY, self.api.list_threads, force=force)

    async def load_thread(self, thread_id: str, force: bool = False) -> ThreadData:
        return await self.cache.fetch(
            thread_key(thread_id), lambda: self.api.get_thread(thread_id), force=force
        )

    async def load_messages(
        self, thread_id: str, force: bool = False
    ) -> list[MessageData]:
        return await self.cache.fetch(
            messages_key(thread_id),
            lambda: self.api.list_messages(thread_id),
            force=force,
        )

    async def load_shares(self, force: bool = False) -> list[ShareData]:
        return await self.cache.fetch(SHARES_KEY, self.api.list_shares, force=force)

    # ===== Threads =====

    async def create_thread(
        self, title: Optional[str] = None, visibility: str = "private"
    ) -> ThreadData:
        def reconcile(cache: QueryCache, thread: ThreadData) -> None:
            cache.update(THREADS_KEY, lambda threads: [thread, *threads])
            cache.set(thread_key(thread.id), thread)

        return await self.synchronizer.run(
            Mutation(
                keys=[THREADS_KEY],
                call=lambda: self.api.create_thread(title, visibility),
                reconcile=reconcile,
                name="create_thread",
            )
        )

    async def delete_thread(self, thread_id: str) -> None:
        def optimistic(cache: QueryCache) -> None:
            cache.update(THREADS_KEY, lambda threads: remove_item(threads, thread_id))
            cache.remove(thread_key(thread_id))
            cache.remove(messages_key(thread_id))

        await self.synchronizer.run(
            Mutation(
                keys=[THREADS_KEY, thread_key(thread_id), messages_key(thread_id)],
                call=lambda: self.api.delete_thread(thread_id),
                optimistic=optimistic,
                invalidate=[THREADS_KEY, SHARES_KEY],
                mutation_id=f"delete_thread:{thread_id}",
                name="delete_thread",
            )
        )

    async def set_visibility(self, thread_id: str, visibility: str) -> ThreadData:
        return await self.synchronizer.run(
            Mutation(
                keys=[THREADS_KEY, thread_key(thread_id)],
                call=lambda: self.api.set_visibility(thread_id, visibility),
                reconcile=self._store_thread,
                name="set_visibility",
            )
        )

    async def generate_title(self, thread_id: str, user_query: str) -> ThreadData:
        """Ask the server for a title; the list shows the query until it lands."""
        provisional = user_query.strip()[:255]

        def optimistic(cache: QueryCache) -> None:
            cache.update(
                THREADS_KEY,
                lambda threads: [
                    _with_field(t, title=provisional) if t.id == thread_id else t
                    for t in threads
                ],
            )

        return await self.synchronizer.run(
            Mutation(
                keys=[THREADS_KEY, thread_key(thread_id)],
                call=lambda: self.api.generate_title(thread_id, user_query),
                optimistic=optimistic,
                reconcile=self._store_thread,
                invalidate=[THREADS_KEY, thread_key(thread_id)],
                name="generate_title",
            )
        )

    async def branch_thread(
        self,
        thread_id: str,
        anchor_message_id: str,
        new_thread_id: Optional[str] = None,
    ) -> ThreadData:
        def reconcile(cache: QueryCache, thread: ThreadData) -> None:
            cache.set(thread_key(thread.id), thread)

        return await self.synchronizer.run(
            Mutation(
                keys=[THREADS_KEY],
                call=lambda: self.api.branch_thread(
                    thread_id, anchor_message_id, new_thread_id
                ),
                reconcile=reconcile,
                invalidate=[THREADS_KEY],
                name="branch_thread",
            )
        )

    # ===== Messages =====

    async def edit_message(
        self, thread_id: str, message_id: str, **fields: Any
    ) -> MessageData:
        changes = {k: v for k, v in fields.items() if v is not None}

        def optimistic(cache: QueryCache) -> None:
            cache.update(
                messages_key(thread_id),
                lambda messages: [
                    _with_field(m, **changes) if m.id == message_id else m
                    for m in messages
                ],
            )

        def reconcile(cache: QueryCache, message: MessageData) -> None:
            cache.update(
                messages_key(thread_id),
                lambda messages: replace_item(messages, message),
            )

        return await self.synchronizer.run(
            Mutation(
                keys=[messages_key(thread_id)],
                call=lambda: self.api.update_message(message_id, **changes),
                optimistic=optimistic,
                reconcile=reconcile,
                invalidate=[messages_key(thread_id), THREADS_KEY],
                name="edit_message",
            )
        )

    async def delete_message(self, thread_id: str, message_id: str) -> None:
        def optimistic(cache: QueryCache) -> None:
            cache.update(
                messages_key(thread_id),
                lambda messages: remove_item(messages, message_id),
            )

        await self.synchronizer.run(
            Mutation(
                keys=[messages_key(thread_id)],
                call=lambda: self.api.delete_message(message_id),
                optimistic=optimistic,
                invalidate=[messages_key(thread_id), THREADS_KEY, SHARES_KEY],
                mutation_id=f"delete_message:{message_id}",
                name="delete_message",
            )
        )

    async def delete_trailing(
        self, thread_id: str, message_id: str, inclusive: bool = False
    ) -> TrailingDeleteResult:
        """Drop the anchor's suffix locally, then on the server."""

        def optimistic(cache: QueryCache) -> None:
            def truncate(messages: list[MessageData]) -> list[MessageData]:
                for index, message in enumerate(messages):
                    if message.id == message_id:
                        return messages[: index if inclusive else index + 1]
                return messages

            cache.update(messages_key(thread_id), truncate)

        return await self.synchronizer.run(
            Mutation(
                keys=[messages_key(thread_id)],
                call=lambda: self.api.delete_trailing(message_id, inclusive),
                optimistic=optimistic,
                invalidate=[messages_key(thread_id), THREADS_KEY, SHARES_KEY],
                name="delete_trailing",
            )
        )

    async def send_message(
        self,
        thread_id: str,
        content: Optional[str] = None,
        parts: Optional[list[Any]] = None,
        model: Optional[str] = None,
        on_event: Optional[Callable[[GenerationEvent], None]] = None,
    ) -> GenerationEvent:
        """
        Send a user message and stream the assistant reply into the cache.

        The cached message list grows a placeholder user message immediately;
        once the server acknowledges, placeholders take the server's ids and the
        assistant content accumulates with each delta.

        Returns:
            The terminal event (``done``, ``stopped`` or ``error``)
        """
        key = messages_key(thread_id)
        user_placeholder = _placeholder_message(thread_id, "user", content, parts)

        def optimistic(cache: QueryCache) -> None:
            cache.update(key, lambda messages: [*messages, user_placeholder])

        async def call() -> GenerationEvent:
            terminal: Optional[GenerationEvent] = None
            assistant_id: Optional[str] = None
            async for event in self.api.generate(thread_id, content, parts, model):
                if on_event is not None:
                    on_event(event)
                if event.event == "start":
                    assistant_id = event.data["assistant_message_id"]
                    self._acknowledge(
                        thread_id,
                        user_placeholder.id,
                        event.data["user_message_id"],
                        assistant_id,
                    )
                elif event.event == "delta" and assistant_id is not None:
                    fragment = event.data.get("content", "")
                    self.cache.update(
                        key,
                        lambda messages: [
                            _with_field(
                                m, content=(m.content or "") + fragment, status="streaming"
                            )
                            if m.id == assistant_id
                            else m
                            for m in messages
                        ],
                    )
                elif event.is_terminal:
                    terminal = event
            if terminal is None:
                terminal = GenerationEvent(event="stopped", data={})
            return terminal

        def reconcile(cache: QueryCache, terminal: GenerationEvent) -> None:
            if terminal.event == "done":
                final = MessageData.model_validate(terminal.data)
                cache.update(key, lambda messages: replace_item(messages, final))
            else:
                # Server recorded the outcome on the message; reload it
                cache.remove(key)

        return await self.synchronizer.run(
            Mutation(
                keys=[key],
                call=call,
                optimistic=optimistic,
                reconcile=reconcile,
                invalidate=[THREADS_KEY],
                name="send_message",
            )
        )

    async def stop_generation(self, thread_id: str) -> bool:
        return await self.api.stop_generation(thread_id)

    # ===== Shares =====

    async def create_share(
        self,
        thread_id: str,
        shared_up_to_message_id: str,
        token: Optional[str] = None,
    ) -> ShareData:
        def reconcile(cache: QueryCache, share: ShareData) -> None:
            cache.update(SHARES_KEY, lambda shares: [share, *shares])

        return await self.synchronizer.run(
            Mutation(
                keys=[SHARES_KEY],
                call=lambda: self.api.create_share(
                    thread_id, shared_up_to_message_id, token
                ),
                reconcile=reconcile,
                invalidate=[SHARES_KEY],
                name="create_share",
            )
        )

    async def delete_share(self, token: str) -> None:
        def optimistic(cache: QueryCache) -> None:
            cache.update(SHARES_KEY, lambda shares: remove_item(shares, token, "token"))

        await self.synchronizer.run(
            Mutation(
                keys=[SHARES_KEY],
                call=lambda: self.api.delete_share(token),
                optimistic=optimistic,
                invalidate=[SHARES_KEY],
                name="delete_share",
            )
        )

    # ===== Helpers =====

    def _store_thread(self, cache: QueryCache, thread: ThreadData) -> None:
        cache.update(THREADS_KEY, lambda threads: replace_item(threads, thread))
        cache.set(thread_key(thread.id), thread)

    def _acknowledge(
        self,
        thread_id: str,
        placeholder_id: str,
        user_message_id: str,
        assistant_message_id: str,
    ) -> None:
        placeholder = _placeholder_message(thread_id, "assistant", "")

        def apply(messages: list[MessageData]) -> list[MessageData]:
            acknowledged = [
                _with_field(m, id=user_message_id) if m.id == placeholder_id else m
                for m in messages
            ]
            return [*acknowledged, _with_field(placeholder, id=assistant_message_id)]

        self.cache.update(messages_key(thread_id), apply)
