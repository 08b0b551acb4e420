"""
Streaming response coordinator.

Runs assistant generations for threads. A generation is a pull-based,
cancellable sequence of text fragments: the consumer iterates a Generation
and each pull advances the upstream provider by one fragment. Content is
checkpointed to the assistant message periodically and on every terminal
transition, in short-lived sessions of its own so a long stream never holds
a database transaction open.

Lifecycle per generation:

    IDLE -> PENDING -> STREAMING -> DONE | ERROR | STOPPED
"""

import enum
import logging
import threading
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Generator, Iterator, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from threadsync.config import Settings, settings as default_settings
from threadsync.db.repositories import MessageRepository
from threadsync.exceptions import (
    ConflictError,
    GenerationFailedError,
    NotFoundError,
    ThreadSyncError,
    UpstreamTimeoutError,
)
from threadsync.models.annotations import with_model_annotation
from threadsync.models.db import Message, MessageRole, MessageStatus, Thread, utc_now
from threadsync.providers import provider_for_model
from threadsync.providers.base import ChatMessage, ModelProvider
from threadsync.services.conversation import ConversationEngine

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]
ProviderFactory = Callable[[str], ModelProvider]


class GenerationState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (
            GenerationState.DONE,
            GenerationState.ERROR,
            GenerationState.STOPPED,
        )


_TERMINAL_STATUS = {
    GenerationState.DONE: MessageStatus.DONE,
    GenerationState.ERROR: MessageStatus.ERROR,
    GenerationState.STOPPED: MessageStatus.STOPPED,
}


@dataclass
class GenerationOptions:
    """Per-request generation parameters; None falls back to settings."""

    timeout: Optional[float] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


def message_text(message: Message) -> str:
    """Plain text of a message: its content, else the text of its parts."""
    if message.content:
        return message.content
    texts = []
    for part in message.parts or []:
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            texts.append(part["text"])
        elif isinstance(part, str):
            texts.append(part)
    return "\n".join(texts)


def build_history(messages: list[Message]) -> list[ChatMessage]:
    """Convert stored messages into provider history, skipping empty turns."""
    history = []
    for message in messages:
        if message.status == MessageStatus.ERROR and not message.content:
            continue
        text = message_text(message)
        if text:
            history.append(ChatMessage(role=message.role.value, content=text))
    return history


class Generation:
    """One assistant response being produced for a thread.

    Iterate to pull text fragments. The sequence is lazy and can be consumed
    only once; iterating again continues (or finds exhausted) the same run.
    """

    def __init__(
        self,
        coordinator: "StreamingCoordinator",
        owner_id: str,
        thread_id: str,
        user_message_id: str,
        assistant_message_id: str,
        model: str,
        provider: ModelProvider,
        history: list[ChatMessage],
        options: GenerationOptions,
    ):
        self.coordinator = coordinator
        self.owner_id = owner_id
        self.thread_id = thread_id
        self.user_message_id = user_message_id
        self.assistant_message_id = assistant_message_id
        self.model = model
        self.provider = provider
        self.history = history
        self.options = options

        self.state = GenerationState.PENDING
        self.content = ""
        self.error: Optional[ThreadSyncError] = None
        self.message: Optional[Message] = None  # Final snapshot once terminal

        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        # Serializes writes to the assistant message and terminal transitions
        self._write_lock = threading.RLock()
        self._running = False
        self._iterator: Optional[Generator[str, None, None]] = None

    @property
    def timeout(self) -> float:
        return self.options.timeout or self.coordinator.config.generation_timeout_seconds

    @property
    def max_tokens(self) -> int:
        return self.options.max_tokens or self.coordinator.config.generation_max_tokens

    @property
    def temperature(self) -> float:
        if self.options.temperature is not None:
            return self.options.temperature
        return self.coordinator.config.generation_temperature

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __iter__(self) -> Iterator[str]:
        if self._iterator is None:
            self._iterator = self._stream()
        return self._iterator

    def cancel(self) -> None:
        """
        Stop the generation.

        No further fragments are delivered. The assistant message is stored
        as stopped with the content received so far before this returns, and
        a consumer blocked on the provider is woken by aborting its request.
        """
        self._cancelled.set()
        with self._lock:
            was_running = self._running
            self._running = True
        try:
            self._finish(GenerationState.STOPPED)
        finally:
            self.coordinator._release(self)
        if was_running and self.state == GenerationState.STOPPED:
            self.provider.abort()

    def close(self) -> None:
        """Release the generation when the consumer goes away."""
        if self._iterator is not None:
            self._iterator.close()
        if not self.state.is_terminal:
            self.cancel()

    def complete(self) -> Message:
        """
        Run the generation without streaming and return the final message.

        Raises:
            UpstreamTimeoutError: Provider timed out (message left in error)
            GenerationFailedError: Provider failed (message left in error)
        """
        if not self._claim():
            raise ConflictError(f"Generation for thread {self.thread_id} already ran")

        try:
            response = self.provider.complete(
                self.history,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=self.timeout,
            )
        except ThreadSyncError as e:
            if not self.cancelled:
                self._fail(e)
                raise
        except Exception as e:
            if not self.cancelled:
                error = GenerationFailedError(
                    f"Generation failed: {e}", provider=self.provider.provider_name
                )
                self._fail(error)
                raise error from e
        else:
            with self._write_lock:
                if not self.state.is_terminal:
                    self.content = response.content
                    self._finish(GenerationState.DONE)
        finally:
            self.coordinator._release(self)

        if self.message is None:
            raise NotFoundError("message", self.assistant_message_id)
        return self.message

    # ===== Internals =====

    def _claim(self) -> bool:
        with self._lock:
            if self._running or self.state.is_terminal:
                return False
            self._running = True
            return True

    def _stream(self) -> Generator[str, None, None]:
        if not self._claim():
            return

        config = self.coordinator.config
        deadline = time.monotonic() + self.timeout
        last_checkpoint = time.monotonic()
        chunks_since_checkpoint = 0
        delivered = False
        upstream: Optional[Iterator[str]] = None

        try:
            if self.cancelled:
                self._finish(GenerationState.STOPPED)
                return

            upstream = iter(
                self.provider.stream(
                    self.history,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    timeout=self.timeout,
                )
            )
            while True:
                if self.cancelled:
                    self._finish(GenerationState.STOPPED)
                    return
                try:
                    fragment = next(upstream)
                except StopIteration:
                    break
                if self.cancelled:
                    self._finish(GenerationState.STOPPED)
                    return
                if time.monotonic() > deadline:
                    raise UpstreamTimeoutError(
                        f"Generation exceeded {self.timeout}s", timeout=self.timeout
                    )

                with self._write_lock:
                    if self.state.is_terminal:
                        # Stopped by cancel() while waiting on the provider
                        return
                    self.content += fragment
                    chunks_since_checkpoint += 1
                    elapsed_ms = (time.monotonic() - last_checkpoint) * 1000
                    checkpoint_due = self.state == GenerationState.PENDING or (
                        chunks_since_checkpoint >= config.stream_checkpoint_chunks
                        or elapsed_ms >= config.stream_checkpoint_interval_ms
                    )

                    if checkpoint_due:
                        if not self._persist(MessageStatus.STREAMING):
                            self._stop_quietly()
                            return
                        self.state = GenerationState.STREAMING
                        chunks_since_checkpoint = 0
                        last_checkpoint = time.monotonic()

                delivered = True
                yield fragment

            self._finish(
                GenerationState.STOPPED if self.cancelled else GenerationState.DONE
            )

        except GeneratorExit:
            # Consumer closed the stream (client disconnect or explicit close)
            self._finish(GenerationState.STOPPED)
            raise
        except ThreadSyncError as e:
            if self.cancelled:
                return
            self._fail(e)
            if not delivered:
                raise
        except Exception as e:
            if self.cancelled:
                return
            error = GenerationFailedError(
                f"Generation failed: {e}", provider=self.provider.provider_name
            )
            self._fail(error)
            if not delivered:
                raise error from e
        finally:
            if upstream is not None and hasattr(upstream, "close"):
                upstream.close()
            self.coordinator._release(self)

    def _fail(self, error: ThreadSyncError) -> None:
        logger.warning(
            f"Generation for thread {self.thread_id} failed after "
            f"{len(self.content)} chars: {error.message}"
        )
        self.error = error
        self._finish(GenerationState.ERROR, error_message=error.message)

    def _stop_quietly(self) -> None:
        logger.info(
            f"Assistant message {self.assistant_message_id} was removed or "
            f"finalized elsewhere; stopping generation"
        )
        self._cancelled.set()
        with self._write_lock:
            if not self.state.is_terminal:
                self.state = GenerationState.STOPPED

    def _finish(
        self, state: GenerationState, error_message: Optional[str] = None
    ) -> bool:
        """Store a terminal state; False if the generation had already ended."""
        with self._write_lock:
            if self.state.is_terminal:
                return False
            if not self._persist(_TERMINAL_STATUS[state], error_message, final=True):
                self._stop_quietly()
                return False
            self.state = state
        logger.info(
            f"Generation for thread {self.thread_id} ended {state.value} "
            f"({len(self.content)} chars)"
        )
        return True

    def _persist(
        self,
        status: MessageStatus,
        error_message: Optional[str] = None,
        final: bool = False,
    ) -> bool:
        """
        Write accumulated content and status to the assistant message.

        Returns:
            False if the message no longer exists or was finalized by another
            writer, True otherwise
        """
        with self.coordinator.session_factory() as session:
            message = session.get(Message, self.assistant_message_id)
            if message is None or not message.status.is_live:
                return False

            message.content = self.content
            message.status = status
            message.error_message = error_message
            message.updated_at = utc_now()
            if final:
                thread = session.get(Thread, self.thread_id)
                if thread is not None:
                    thread.touch()

            try:
                session.flush()
            except StaleDataError:
                session.rollback()
                return False

            if final:
                session.refresh(message)
                session.expunge(message)
                self.message = message
            return True


class StreamingCoordinator:
    """Starts, tracks and cancels generations; at most one per thread."""

    def __init__(
        self,
        provider_factory: Optional[ProviderFactory] = None,
        session_factory: Optional[SessionFactory] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.provider_factory: ProviderFactory = provider_factory or (
            lambda model_id: provider_for_model(model_id, self.config)
        )
        if session_factory is None:
            from threadsync.db.connection import db_session

            session_factory = db_session
        self.session_factory: SessionFactory = session_factory

        self._active: dict[str, Any] = {}
        self._lock = threading.Lock()

    def active(self, thread_id: str) -> Optional[Generation]:
        """Get the generation running in this process for a thread, if any."""
        with self._lock:
            generation = self._active.get(thread_id)
        return generation if isinstance(generation, Generation) else None

    def state_of(self, thread_id: str) -> GenerationState:
        """State of the thread's generation in this process (IDLE when none)."""
        with self._lock:
            generation = self._active.get(thread_id)
        if generation is None:
            return GenerationState.IDLE
        if isinstance(generation, Generation):
            return generation.state
        return GenerationState.PENDING

    def start(
        self,
        requester_id: str,
        thread_id: str,
        content: Optional[str] = None,
        parts: Optional[list[Any]] = None,
        model: Optional[str] = None,
        options: Optional[GenerationOptions] = None,
    ) -> Generation:
        """
        Post a user message and begin an assistant response to it.

        The user message (done) and the assistant message (pending, empty,
        annotated with its model) are committed together before this returns.

        Raises:
            ConflictError: The thread already has an active generation
            NotFoundError / ForbiddenError: Thread missing or not owned
            ValidationError: No content, or malformed model id
        """
        options = options or GenerationOptions()
        model_id = model or self.config.default_model

        reservation = object()
        with self._lock:
            if thread_id in self._active:
                raise ConflictError(
                    f"Thread {thread_id} already has an active generation"
                )
            self._active[thread_id] = reservation

        try:
            provider = self.provider_factory(model_id)

            with self.session_factory() as session:
                engine = ConversationEngine(session)
                engine.get_owned_thread(requester_id, thread_id, lock=True)

                stale_before = utc_now() - timedelta(
                    seconds=self.config.generation_stale_after_seconds
                )
                live = MessageRepository(session).find_live_generation(
                    thread_id, active_since=stale_before
                )
                if live is not None:
                    raise ConflictError(
                        f"Thread {thread_id} already has an active generation"
                    )

                user_message = engine.post_message(
                    requester_id,
                    thread_id,
                    MessageRole.USER,
                    content=content,
                    parts=parts,
                )
                history = build_history(engine.list_messages(requester_id, thread_id))
                assistant_message = engine.post_message(
                    requester_id,
                    thread_id,
                    MessageRole.ASSISTANT,
                    content="",
                    model=model_id,
                    status=MessageStatus.PENDING,
                    annotations=with_model_annotation(None, model_id),
                )
                user_message_id = user_message.id
                assistant_message_id = assistant_message.id

        except BaseException:
            with self._lock:
                if self._active.get(thread_id) is reservation:
                    del self._active[thread_id]
            raise

        generation = Generation(
            coordinator=self,
            owner_id=requester_id,
            thread_id=thread_id,
            user_message_id=user_message_id,
            assistant_message_id=assistant_message_id,
            model=model_id,
            provider=provider,
            history=history,
            options=options,
        )
        with self._lock:
            self._active[thread_id] = generation

        logger.info(
            f"Started generation for thread {thread_id} with {model_id} "
            f"(assistant message {assistant_message_id})"
        )
        return generation

    def generate(
        self,
        requester_id: str,
        thread_id: str,
        content: Optional[str] = None,
        parts: Optional[list[Any]] = None,
        model: Optional[str] = None,
        options: Optional[GenerationOptions] = None,
        stream: bool = False,
    ) -> Message | Generation:
        """
        Start a generation; without streaming, wait for and return the message.

        Returns:
            The final assistant Message when ``stream`` is False, otherwise
            the Generation to iterate
        """
        generation = self.start(
            requester_id, thread_id, content, parts=parts, model=model, options=options
        )
        if stream:
            return generation
        return generation.complete()

    def cancel(self, requester_id: str, thread_id: str) -> bool:
        """
        Stop the active generation of a thread.

        A generation owned by another worker process is stopped through the
        database: its assistant message is marked stopped and that worker
        ends the stream at its next checkpoint.

        Returns:
            True if a generation was stopped, False if none was active
        """
        with self.session_factory() as session:
            engine = ConversationEngine(session)
            engine.get_owned_thread(requester_id, thread_id)

            generation = self.active(thread_id)
            if generation is None:
                live = MessageRepository(session).find_live_generation(thread_id)
                if live is None:
                    return False
                live.status = MessageStatus.STOPPED
                live.updated_at = utc_now()
                try:
                    session.flush()
                except StaleDataError as e:
                    raise ConflictError(
                        f"Generation for thread {thread_id} changed while stopping"
                    ) from e
                logger.info(f"Marked remote generation {live.id} as stopped")
                return True

        generation.cancel()
        logger.info(f"Cancelled generation for thread {thread_id}")
        return True

    def _release(self, generation: Generation) -> None:
        with self._lock:
            if self._active.get(generation.thread_id) is generation:
                del self._active[generation.thread_id]
