"""
Pytest configuration and fixtures for threadsync tests.

This module provides shared fixtures for the database, the conversation
services, fake model providers and the FastAPI test client.
"""

import time
from contextlib import contextmanager
from typing import Generator, Iterator, Optional, Sequence

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from threadsync.config import Settings
from threadsync.db.connection import enable_sqlite_foreign_keys
from threadsync.models.db import Base, Message, MessageRole, Thread
from threadsync.providers.base import ChatMessage, LLMResponse, ModelProvider
from threadsync.providers.title import TitleGenerator
from threadsync.services import ConversationEngine, ShareService, StreamingCoordinator

OWNER = "alice"
OTHER_USER = "bob"


class FakeProvider(ModelProvider):
    """Scripted model provider.

    Streams ``fragments`` one by one; raises ``error`` once ``error_after``
    fragments were produced. ``complete`` returns the joined fragments.
    """

    def __init__(
        self,
        fragments: Sequence[str] = ("Hello", ", ", "world"),
        error: Optional[Exception] = None,
        error_after: int = 0,
        delay: float = 0.0,
        name: str = "fake",
    ):
        super().__init__()
        self.fragments = list(fragments)
        self.error = error
        self.error_after = error_after
        self.delay = delay
        self.name = name
        self.calls: list[list[ChatMessage]] = []
        self.closed = False

    @property
    def provider_name(self) -> str:
        return self.name

    @property
    def model_name(self) -> str:
        return "fake-model"

    def complete(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int = 2000,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        content = "".join(self.fragments)
        return LLMResponse(
            content=content,
            prompt_tokens=1,
            completion_tokens=len(self.fragments),
            total_tokens=1 + len(self.fragments),
            finish_reason="stop",
            model="fake-model",
            duration_ms=1.0,
        )

    def stream(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int = 2000,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
    ) -> Iterator[str]:
        self.calls.append(list(messages))
        try:
            for index, fragment in enumerate(self.fragments):
                if self.error is not None and index == self.error_after:
                    raise self.error
                if self.delay:
                    time.sleep(self.delay)
                yield fragment
            if self.error is not None and self.error_after >= len(self.fragments):
                raise self.error
        finally:
            self.closed = True


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    engine = create_engine(
        "sqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={
            "check_same_thread": False
        },  # Allow cross-thread access for TestClient
    )
    enable_sqlite_foreign_keys(engine)

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs work with pysqlite
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test.

    Each test runs inside one connection-level transaction that is rolled
    back afterwards. The session's own commits and rollbacks map onto
    savepoints, so code under test can commit freely.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = sessionmaker(
        bind=connection,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def session_factory(db_session: Session):
    """Session factory for the streaming coordinator sharing the test session."""

    @contextmanager
    def factory() -> Generator[Session, None, None]:
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    return factory


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment, with fast checkpoints."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        openai_api_key="",
        openrouter_api_key="",
        anthropic_api_key="",
        default_model="openai/gpt-4o-mini",
        stream_checkpoint_chunks=20,
        stream_checkpoint_interval_ms=60_000,
        generation_timeout_seconds=30.0,
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def title_provider() -> FakeProvider:
    return FakeProvider(fragments=['"Weekend Trip Ideas"'])


@pytest.fixture
def title_generator(title_provider: FakeProvider, test_settings: Settings) -> TitleGenerator:
    return TitleGenerator(provider_factory=lambda: title_provider, config=test_settings)


@pytest.fixture
def engine(db_session: Session, title_generator: TitleGenerator) -> ConversationEngine:
    return ConversationEngine(db_session, title_generator=title_generator)


@pytest.fixture
def share_service(db_session: Session) -> ShareService:
    return ShareService(db_session)


@pytest.fixture
def coordinator(
    fake_provider: FakeProvider, session_factory, test_settings: Settings
) -> StreamingCoordinator:
    return StreamingCoordinator(
        provider_factory=lambda model_id: fake_provider,
        session_factory=session_factory,
        config=test_settings,
    )


@pytest.fixture
def sample_thread(engine: ConversationEngine) -> Thread:
    """A private thread owned by OWNER with no messages."""
    return engine.create_thread(OWNER, title="Planning")


@pytest.fixture
def sample_messages(engine: ConversationEngine, sample_thread: Thread) -> list[Message]:
    """Four alternating user/assistant messages in sample_thread."""
    turns = [
        (MessageRole.USER, "Where should we go?"),
        (MessageRole.ASSISTANT, "How about the coast?"),
        (MessageRole.USER, "Which coast?"),
        (MessageRole.ASSISTANT, "The north one."),
    ]
    return [
        engine.post_message(OWNER, sample_thread.id, role, content=content)
        for role, content in turns
    ]


def auth_headers(user_id: str) -> dict[str, str]:
    from threadsync.api.auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def owner_headers() -> dict[str, str]:
    return auth_headers(OWNER)


@pytest.fixture
def other_headers() -> dict[str, str]:
    return auth_headers(OTHER_USER)


@pytest.fixture
def api_client(
    db_session: Session,
    coordinator: StreamingCoordinator,
    title_generator: TitleGenerator,
):
    """Create a test client for FastAPI with database and service overrides."""
    from fastapi.testclient import TestClient

    from threadsync.api.app import app
    from threadsync.api.dependencies import get_coordinator, get_title_generator
    from threadsync.db.connection import get_db

    # Override the get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_title_generator] = lambda: title_generator

    client = TestClient(app)
    yield client

    # Clean up
    app.dependency_overrides.clear()
