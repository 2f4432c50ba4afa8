"""
Pytest configuration and core fixtures.

Tests run without external services: the status store uses an in-memory
SQLite database, deduplication uses the memory backend and trace events go
to the logger event log. Broker, Redis, Kafka and HTTP providers are mocked
per test.
"""

import os
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool


def pytest_configure(config):
    """Configure the environment before the application modules are imported."""
    os.environ["ENVIRONMENT"] = "test"
    os.environ.setdefault("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    os.environ["DATABASE_URL"] = os.environ["TEST_DATABASE_URL"]
    os.environ["DEDUP_BACKEND"] = "memory"
    os.environ["EVENT_LOG_BACKEND"] = "logger"
    os.environ["DELIVERY_MODE"] = "simulated"
    os.environ["ENABLE_MESSAGING"] = "false"
    os.environ.setdefault("LOG_DIR", "logs/test")


class RecordingEventLog:
    """Event log that keeps every published event in memory."""

    def __init__(self, fail: bool = False):
        self.events: list[tuple[str, str, dict[str, Any]]] = []
        self.fail = fail

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def publish(self, topic: str, key: str, value: dict[str, Any]) -> None:
        from commrelay.core.exceptions.types import EventLogPublishException

        if self.fail:
            raise EventLogPublishException("event log down")
        self.events.append((topic, key, value))

    @property
    def values(self) -> list[dict[str, Any]]:
        return [value for _, _, value in self.events]

    def messages(self) -> list[str]:
        return [value["message"] for value in self.values]


@pytest.fixture
def event_log() -> RecordingEventLog:
    return RecordingEventLog()


@pytest.fixture
def failing_event_log() -> RecordingEventLog:
    return RecordingEventLog(fail=True)


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the schema created.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    from commrelay.core.db import init_db

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def status_store(session_factory):
    from commrelay.core.services.status_store import StatusStore

    return StatusStore(session_factory)


@pytest.fixture
def make_envelope():
    """Factory for queue envelopes with sensible defaults."""
    from commrelay.core.enums import Channel
    from commrelay.core.schemas.message import MessageEnvelope

    def _make(**overrides) -> MessageEnvelope:
        data: dict[str, Any] = {
            "message_id": "msg_00000000-0000-4000-8000-000000000001",
            "trace_id": "trace_00000000-0000-4000-8000-000000000001",
            "subtrace_id": "subtrace_0001",
            "channel": Channel.EMAIL,
            "recipient": "a@b.com",
            "subject": "Hi",
            "body": "Hello there",
            "metadata": {"campaign": "welcome"},
        }
        data.update(overrides)
        return MessageEnvelope(**data)

    return _make


@pytest.fixture
def make_incoming():
    """Factory for mocked aio-pika incoming messages."""
    import aio_pika

    def _make(body: bytes, headers: dict | None = None) -> AsyncMock:
        message = AsyncMock(spec=aio_pika.IncomingMessage)
        message.body = body
        message.headers = headers or {}

        mock_context = AsyncMock()
        mock_context.__aenter__ = AsyncMock()
        mock_context.__aexit__ = AsyncMock(return_value=False)
        message.process.return_value = mock_context
        return message

    return _make
