"""Event log backends for trace events.

The trace correlator publishes every event through an ``EventLog``. The
concrete backend is chosen at startup from ``EVENT_LOG_BACKEND``:

* ``kafka`` - :class:`KafkaEventLog`, one ``AIOKafkaProducer`` per process.
* ``logger`` - :class:`LoggerEventLog`, one JSON line per event on
  ``event_log_logger``; used for local runs and tests.

Backends raise ``EventLogPublishException`` on failure; the correlator
decides what to do with it.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from commrelay.core.config import Settings, event_log_logger, settings
from commrelay.core.exceptions.types import EventLogPublishException


class EventLog(Protocol):
    """Append-only, partitioned event log."""

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def publish(self, topic: str, key: str, value: dict[str, Any]) -> None: ...


class KafkaEventLog:
    """
    Kafka-backed event log.

    Values are JSON-encoded, keys UTF-8 encoded so that all events of one
    trace land on the same partition.

    Example:
        >>> event_log = KafkaEventLog("localhost:9092", client_id="commrelay")
        >>> await event_log.start()
        >>> await event_log.publish("communication-logs", "trace_1", {"level": "info"})
        >>> await event_log.close()
    """

    def __init__(
        self,
        bootstrap_servers: str = settings.KAFKA_BOOTSTRAP_SERVERS,
        client_id: str = settings.KAFKA_CLIENT_ID,
    ):
        self._bootstrap_servers = bootstrap_servers
        self._client_id = client_id
        self._producer: AIOKafkaProducer | None = None

    async def start(self) -> None:
        """Create and start the producer if it is not running yet."""
        if self._producer is not None:
            return
        producer = AIOKafkaProducer(
            bootstrap_servers=self._bootstrap_servers,
            client_id=self._client_id,
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda k: k.encode("utf-8"),
        )
        await producer.start()
        self._producer = producer
        event_log_logger.info(
            f"Kafka producer started (bootstrap_servers={self._bootstrap_servers})"
        )

    async def close(self) -> None:
        """Stop the producer. Safe to call when it was never started."""
        if self._producer is not None:
            try:
                await self._producer.stop()
                event_log_logger.info("Kafka producer stopped")
            finally:
                self._producer = None

    async def publish(self, topic: str, key: str, value: dict[str, Any]) -> None:
        """
        Publish one event and wait for the broker acknowledgement.

        Raises:
            EventLogPublishException: If the producer is not started or the
                send fails.
        """
        if self._producer is None:
            raise EventLogPublishException("Kafka producer not started")
        try:
            await self._producer.send_and_wait(topic, value=value, key=key)
        except KafkaError as e:
            raise EventLogPublishException(
                f"Failed to publish to {topic}: {str(e)}"
            ) from e


class LoggerEventLog:
    """Event log that writes each event as a JSON line to ``event_log_logger``."""

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def publish(self, topic: str, key: str, value: dict[str, Any]) -> None:
        try:
            line = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            raise EventLogPublishException(
                f"Failed to serialize event for {topic}: {str(e)}"
            ) from e
        event_log_logger.info(f"[{topic}] key={key} {line}")


def build_event_log(config: Settings = settings) -> EventLog:
    """Create the event log backend named by ``EVENT_LOG_BACKEND``."""
    if config.EVENT_LOG_BACKEND == "kafka":
        return KafkaEventLog(
            bootstrap_servers=config.KAFKA_BOOTSTRAP_SERVERS,
            client_id=config.KAFKA_CLIENT_ID,
        )
    return LoggerEventLog()


__all__ = ["EventLog", "KafkaEventLog", "LoggerEventLog", "build_event_log"]
