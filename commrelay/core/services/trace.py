"""
Trace correlation.

Every inbound request gets a ``traceId`` that is carried by every event it
produces. Each hop (routing, each delivery attempt) gets a fresh
``subtraceId``. Events are written to the local ``trace_logger`` and
published to the event log keyed by ``traceId``; a publish failure is
reported locally and never propagated to the caller.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from commrelay.core.config import settings, trace_logger
from commrelay.core.enums import LogLevel, TraceService
from commrelay.core.exceptions.types import EventLogPublishException
from commrelay.core.services.event_log import EventLog


def new_trace_id() -> str:
    return f"trace_{uuid.uuid4()}"


def new_subtrace_id() -> str:
    return f"subtrace_{uuid.uuid4().hex}"


def new_message_id() -> str:
    return f"msg_{uuid.uuid4()}"


class TraceEvent(BaseModel):
    """A single trace event as published to the event log."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    service: TraceService
    level: LogLevel
    message: str
    trace_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    subtrace_id: str | None = None
    message_id: str | None = None
    channel: str | None = None
    retry_count: int | None = None
    queue_name: str | None = None
    error: str | None = None
    duration: str | None = None

    def to_value(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


_LOG_METHODS = {
    LogLevel.DEBUG: "debug",
    LogLevel.INFO: "info",
    LogLevel.WARN: "warning",
    LogLevel.ERROR: "error",
}


class TraceCorrelator:
    """
    Emits trace events for one logical service.

    Args:
        service: Producer name carried by every event (``router`` or ``delivery``).
        event_log: Event log backend to publish to.
        topic: Event log topic. Defaults to ``EVENT_LOG_TOPIC``.
    """

    def __init__(
        self,
        service: TraceService,
        event_log: EventLog,
        topic: str = settings.EVENT_LOG_TOPIC,
    ):
        self.service = service
        self.event_log = event_log
        self.topic = topic

    async def emit(
        self,
        level: LogLevel,
        message: str,
        trace_id: str,
        **fields: Any,
    ) -> TraceEvent:
        """
        Build, log and publish a trace event.

        Args:
            level: Event level.
            message: Human-readable event message.
            trace_id: Trace identifier of the request.
            **fields: Optional event fields (``subtrace_id``, ``message_id``,
                ``channel``, ``retry_count``, ``queue_name``, ``error``,
                ``duration``).

        Returns:
            The event that was emitted, whether or not publishing succeeded.
        """
        event = TraceEvent(
            service=self.service,
            level=level,
            message=message,
            trace_id=trace_id,
            **fields,
        )
        value = event.to_value()
        getattr(trace_logger, _LOG_METHODS[LogLevel(level)])(f"{message} {value}")

        try:
            await self.event_log.publish(self.topic, trace_id, value)
        except EventLogPublishException as e:
            trace_logger.error(
                f"Failed to publish trace event for {trace_id}: {e.message}"
            )
        except Exception as e:
            trace_logger.error(
                f"Unexpected error publishing trace event for {trace_id}: {str(e)}"
            )
        return event


__all__ = [
    "TraceCorrelator",
    "TraceEvent",
    "new_message_id",
    "new_subtrace_id",
    "new_trace_id",
]
