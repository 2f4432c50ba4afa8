from commrelay.core.services.brevo import BrevoService
from commrelay.core.services.dedup import (
    DedupBackend,
    DeduplicationGate,
    MemoryBackend,
    RedisBackend,
    Reservation,
    build_dedup_backend,
    fingerprint,
)
from commrelay.core.services.event_log import (
    EventLog,
    KafkaEventLog,
    LoggerEventLog,
    build_event_log,
)
from commrelay.core.services.redis_service import RedisService
from commrelay.core.services.router import ChannelRouter, validate_message
from commrelay.core.services.status_store import StatusStore
from commrelay.core.services.trace import (
    TraceCorrelator,
    TraceEvent,
    new_message_id,
    new_subtrace_id,
    new_trace_id,
)
from commrelay.core.services.twilio import TwilioService

__all__ = [
    # Provider clients
    "BrevoService",
    "RedisService",
    "TwilioService",
    # Deduplication
    "DedupBackend",
    "DeduplicationGate",
    "MemoryBackend",
    "RedisBackend",
    "Reservation",
    "build_dedup_backend",
    "fingerprint",
    # Event log / tracing
    "EventLog",
    "KafkaEventLog",
    "LoggerEventLog",
    "TraceCorrelator",
    "TraceEvent",
    "build_event_log",
    "new_message_id",
    "new_subtrace_id",
    "new_trace_id",
    # Routing and status
    "ChannelRouter",
    "StatusStore",
    "validate_message",
]
