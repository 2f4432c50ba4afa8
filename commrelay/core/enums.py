from enum import Enum


class Channel(str, Enum):
    """Delivery channel of a message. Fixed at routing time."""

    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class MessageStatus(str, Enum):
    """Lifecycle status of a message."""

    QUEUED = "queued"  # Accepted by the router, waiting in a channel queue
    PROCESSING = "processing"  # Picked up by a delivery worker (also during retries)
    DELIVERED = "delivered"  # Terminal: delivery action succeeded
    FAILED = "failed"  # Terminal: retries exhausted, dead-lettered

    @property
    def is_terminal(self) -> bool:
        return self in (MessageStatus.DELIVERED, MessageStatus.FAILED)


class LogLevel(str, Enum):
    """Level of a trace event published to the event log."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class TraceService(str, Enum):
    """Logical producer name carried by every trace event."""

    ROUTER = "router"
    DELIVERY = "delivery"


class DedupFailurePolicy(str, Enum):
    """What the deduplication gate answers when the cache is unreachable."""

    OPEN = "open"  # Let the request through (possible duplicate delivery)
    CLOSED = "closed"  # Treat the request as a duplicate (possible dropped message)


__all__ = [
    "Channel",
    "DedupFailurePolicy",
    "LogLevel",
    "MessageStatus",
    "TraceService",
]
