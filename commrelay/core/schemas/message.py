"""
Pydantic schemas for messages.

``MessageEnvelope`` is the serialized queue body and is part of the wire
contract shared by the router and the delivery workers, so its JSON keys are
camelCase (``messageId``, ``traceId``, ...). Python code uses the snake_case
attribute names.
"""

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt
from pydantic.alias_generators import to_camel

from commrelay.core.enums import Channel, MessageStatus


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


# ============================================================================
# Inbound request
# ============================================================================


class MessageInput(CamelModel):
    """Normalized inbound communication request.

    Only types are checked here; presence and recipient-format rules are
    enforced by the channel router so that a rejected request still gets a
    trace id.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "channel": "email",
                "recipient": "a@b.com",
                "subject": "Hi",
                "body": "Hello there",
                "metadata": {"campaign": "welcome"},
            }
        },
    )

    channel: Annotated[Channel, Field(description="Delivery channel")]
    recipient: Annotated[
        str, Field(description="Email address or E.164-like phone number")
    ]
    subject: Annotated[
        str | None, Field(description="Subject line, required for email")
    ] = None
    body: Annotated[str, Field(description="Message body")]
    metadata: Annotated[
        dict[str, Any] | None,
        Field(description="Opaque key/value payload passed through unmodified"),
    ] = None


# ============================================================================
# Queue envelope
# ============================================================================


class MessageEnvelope(CamelModel):
    """The unit of work carried through the channel queues."""

    message_id: str
    trace_id: str
    subtrace_id: str
    channel: Channel
    recipient: str
    subject: str | None = None
    body: str
    metadata: dict[str, Any] | None = None
    retry_count: NonNegativeInt = 0
    max_retries: NonNegativeInt = 3
    status: MessageStatus = MessageStatus.QUEUED
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_body(self) -> bytes:
        """Serialize to the JSON queue body."""
        return self.model_dump_json(by_alias=True).encode()

    @classmethod
    def from_body(cls, body: bytes) -> "MessageEnvelope":
        """Parse a JSON queue body. Raises ``pydantic.ValidationError`` if malformed."""
        return cls.model_validate_json(body)


# ============================================================================
# Outbound responses
# ============================================================================


class RouteResult(BaseModel):
    """Outcome of a routing call that raised no error.

    ``duplicate`` is True when the fingerprint was already reserved; in that
    case nothing was enqueued and ``message_id`` is None.
    """

    trace_id: str
    message_id: str | None = None
    queue_name: str | None = None
    duplicate: bool = False


class SendMessageResponse(CamelModel):
    """Response returned to the caller of ``POST /messages``."""

    success: bool
    message_id: str | None = None
    trace_id: str
    message: str


class DeliveryRecordResponse(CamelModel):
    """Delivery record as returned by ``GET /messages/{message_id}``."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    message_id: str
    trace_id: str
    channel: Channel
    recipient: str
    subject: str | None = None
    body: str
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias="message_metadata"
    )
    status: MessageStatus
    retry_count: int
    delivered_at: datetime | None = None
    failed_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


__all__ = [
    "CamelModel",
    "DeliveryRecordResponse",
    "MessageEnvelope",
    "MessageInput",
    "RouteResult",
    "SendMessageResponse",
]
