"""
Channel router.

Validates an inbound request, checks it against the deduplication gate and
enqueues it to the durable queue of its channel. Routing is a single
synchronous attempt; retrying belongs to the delivery stage.
"""

import re
from typing import Any, Protocol

from commrelay.core.config import router_logger, settings
from commrelay.core.enums import Channel, LogLevel, MessageStatus
from commrelay.core.exceptions.types import (
    MessageValidationException,
    RoutingException,
)
from commrelay.core.schemas.message import MessageEnvelope, MessageInput, RouteResult
from commrelay.core.services.dedup import DeduplicationGate, fingerprint
from commrelay.core.services.trace import (
    TraceCorrelator,
    new_message_id,
    new_subtrace_id,
    new_trace_id,
)
from commrelay.infrastructure.messaging.queues import queue_for_channel

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")

PHONE_CHANNELS = (Channel.SMS, Channel.WHATSAPP)


class QueuePublisher(Protocol):
    async def publish(
        self, queue_name: str, body: bytes, headers: dict[str, Any] | None = None
    ) -> None: ...


def validate_message(message: MessageInput) -> str | None:
    """
    Check field presence and recipient format.

    Returns:
        A human-readable reason if the message is invalid, otherwise None.
    """
    if not message.recipient.strip() or not message.body.strip():
        return "Recipient and body are required"

    if message.channel == Channel.EMAIL:
        if not message.subject or not message.subject.strip():
            return "Subject is required for email messages"
        if not EMAIL_PATTERN.fullmatch(message.recipient):
            return "Invalid email address"

    if message.channel in PHONE_CHANNELS and not PHONE_PATTERN.fullmatch(
        message.recipient
    ):
        return "Invalid phone number format"

    return None


def queue_headers(envelope: MessageEnvelope) -> dict[str, Any]:
    """Headers readable without deserializing the body."""
    return {
        "x-retry-count": envelope.retry_count,
        "x-trace-id": envelope.trace_id,
        "x-subtrace-id": envelope.subtrace_id,
    }


class ChannelRouter:
    """
    Routes validated, non-duplicate messages to their channel queue.

    Args:
        gate: Deduplication gate.
        publisher: Queue publisher.
        correlator: Trace correlator for the ``router`` service.
        max_retries: ``maxRetries`` stamped on every envelope.
    """

    def __init__(
        self,
        gate: DeduplicationGate,
        publisher: QueuePublisher,
        correlator: TraceCorrelator,
        max_retries: int = settings.DELIVERY_MAX_RETRIES,
    ):
        self.gate = gate
        self.publisher = publisher
        self.correlator = correlator
        self.max_retries = max_retries

    async def route(self, message: MessageInput) -> RouteResult:
        """
        Route one inbound message.

        Returns:
            RouteResult with ``message_id`` and ``queue_name`` on success, or
            ``duplicate=True`` (and no ``message_id``) when the fingerprint was
            already reserved.

        Raises:
            MessageValidationException: If the message fails validation. Nothing
                is reserved or enqueued.
            RoutingException: If the message could not be submitted to its queue.
        """
        trace_id = new_trace_id()
        router_logger.info(
            f"Received message request trace_id={trace_id} channel={message.channel.value}"
        )

        reason = validate_message(message)
        if reason is not None:
            router_logger.warning(f"Rejected message trace_id={trace_id}: {reason}")
            raise MessageValidationException(reason, trace_id=trace_id)

        fp = fingerprint(message.channel, message.recipient, message.body)
        reservation = await self.gate.reserve(fp)
        if reservation.already_reserved:
            router_logger.warning(
                f"Duplicate message detected trace_id={trace_id} channel={message.channel.value}"
            )
            return RouteResult(trace_id=trace_id, duplicate=True)

        queue_name = queue_for_channel(message.channel)
        envelope = MessageEnvelope(
            message_id=new_message_id(),
            trace_id=trace_id,
            subtrace_id=new_subtrace_id(),
            channel=message.channel,
            recipient=message.recipient,
            subject=message.subject,
            body=message.body,
            metadata=message.metadata,
            retry_count=0,
            max_retries=self.max_retries,
            status=MessageStatus.QUEUED,
        )

        try:
            await self.publisher.publish(
                queue_name, envelope.to_body(), queue_headers(envelope)
            )
        except Exception as e:
            router_logger.error(
                f"Failed to route message {envelope.message_id} to {queue_name}: {str(e)}"
            )
            await self.gate.release(fp)
            await self.correlator.emit(
                LogLevel.ERROR,
                "Failed to route message",
                trace_id,
                subtrace_id=envelope.subtrace_id,
                message_id=envelope.message_id,
                channel=envelope.channel.value,
                error=str(e),
            )
            raise RoutingException(
                f"Failed to send message to queue: {str(e)}",
                trace_id=trace_id,
                message_id=envelope.message_id,
            ) from e

        await self.correlator.emit(
            LogLevel.INFO,
            "Message routed to queue",
            trace_id,
            subtrace_id=envelope.subtrace_id,
            message_id=envelope.message_id,
            channel=envelope.channel.value,
            queue_name=queue_name,
        )
        router_logger.info(
            f"Message {envelope.message_id} sent to {queue_name} trace_id={trace_id}"
        )
        return RouteResult(
            trace_id=trace_id,
            message_id=envelope.message_id,
            queue_name=queue_name,
        )


__all__ = [
    "ChannelRouter",
    "EMAIL_PATTERN",
    "PHONE_PATTERN",
    "QueuePublisher",
    "queue_headers",
    "validate_message",
]
