"""
Delivery executor.

Consumes one message at a time from a channel queue and runs its delivery
action with bounded in-process retry:

    attempt 0 fails -> wait 1s -> attempt 1 fails -> wait 2s
    -> attempt 2 fails -> wait 4s -> attempt 3 fails -> dead-letter

A message redelivered after a crash mid-sequence resumes from the retry
count already recorded for it.

The message stays unacknowledged for the whole sequence. It is acknowledged
after a successful attempt, or rejected without requeue once ``maxRetries``
is exhausted so the broker routes it to ``dead_letter_queue``.
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Mapping, Sequence

from aio_pika.abc import AbstractIncomingMessage
from pydantic import ValidationError

from commrelay.core.config import delivery_logger, settings
from commrelay.core.db.models import DeliveryRecord
from commrelay.core.enums import Channel, LogLevel, MessageStatus
from commrelay.core.exceptions.types import DatabaseException, DeliveryException
from commrelay.core.schemas.message import MessageEnvelope
from commrelay.core.services.status_store import StatusStore
from commrelay.core.services.trace import TraceCorrelator, new_subtrace_id
from commrelay.infrastructure.messaging.handlers import DELIVERY_ACTIONS, DeliveryAction


def _recover_trace_id(body: bytes) -> str | None:
    """Best-effort read of ``traceId`` from a body that failed validation."""
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    if isinstance(payload, dict) and isinstance(payload.get("traceId"), str):
        return payload["traceId"]
    return None


class DeliveryExecutor:
    """
    Runs delivery actions for consumed messages.

    Args:
        status_store: Delivery record store.
        correlator: Trace correlator for the ``delivery`` service.
        actions: Delivery action per channel.
        backoff: Delay in seconds before retry ``n`` is ``backoff[n]``; retries
            past the end of the table reuse the last delay.
    """

    def __init__(
        self,
        status_store: StatusStore,
        correlator: TraceCorrelator,
        actions: Mapping[Channel, DeliveryAction] = DELIVERY_ACTIONS,
        backoff: Sequence[float] = tuple(settings.DELIVERY_BACKOFF_SECONDS),
    ):
        if not backoff:
            raise ValueError("backoff must contain at least one delay")
        self.status_store = status_store
        self.correlator = correlator
        self.actions = actions
        self.backoff = tuple(backoff)

    def backoff_for(self, retry_count: int) -> float:
        return self.backoff[min(retry_count, len(self.backoff) - 1)]

    async def process_message(self, message: AbstractIncomingMessage) -> None:
        """
        Process one incoming queue message to completion.

        Every path ends in exactly one ``ack`` or ``reject(requeue=False)``.
        """
        async with message.process(requeue=False, ignore_processed=True):
            try:
                envelope = MessageEnvelope.from_body(message.body)
            except ValidationError as e:
                await self._reject_permanently(
                    message,
                    f"Malformed message payload: {e.error_count()} validation error(s)",
                    trace_id=_recover_trace_id(message.body),
                )
                return

            action = self.actions.get(envelope.channel)
            if action is None:
                await self._reject_permanently(
                    message,
                    f"No handler found for channel: {envelope.channel.value}",
                    trace_id=envelope.trace_id,
                    envelope=envelope,
                )
                return

            record = await self._mark_processing(envelope)
            if record is not None and record.status.is_terminal:
                await self._settle_redelivery(message, envelope, record)
                return

            retry_count = envelope.retry_count
            if record is not None:
                retry_count = max(retry_count, record.retry_count)
            await self._deliver(message, envelope, action, retry_count)

    async def _deliver(
        self,
        message: AbstractIncomingMessage,
        envelope: MessageEnvelope,
        action: DeliveryAction,
        retry_count: int,
    ) -> None:
        while True:
            started = time.monotonic()
            attempt = envelope.model_copy(
                update={
                    "retry_count": retry_count,
                    "subtrace_id": new_subtrace_id(),
                    "status": MessageStatus.PROCESSING,
                }
            )
            delivery_logger.info(
                f"Processing message {attempt.message_id} trace_id={attempt.trace_id} "
                f"channel={attempt.channel.value} retry_count={retry_count}"
            )
            await self._emit(LogLevel.INFO, "Started message delivery", attempt)

            try:
                result = await action(attempt)
                if not result.success:
                    raise DeliveryException("Delivery failed", channel=attempt.channel.value)
            except Exception as e:
                error = str(e) or e.__class__.__name__
                delivery_logger.error(
                    f"Delivery attempt failed for {attempt.message_id} "
                    f"retry_count={retry_count}: {error}"
                )
                await self._emit(
                    LogLevel.ERROR, "Message delivery failed", attempt, error=error
                )

                if retry_count < attempt.max_retries:
                    delay = self.backoff_for(retry_count)
                    delivery_logger.warning(
                        f"Delivery failed, retrying {attempt.message_id} in {delay}s"
                    )
                    await asyncio.sleep(delay)
                    retry_count += 1
                    await self._mark_processing(
                        attempt.model_copy(update={"retry_count": retry_count})
                    )
                    continue

                await self._dead_letter(message, attempt, error)
                return

            await message.ack()
            await self._mark_delivered(attempt, result.delivered_at)
            duration_ms = int((time.monotonic() - started) * 1000)
            await self._emit(
                LogLevel.INFO,
                "Message delivered successfully",
                attempt,
                duration=f"{duration_ms}ms",
            )
            delivery_logger.info(
                f"Message delivered successfully: {attempt.message_id} ({duration_ms}ms)"
            )
            return

    async def _dead_letter(
        self,
        message: AbstractIncomingMessage,
        envelope: MessageEnvelope,
        error: str,
    ) -> None:
        delivery_logger.error(
            f"Max retries exceeded, moving {envelope.message_id} to DLQ "
            f"trace_id={envelope.trace_id}"
        )
        try:
            await self.status_store.mark_failed(
                envelope, error_message=error, failed_at=datetime.now(timezone.utc)
            )
        except DatabaseException as e:
            delivery_logger.error(
                f"Failed to record failure of {envelope.message_id}: {e.message}"
            )
        await self._emit(
            LogLevel.ERROR, "Max retries exceeded, moved to DLQ", envelope, error=error
        )
        await message.reject(requeue=False)

    async def _reject_permanently(
        self,
        message: AbstractIncomingMessage,
        reason: str,
        trace_id: str | None,
        envelope: MessageEnvelope | None = None,
    ) -> None:
        delivery_logger.error(f"Rejecting message permanently: {reason}")
        if trace_id is not None:
            if envelope is not None:
                await self._emit(LogLevel.ERROR, "Message rejected", envelope, error=reason)
            else:
                await self.correlator.emit(
                    LogLevel.ERROR,
                    "Message rejected",
                    trace_id,
                    subtrace_id=new_subtrace_id(),
                    error=reason,
                )
        await message.reject(requeue=False)

    async def _settle_redelivery(
        self,
        message: AbstractIncomingMessage,
        envelope: MessageEnvelope,
        record: DeliveryRecord,
    ) -> None:
        delivery_logger.warning(
            f"Redelivered message {envelope.message_id} is already {record.status.value}"
        )
        if record.status == MessageStatus.DELIVERED:
            await message.ack()
        else:
            await message.reject(requeue=False)

    async def _mark_processing(self, envelope: MessageEnvelope) -> DeliveryRecord | None:
        try:
            return await self.status_store.mark_processing(envelope)
        except DatabaseException as e:
            delivery_logger.error(
                f"Failed to record processing of {envelope.message_id}: {e.message}"
            )
            return None

    async def _mark_delivered(
        self, envelope: MessageEnvelope, delivered_at: datetime
    ) -> None:
        try:
            await self.status_store.mark_delivered(envelope, delivered_at=delivered_at)
        except DatabaseException as e:
            delivery_logger.error(
                f"Failed to record delivery of {envelope.message_id}: {e.message}"
            )

    async def _emit(
        self,
        level: LogLevel,
        text: str,
        envelope: MessageEnvelope,
        **fields,
    ) -> None:
        await self.correlator.emit(
            level,
            text,
            envelope.trace_id,
            subtrace_id=envelope.subtrace_id,
            message_id=envelope.message_id,
            channel=envelope.channel.value,
            retry_count=envelope.retry_count,
            **fields,
        )


__all__ = ["DeliveryExecutor"]
