"""
Delivery status store.

Persists the lifecycle of each message as a ``DeliveryRecord`` through an
upsert keyed by ``message_id``. Writes for a record that has already reached
a terminal status are no-ops; the stored record is returned unchanged.
"""

from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commrelay.core.config import database_logger
from commrelay.core.db.crud import delivery_record_db
from commrelay.core.db.models import DeliveryRecord
from commrelay.core.enums import MessageStatus
from commrelay.core.schemas.message import MessageEnvelope


def _envelope_fields(envelope: MessageEnvelope) -> dict[str, Any]:
    return {
        "message_id": envelope.message_id,
        "trace_id": envelope.trace_id,
        "channel": envelope.channel,
        "recipient": envelope.recipient,
        "subject": envelope.subject,
        "body": envelope.body,
        "message_metadata": envelope.metadata,
        "retry_count": envelope.retry_count,
    }


class StatusStore:
    """
    Upsert-only adapter over the ``delivery_records`` table.

    Args:
        session_factory: Factory producing ``AsyncSession`` objects; one
            session is opened per operation.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _upsert(self, data: dict[str, Any]) -> DeliveryRecord:
        async with self.session_factory() as session:
            record = await delivery_record_db.upsert_status(session, data)
        if record.status != data["status"]:
            database_logger.info(
                f"Delivery record {data['message_id']} is {record.status.value}; "
                f"ignored transition to {data['status'].value}"
            )
        return record

    async def mark_processing(self, envelope: MessageEnvelope) -> DeliveryRecord:
        """Record that a delivery attempt is in progress."""
        return await self._upsert(
            {**_envelope_fields(envelope), "status": MessageStatus.PROCESSING}
        )

    async def mark_delivered(
        self,
        envelope: MessageEnvelope,
        delivered_at: datetime | None = None,
    ) -> DeliveryRecord:
        """Record a successful delivery."""
        return await self._upsert(
            {
                **_envelope_fields(envelope),
                "status": MessageStatus.DELIVERED,
                "delivered_at": delivered_at or datetime.now(timezone.utc),
                "error_message": None,
            }
        )

    async def mark_failed(
        self,
        envelope: MessageEnvelope,
        error_message: str,
        failed_at: datetime | None = None,
    ) -> DeliveryRecord:
        """Record that the message was dead-lettered after exhausting retries."""
        return await self._upsert(
            {
                **_envelope_fields(envelope),
                "status": MessageStatus.FAILED,
                "failed_at": failed_at or datetime.now(timezone.utc),
                "error_message": error_message,
            }
        )

    async def get(self, message_id: str) -> DeliveryRecord | None:
        async with self.session_factory() as session:
            return await delivery_record_db.get_by_message_id(session, message_id)

    async def list_by_trace(self, trace_id: str) -> Sequence[DeliveryRecord]:
        async with self.session_factory() as session:
            return await delivery_record_db.list_by_trace_id(session, trace_id)


__all__ = ["StatusStore"]
