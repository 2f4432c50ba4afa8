"""
Delivery record model.

The durable projection of a message's lifecycle. One row per ``message_id``;
rows are only ever written through an upsert keyed by ``message_id`` so that
broker redeliveries of the same message converge on the same record.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum as SAEnum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from commrelay.core.db.models.base import BaseModel
from commrelay.core.enums import Channel, MessageStatus


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class DeliveryRecord(BaseModel):
    """
    Persisted delivery status of a message.

    Attributes:
        message_id: Unique message identifier assigned by the router.
        trace_id: Trace identifier shared by every event of the request.
        channel: Delivery channel (``email``, ``sms`` or ``whatsapp``).
        recipient: Email address or phone number.
        subject: Email subject, None for other channels.
        body: Message body.
        message_metadata: Opaque metadata passed through from the request.
        status: ``processing`` → ``delivered`` | ``failed``.
        retry_count: Retries performed so far.
        delivered_at: Time of the successful attempt.
        failed_at: Time the message was dead-lettered.
        error_message: Last delivery error when dead-lettered.
    """

    __tablename__ = "delivery_records"

    message_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Unique message identifier (msg_<uuid>)",
    )

    trace_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Trace identifier (trace_<uuid>)",
    )

    channel: Mapped[Channel] = mapped_column(
        SAEnum(
            Channel,
            native_enum=False,
            name="delivery_channel",
            values_callable=_enum_values,
        ),
        nullable=False,
        index=True,
    )

    recipient: Mapped[str] = mapped_column(String(320), nullable=False)

    subject: Mapped[str | None] = mapped_column(String(998), nullable=True)

    body: Mapped[str] = mapped_column(Text, nullable=False)

    message_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Opaque request metadata",
    )

    status: Mapped[MessageStatus] = mapped_column(
        SAEnum(
            MessageStatus,
            native_enum=False,
            name="message_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=MessageStatus.PROCESSING,
        index=True,
        comment="Lifecycle status: processing → delivered | failed",
    )

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_delivery_records_channel_status", "channel", "status"),)


__all__ = ["DeliveryRecord"]
