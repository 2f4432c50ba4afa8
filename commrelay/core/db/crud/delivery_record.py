"""
CRUD operations for :class:`DeliveryRecord`.

Every status transition is a single upsert keyed by ``message_id`` whose
update branch is guarded so a terminal record (``delivered`` / ``failed``)
is never overwritten by a late or redelivered write. ``retry_count`` only
ever moves up.
"""

from typing import Any, Sequence

from sqlalchemy import case
from sqlalchemy.ext.asyncio import AsyncSession

from commrelay.core.db.crud.base import BaseDB
from commrelay.core.db.models.delivery_record import DeliveryRecord
from commrelay.core.enums import MessageStatus

TERMINAL_STATUSES = (MessageStatus.DELIVERED, MessageStatus.FAILED)


def _keep_highest_retry_count(excluded: Any) -> dict[str, Any]:
    stored = DeliveryRecord.__table__.c.retry_count
    return {
        "retry_count": case(
            (excluded.retry_count > stored, excluded.retry_count),
            else_=stored,
        )
    }


class DeliveryRecordDB(BaseDB[DeliveryRecord]):
    """CRUD for delivery records with a terminal-state guard on upsert."""

    def __init__(self) -> None:
        super().__init__(DeliveryRecord)

    async def upsert_status(
        self,
        session: AsyncSession,
        data: dict[str, Any],
        commit_self: bool = True,
    ) -> DeliveryRecord:
        """
        Insert or update the record for ``data["message_id"]``.

        An existing record already in a terminal status is left unchanged
        and returned as stored. A lower ``retry_count`` than the stored one
        is ignored.

        Returns:
            The record as stored after the write.
        """
        return await self.upsert(
            session,
            data=data,
            unique_fields=["message_id"],
            update_where=DeliveryRecord.__table__.c.status.notin_(TERMINAL_STATUSES),
            update_overrides=_keep_highest_retry_count,
            commit_self=commit_self,
        )

    async def get_by_message_id(
        self, session: AsyncSession, message_id: str
    ) -> DeliveryRecord | None:
        return await self.get_by_id(session, message_id, populate_existing=True)

    async def list_by_trace_id(
        self, session: AsyncSession, trace_id: str
    ) -> Sequence[DeliveryRecord]:
        return await self.get_by_filters(
            session,
            {"trace_id": trace_id},
            order_by=[DeliveryRecord.created_at, DeliveryRecord.message_id],
        )


delivery_record_db = DeliveryRecordDB()

__all__ = ["DeliveryRecordDB", "delivery_record_db", "TERMINAL_STATUSES"]
