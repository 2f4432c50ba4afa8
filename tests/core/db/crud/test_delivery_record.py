"""
Test suite for delivery record CRUD operations.

Run tests:
    pytest tests/core/db/crud/test_delivery_record.py -v

Run with coverage:
    pytest tests/core/db/crud/test_delivery_record.py --cov=commrelay.core.db.crud --cov-report=term-missing -v
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from commrelay.core.db.crud import delivery_record_db
from commrelay.core.enums import Channel, MessageStatus
from commrelay.core.exceptions.types import DatabaseException


def _data(message_id: str = "msg_1", **overrides) -> dict:
    data = {
        "message_id": message_id,
        "trace_id": "trace_1",
        "channel": Channel.EMAIL,
        "recipient": "a@b.com",
        "subject": "Hi",
        "body": "Hello there",
        "message_metadata": {"campaign": "welcome"},
        "retry_count": 0,
        "status": MessageStatus.PROCESSING,
    }
    data.update(overrides)
    return data


class TestUpsertStatus:

    @pytest.mark.asyncio
    async def test_insert_new_record(self, db_session):
        record = await delivery_record_db.upsert_status(db_session, _data())

        assert record.message_id == "msg_1"
        assert record.status == MessageStatus.PROCESSING
        assert record.channel == Channel.EMAIL
        assert record.message_metadata == {"campaign": "welcome"}
        assert record.created_at is not None
        assert record.updated_at is not None

    @pytest.mark.asyncio
    async def test_update_existing_record(self, db_session):
        await delivery_record_db.upsert_status(db_session, _data())

        record = await delivery_record_db.upsert_status(
            db_session, _data(retry_count=2)
        )

        assert record.retry_count == 2
        assert len(await delivery_record_db.list_by_trace_id(db_session, "trace_1")) == 1

    @pytest.mark.asyncio
    async def test_lower_retry_count_does_not_reset_stored_count(self, db_session):
        await delivery_record_db.upsert_status(db_session, _data(retry_count=2))

        record = await delivery_record_db.upsert_status(
            db_session, _data(retry_count=0, subject="Resent")
        )

        assert record.retry_count == 2
        assert record.subject == "Resent"

    @pytest.mark.asyncio
    async def test_same_write_twice_is_idempotent(self, db_session):
        first = await delivery_record_db.upsert_status(db_session, _data(retry_count=1))
        created_at = first.created_at

        second = await delivery_record_db.upsert_status(db_session, _data(retry_count=1))

        assert second.retry_count == 1
        assert second.status == MessageStatus.PROCESSING
        assert second.created_at == created_at

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", [MessageStatus.DELIVERED, MessageStatus.FAILED])
    async def test_terminal_record_not_overwritten(self, db_session, terminal):
        await delivery_record_db.upsert_status(
            db_session,
            _data(status=terminal, retry_count=1, error_message="kept"),
        )

        record = await delivery_record_db.upsert_status(
            db_session, _data(status=MessageStatus.PROCESSING, retry_count=0)
        )

        assert record.status == terminal
        assert record.retry_count == 1
        assert record.error_message == "kept"

    @pytest.mark.asyncio
    async def test_processing_to_delivered(self, db_session):
        await delivery_record_db.upsert_status(db_session, _data())
        delivered_at = datetime.now(timezone.utc)

        record = await delivery_record_db.upsert_status(
            db_session,
            _data(status=MessageStatus.DELIVERED, delivered_at=delivered_at),
        )

        assert record.status == MessageStatus.DELIVERED
        assert record.delivered_at is not None

    @pytest.mark.asyncio
    async def test_missing_unique_field_raises(self, db_session):
        data = _data()
        del data["message_id"]

        with pytest.raises(ValueError):
            await delivery_record_db.upsert_status(db_session, data)

    @pytest.mark.asyncio
    async def test_sqlalchemy_error_wrapped(self):
        session = AsyncMock()
        session.bind = MagicMock()
        session.bind.dialect.name = "sqlite"
        session.execute.side_effect = SQLAlchemyError("disk I/O error")

        with pytest.raises(DatabaseException):
            await delivery_record_db.upsert_status(session, _data())

        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unsupported_dialect_raises(self):
        session = AsyncMock()
        session.bind = MagicMock()
        session.bind.dialect.name = "mssql"

        with pytest.raises(DatabaseException):
            await delivery_record_db.upsert_status(session, _data())


class TestQueries:

    @pytest.mark.asyncio
    async def test_get_by_message_id(self, db_session):
        await delivery_record_db.upsert_status(db_session, _data())

        assert (await delivery_record_db.get_by_message_id(db_session, "msg_1")) is not None
        assert (await delivery_record_db.get_by_message_id(db_session, "msg_x")) is None

    @pytest.mark.asyncio
    async def test_list_by_trace_id(self, db_session):
        await delivery_record_db.upsert_status(db_session, _data("msg_1"))
        await delivery_record_db.upsert_status(db_session, _data("msg_2"))
        await delivery_record_db.upsert_status(
            db_session, _data("msg_3", trace_id="trace_other")
        )

        records = await delivery_record_db.list_by_trace_id(db_session, "trace_1")

        assert {r.message_id for r in records} == {"msg_1", "msg_2"}
