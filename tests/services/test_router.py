"""
Test suite for the channel router.

Run tests:
    pytest tests/core/services/test_router.py -v

Run with coverage:
    pytest tests/core/services/test_router.py --cov=commrelay.core.services.router --cov-report=term-missing -v
"""

import json
from unittest.mock import AsyncMock

import pytest

from commrelay.core.enums import (
    Channel,
    DedupFailurePolicy,
    MessageStatus,
    TraceService,
)
from commrelay.core.exceptions.types import (
    CacheUnavailableException,
    MessageValidationException,
    RoutingException,
)
from commrelay.core.schemas.message import MessageEnvelope, MessageInput
from commrelay.core.services.dedup import (
    DeduplicationGate,
    MemoryBackend,
    dedup_key,
    fingerprint,
)
from commrelay.core.services.router import ChannelRouter, queue_headers, validate_message
from commrelay.core.services.trace import TraceCorrelator


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def publisher():
    return AsyncMock()


@pytest.fixture
def channel_router(backend, publisher, event_log):
    return ChannelRouter(
        gate=DeduplicationGate(backend, ttl=60),
        publisher=publisher,
        correlator=TraceCorrelator(TraceService.ROUTER, event_log),
        max_retries=3,
    )


def _email(**overrides) -> MessageInput:
    data = {
        "channel": Channel.EMAIL,
        "recipient": "a@b.com",
        "subject": "Hi",
        "body": "Hello there",
    }
    data.update(overrides)
    return MessageInput(**data)


class TestValidateMessage:

    @pytest.mark.parametrize(
        "message, reason",
        [
            (_email(recipient=""), "Recipient and body are required"),
            (_email(body="   "), "Recipient and body are required"),
            (_email(subject=None), "Subject is required for email messages"),
            (_email(subject=""), "Subject is required for email messages"),
            (_email(recipient="not-an-email"), "Invalid email address"),
            (_email(recipient="a b@c.com"), "Invalid email address"),
            (
                MessageInput(channel=Channel.SMS, recipient="123-abc", body="x"),
                "Invalid phone number format",
            ),
            (
                MessageInput(channel=Channel.WHATSAPP, recipient="+0123456", body="x"),
                "Invalid phone number format",
            ),
            (
                MessageInput(channel=Channel.SMS, recipient="+1234567890123456", body="x"),
                "Invalid phone number format",
            ),
        ],
    )
    def test_invalid_messages(self, message, reason):
        assert validate_message(message) == reason

    @pytest.mark.parametrize(
        "message",
        [
            _email(),
            MessageInput(channel=Channel.SMS, recipient="+15551234567", body="Code 1234"),
            MessageInput(channel=Channel.SMS, recipient="15551234567", body="Code 1234"),
            MessageInput(channel=Channel.WHATSAPP, recipient="+447700900123", body="Hi"),
        ],
    )
    def test_valid_messages(self, message):
        assert validate_message(message) is None

    def test_sms_does_not_require_subject(self):
        message = MessageInput(channel=Channel.SMS, recipient="+15551234567", body="x")
        assert validate_message(message) is None


class TestRoute:

    @pytest.mark.asyncio
    async def test_email_routed_to_email_queue(self, channel_router, publisher, event_log):
        result = await channel_router.route(_email(metadata={"campaign": "welcome"}))

        assert result.duplicate is False
        assert result.queue_name == "email_queue"
        assert result.message_id.startswith("msg_")
        assert result.trace_id.startswith("trace_")

        publisher.publish.assert_awaited_once()
        queue_name, body, headers = publisher.publish.await_args.args
        assert queue_name == "email_queue"

        envelope = MessageEnvelope.from_body(body)
        assert envelope.message_id == result.message_id
        assert envelope.trace_id == result.trace_id
        assert envelope.retry_count == 0
        assert envelope.max_retries == 3
        assert envelope.status == MessageStatus.QUEUED
        assert envelope.metadata == {"campaign": "welcome"}
        assert headers == queue_headers(envelope)

        assert event_log.messages() == ["Message routed to queue"]
        topic, key, value = event_log.events[0]
        assert topic == "communication-logs"
        assert key == result.trace_id
        assert value["service"] == "router"
        assert value["queueName"] == "email_queue"
        assert value["subtraceId"] == envelope.subtrace_id

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "channel, recipient, queue",
        [
            (Channel.SMS, "+15551234567", "sms_queue"),
            (Channel.WHATSAPP, "+15551234567", "whatsapp_queue"),
        ],
    )
    async def test_phone_channels_routed_to_their_queue(
        self, channel_router, publisher, channel, recipient, queue
    ):
        result = await channel_router.route(
            MessageInput(channel=channel, recipient=recipient, body="Your code is 1234")
        )

        assert result.queue_name == queue
        assert publisher.publish.await_args.args[0] == queue

    @pytest.mark.asyncio
    async def test_body_uses_camel_case_keys(self, channel_router, publisher):
        await channel_router.route(_email())

        payload = json.loads(publisher.publish.await_args.args[1])
        for key in ("messageId", "traceId", "subtraceId", "retryCount", "maxRetries"):
            assert key in payload

    @pytest.mark.asyncio
    async def test_validation_failure_has_no_side_effects(
        self, channel_router, publisher, backend, event_log
    ):
        message = _email(recipient="bad")

        with pytest.raises(MessageValidationException) as exc_info:
            await channel_router.route(message)

        assert exc_info.value.message == "Invalid email address"
        assert exc_info.value.trace_id.startswith("trace_")
        publisher.publish.assert_not_called()
        assert backend._store == {}
        assert event_log.events == []

    @pytest.mark.asyncio
    async def test_duplicate_within_window(self, channel_router, publisher):
        first = await channel_router.route(_email())
        second = await channel_router.route(_email())

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.message_id is None
        assert second.trace_id != first.trace_id
        assert publisher.publish.await_count == 1

    @pytest.mark.asyncio
    async def test_different_body_is_not_duplicate(self, channel_router, publisher):
        await channel_router.route(_email())
        result = await channel_router.route(_email(body="Another body"))

        assert result.duplicate is False
        assert publisher.publish.await_count == 2

    @pytest.mark.asyncio
    async def test_subject_not_part_of_fingerprint(self, channel_router):
        await channel_router.route(_email(subject="First"))
        result = await channel_router.route(_email(subject="Second"))

        assert result.duplicate is True

    @pytest.mark.asyncio
    async def test_publish_failure_raises_and_releases_reservation(
        self, channel_router, publisher, backend, event_log
    ):
        publisher.publish.side_effect = ConnectionError("broker unreachable")

        with pytest.raises(RoutingException) as exc_info:
            await channel_router.route(_email())

        exc = exc_info.value
        assert exc.message == "Failed to send message to queue: broker unreachable"
        assert exc.trace_id.startswith("trace_")
        assert exc.message_id.startswith("msg_")

        fp = fingerprint(Channel.EMAIL, "a@b.com", "Hello there")
        assert dedup_key(fp) not in backend._store

        assert event_log.messages() == ["Failed to route message"]
        assert event_log.values[0]["level"] == "error"
        assert event_log.values[0]["error"] == "broker unreachable"

        # A resubmission after the failure is routed normally
        publisher.publish.side_effect = None
        result = await channel_router.route(_email())
        assert result.duplicate is False

    @pytest.mark.asyncio
    async def test_event_log_failure_does_not_fail_routing(
        self, backend, publisher, failing_event_log
    ):
        channel_router = ChannelRouter(
            gate=DeduplicationGate(backend, ttl=60),
            publisher=publisher,
            correlator=TraceCorrelator(TraceService.ROUTER, failing_event_log),
        )

        result = await channel_router.route(_email())

        assert result.queue_name == "email_queue"

    @pytest.mark.asyncio
    async def test_each_request_gets_fresh_trace(self, channel_router):
        first = await channel_router.route(_email(body="one"))
        second = await channel_router.route(_email(body="two"))

        assert first.trace_id != second.trace_id
        assert first.message_id != second.message_id


class TestRouteWithCacheDown:

    @pytest.fixture
    def broken_backend(self):
        backend = AsyncMock()
        backend.set_if_absent.side_effect = CacheUnavailableException("redis down")
        return backend

    @pytest.mark.asyncio
    async def test_fail_open_routes_message(self, broken_backend, publisher, event_log):
        channel_router = ChannelRouter(
            gate=DeduplicationGate(broken_backend, failure_policy=DedupFailurePolicy.OPEN),
            publisher=publisher,
            correlator=TraceCorrelator(TraceService.ROUTER, event_log),
        )

        result = await channel_router.route(_email())

        assert result.duplicate is False
        publisher.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fail_closed_reports_duplicate(self, broken_backend, publisher, event_log):
        channel_router = ChannelRouter(
            gate=DeduplicationGate(broken_backend, failure_policy=DedupFailurePolicy.CLOSED),
            publisher=publisher,
            correlator=TraceCorrelator(TraceService.ROUTER, event_log),
        )

        result = await channel_router.route(_email())

        assert result.duplicate is True
        publisher.publish.assert_not_called()
