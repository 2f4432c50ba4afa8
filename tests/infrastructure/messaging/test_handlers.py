"""
Test suite for the channel delivery actions.

Run tests:
    pytest tests/infrastructure/messaging/test_handlers.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest

from commrelay.core.enums import Channel
from commrelay.core.exceptions.types import DeliveryException, ProviderException
from commrelay.infrastructure.messaging.handlers import (
    DELIVERY_ACTIONS,
    handle_email_delivery,
    handle_sms_delivery,
    handle_whatsapp_delivery,
    simulate_delivery,
)

HANDLERS = "commrelay.infrastructure.messaging.handlers"


def test_every_channel_has_an_action():
    assert set(DELIVERY_ACTIONS) == set(Channel)


class TestSimulateDelivery:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "channel, latency",
        [(Channel.EMAIL, 0.5), (Channel.SMS, 0.3), (Channel.WHATSAPP, 0.4)],
    )
    async def test_waits_channel_latency(self, channel, latency):
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await simulate_delivery(channel, failure_rate=0.0)

        mock_sleep.assert_awaited_once_with(latency)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_failure(self):
        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(DeliveryException) as exc_info:
                await simulate_delivery(Channel.SMS, failure_rate=1.0)

        assert exc_info.value.channel == "sms"


@pytest.fixture
def live_mode():
    with patch(f"{HANDLERS}.email_handler.is_simulated", return_value=False), patch(
        f"{HANDLERS}.sms_handler.is_simulated", return_value=False
    ):
        yield


class TestEmailDelivery:

    @pytest.mark.asyncio
    async def test_simulated(self, make_envelope):
        with patch(f"{HANDLERS}.email_handler.simulate_delivery", new_callable=AsyncMock) as mock_sim:
            await handle_email_delivery(make_envelope())

        mock_sim.assert_awaited_once_with(Channel.EMAIL)

    @pytest.mark.asyncio
    async def test_live_sends_through_brevo(self, make_envelope, live_mode):
        envelope = make_envelope()
        with patch(f"{HANDLERS}.email_handler.BrevoService") as mock_brevo:
            mock_brevo.send_transactional_email = AsyncMock(
                return_value={"messageId": "<abc@brevo>"}
            )
            result = await handle_email_delivery(envelope)

        assert result.provider_id == "<abc@brevo>"
        kwargs = mock_brevo.send_transactional_email.await_args.kwargs
        assert kwargs["subject"] == "Hi"
        assert kwargs["textContent"] == "Hello there"
        assert kwargs["to"].to[0].email == "a@b.com"
        assert kwargs["headers"] == {
            "X-Message-Id": envelope.message_id,
            "X-Trace-Id": envelope.trace_id,
        }

    @pytest.mark.asyncio
    async def test_live_provider_error_becomes_delivery_exception(
        self, make_envelope, live_mode
    ):
        with patch(f"{HANDLERS}.email_handler.BrevoService") as mock_brevo:
            mock_brevo.send_transactional_email = AsyncMock(
                side_effect=ProviderException("Brevo HTTP error 500", provider="brevo")
            )
            with pytest.raises(DeliveryException) as exc_info:
                await handle_email_delivery(make_envelope())

        assert exc_info.value.channel == "email"


class TestPhoneDelivery:

    @pytest.mark.asyncio
    async def test_sms_live(self, make_envelope, live_mode):
        envelope = make_envelope(channel=Channel.SMS, recipient="+15551234567", subject=None)
        with patch(f"{HANDLERS}.sms_handler.TwilioService") as mock_twilio:
            mock_twilio.send_message = AsyncMock(return_value={"sid": "SM1"})
            result = await handle_sms_delivery(envelope)

        assert result.provider_id == "SM1"
        mock_twilio.send_message.assert_awaited_once_with(
            to="+15551234567", body="Hello there", whatsapp=False
        )

    @pytest.mark.asyncio
    async def test_whatsapp_live(self, make_envelope, live_mode):
        envelope = make_envelope(channel=Channel.WHATSAPP, recipient="+15551234567")
        with patch(f"{HANDLERS}.sms_handler.TwilioService") as mock_twilio:
            mock_twilio.send_message = AsyncMock(return_value={"sid": "SM2"})
            await handle_whatsapp_delivery(envelope)

        assert mock_twilio.send_message.await_args.kwargs["whatsapp"] is True

    @pytest.mark.asyncio
    async def test_provider_error(self, make_envelope, live_mode):
        envelope = make_envelope(channel=Channel.SMS, recipient="+15551234567")
        with patch(f"{HANDLERS}.sms_handler.TwilioService") as mock_twilio:
            mock_twilio.send_message = AsyncMock(
                side_effect=ProviderException("Twilio network error", status_code=503)
            )
            with pytest.raises(DeliveryException) as exc_info:
                await handle_sms_delivery(envelope)

        assert exc_info.value.channel == "sms"

    @pytest.mark.asyncio
    async def test_simulated(self, make_envelope):
        envelope = make_envelope(channel=Channel.WHATSAPP, recipient="+15551234567")
        with patch(f"{HANDLERS}.sms_handler.simulate_delivery", new_callable=AsyncMock) as mock_sim:
            await handle_whatsapp_delivery(envelope)

        mock_sim.assert_awaited_once_with(Channel.WHATSAPP)
