"""SMS and WhatsApp delivery actions, both sent through Twilio."""

from commrelay.core.config import delivery_logger
from commrelay.core.enums import Channel
from commrelay.core.exceptions.types import DeliveryException, ProviderException
from commrelay.core.schemas.message import MessageEnvelope
from commrelay.core.services.twilio import TwilioService
from commrelay.infrastructure.messaging.handlers.base import (
    DeliveryResult,
    is_simulated,
    simulate_delivery,
)


async def _send_via_twilio(envelope: MessageEnvelope, channel: Channel) -> DeliveryResult:
    try:
        response = await TwilioService.send_message(
            to=envelope.recipient,
            body=envelope.body,
            whatsapp=channel == Channel.WHATSAPP,
        )
    except ProviderException as e:
        raise DeliveryException(
            f"{channel.value} delivery failed: {e.message}", channel=channel.value
        ) from e

    provider_id = response.get("sid")
    delivery_logger.info(
        f"{channel.value} delivered: message_id={envelope.message_id}, provider_id={provider_id}"
    )
    return DeliveryResult(provider_id=provider_id)


async def handle_sms_delivery(envelope: MessageEnvelope) -> DeliveryResult:
    """
    Deliver one SMS.

    Raises:
        DeliveryException: If the provider call fails; the executor retries.
    """
    delivery_logger.info(
        f"Delivering SMS: message_id={envelope.message_id}, trace_id={envelope.trace_id}"
    )
    if is_simulated():
        return await simulate_delivery(Channel.SMS)
    return await _send_via_twilio(envelope, Channel.SMS)


async def handle_whatsapp_delivery(envelope: MessageEnvelope) -> DeliveryResult:
    """
    Deliver one WhatsApp message.

    Raises:
        DeliveryException: If the provider call fails; the executor retries.
    """
    delivery_logger.info(
        f"Delivering WhatsApp message: message_id={envelope.message_id}, trace_id={envelope.trace_id}"
    )
    if is_simulated():
        return await simulate_delivery(Channel.WHATSAPP)
    return await _send_via_twilio(envelope, Channel.WHATSAPP)
