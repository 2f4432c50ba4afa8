"""
Email delivery action.

Sends the message through Brevo as a plain-text transactional email. The
trace and message ids travel as custom email headers.
"""

from commrelay.core.config import delivery_logger
from commrelay.core.enums import Channel
from commrelay.core.exceptions.types import DeliveryException, ProviderException
from commrelay.core.schemas.message import MessageEnvelope
from commrelay.core.services.brevo import BrevoService, Contact, ListContact
from commrelay.infrastructure.messaging.handlers.base import (
    DeliveryResult,
    is_simulated,
    simulate_delivery,
)


async def handle_email_delivery(envelope: MessageEnvelope) -> DeliveryResult:
    """
    Deliver one email.

    Raises:
        DeliveryException: If the provider call fails; the executor retries.
    """
    delivery_logger.info(
        f"Delivering email: message_id={envelope.message_id}, trace_id={envelope.trace_id}"
    )

    if is_simulated():
        return await simulate_delivery(Channel.EMAIL)

    try:
        response = await BrevoService.send_transactional_email(
            subject=envelope.subject or "",
            to=ListContact(to=[Contact(email=envelope.recipient)]),
            textContent=envelope.body,
            headers={
                "X-Message-Id": envelope.message_id,
                "X-Trace-Id": envelope.trace_id,
            },
        )
    except (ProviderException, ValueError) as e:
        raise DeliveryException(
            f"Email delivery failed: {str(e)}", channel=Channel.EMAIL.value
        ) from e

    provider_id = response.get("messageId") if isinstance(response, dict) else None
    delivery_logger.info(
        f"Email delivered: message_id={envelope.message_id}, provider_id={provider_id}"
    )
    return DeliveryResult(provider_id=provider_id)
