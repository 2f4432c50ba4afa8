"""
Delivery actions for the channel queues.

``DELIVERY_ACTIONS`` maps each channel to its action. Adding a channel means
adding a ``Channel`` member, a queue in ``CHANNEL_QUEUES`` and an entry here.
"""

from commrelay.core.enums import Channel
from commrelay.infrastructure.messaging.handlers.base import (
    DeliveryAction,
    DeliveryResult,
    simulate_delivery,
)
from commrelay.infrastructure.messaging.handlers.email_handler import (
    handle_email_delivery,
)
from commrelay.infrastructure.messaging.handlers.sms_handler import (
    handle_sms_delivery,
    handle_whatsapp_delivery,
)

DELIVERY_ACTIONS: dict[Channel, DeliveryAction] = {
    Channel.EMAIL: handle_email_delivery,
    Channel.SMS: handle_sms_delivery,
    Channel.WHATSAPP: handle_whatsapp_delivery,
}

__all__ = [
    "DELIVERY_ACTIONS",
    "DeliveryAction",
    "DeliveryResult",
    "handle_email_delivery",
    "handle_sms_delivery",
    "handle_whatsapp_delivery",
    "simulate_delivery",
]
