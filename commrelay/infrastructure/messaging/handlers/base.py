"""Delivery action contract shared by every channel."""

import asyncio
import random
from datetime import datetime, timezone
from typing import Awaitable, Callable

from pydantic import BaseModel, Field

from commrelay.core.config import delivery_logger, settings
from commrelay.core.enums import Channel
from commrelay.core.exceptions.types import DeliveryException
from commrelay.core.schemas.message import MessageEnvelope


class DeliveryResult(BaseModel):
    success: bool = True
    delivered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    provider_id: str | None = None


# deliver(envelope) -> DeliveryResult, raising DeliveryException on failure
DeliveryAction = Callable[[MessageEnvelope], Awaitable[DeliveryResult]]

# Per-channel latency of a simulated delivery, in seconds
SIMULATED_LATENCY: dict[Channel, float] = {
    Channel.EMAIL: 0.5,
    Channel.SMS: 0.3,
    Channel.WHATSAPP: 0.4,
}


def is_simulated() -> bool:
    return settings.DELIVERY_MODE == "simulated"


async def simulate_delivery(
    channel: Channel,
    failure_rate: float | None = None,
) -> DeliveryResult:
    """
    Stand-in for a provider call: waits the channel's latency and fails at
    random with probability ``failure_rate``.

    Raises:
        DeliveryException: On a simulated failure.
    """
    rate = settings.SIMULATED_FAILURE_RATE if failure_rate is None else failure_rate
    await asyncio.sleep(SIMULATED_LATENCY[channel])

    if random.random() < rate:
        raise DeliveryException(
            f"Simulated {channel.value} delivery failure", channel=channel.value
        )

    delivery_logger.info(f"{channel.value} delivery simulated successfully")
    return DeliveryResult()
