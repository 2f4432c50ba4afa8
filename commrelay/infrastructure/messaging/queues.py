"""
Queue topology.

The channel to queue mapping is part of the wire contract shared with every
producer and consumer:

| Channel | Queue |
|---------|-------|
| email | ``email_queue`` |
| sms | ``sms_queue`` |
| whatsapp | ``whatsapp_queue`` |

Channel queues are durable and dead-letter through the default exchange to
``dead_letter_queue`` when a message is rejected without requeue. The
dead-letter queue itself is declared but has no consumer.
"""

from functools import lru_cache
from typing import Annotated, Any

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractQueue
from pydantic import BaseModel, Field

from commrelay.core.config import rabbitmq_logger
from commrelay.core.enums import Channel

DEAD_LETTER_QUEUE = "dead_letter_queue"

CHANNEL_QUEUES: dict[Channel, str] = {
    Channel.EMAIL: "email_queue",
    Channel.SMS: "sms_queue",
    Channel.WHATSAPP: "whatsapp_queue",
}


class QueueConfig(BaseModel):
    name: Annotated[str, Field(description="Name of the queue")]
    channel: Annotated[
        Channel | None,
        Field(description="Channel delivered from this queue (None for the DLQ)"),
    ] = None
    dead_letter_queue: Annotated[
        str | None, Field(description="Name of the dead letter queue")
    ] = None

    @property
    def arguments(self) -> dict[str, Any] | None:
        if self.dead_letter_queue is None:
            return None
        return {
            "x-dead-letter-exchange": "",
            "x-dead-letter-routing-key": self.dead_letter_queue,
        }


QUEUE_CONFIG = [
    *(
        {
            "name": queue_name,
            "channel": channel,
            "dead_letter_queue": DEAD_LETTER_QUEUE,
        }
        for channel, queue_name in CHANNEL_QUEUES.items()
    ),
    # Terminal sink for exhausted messages, never consumed here
    {"name": DEAD_LETTER_QUEUE},
]


@lru_cache()
def get_queue_configs() -> list[QueueConfig]:
    return [QueueConfig.model_validate(config) for config in QUEUE_CONFIG]


def get_channel_queue_configs() -> list[QueueConfig]:
    """Queue configs that have a delivery consumer."""
    return [q for q in get_queue_configs() if q.channel is not None]


def queue_for_channel(channel: Channel | str) -> str:
    """
    Return the queue name for a channel.

    Raises:
        KeyError: If no queue is mapped to the channel.
    """
    return CHANNEL_QUEUES[Channel(channel)]


async def declare_queue(channel: AbstractChannel, config: QueueConfig) -> AbstractQueue:
    return await channel.declare_queue(
        config.name,
        durable=True,
        arguments=config.arguments,
    )


async def declare_queues(channel: AbstractChannel) -> dict[str, AbstractQueue]:
    """
    Declare the full topology on ``channel``.

    Declaration is idempotent as long as the arguments match those already
    on the broker.

    Returns:
        Mapping of queue name to the declared queue.
    """
    queues: dict[str, AbstractQueue] = {}
    for config in get_queue_configs():
        queues[config.name] = await declare_queue(channel, config)
    rabbitmq_logger.info(f"Declared queues: {', '.join(queues)}")
    return queues


def persistent_message(body: bytes, headers: dict[str, Any]) -> aio_pika.Message:
    return aio_pika.Message(
        body=body,
        headers=headers,
        content_type="application/json",
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
    )


__all__ = [
    "CHANNEL_QUEUES",
    "DEAD_LETTER_QUEUE",
    "QueueConfig",
    "declare_queue",
    "declare_queues",
    "get_channel_queue_configs",
    "get_queue_configs",
    "persistent_message",
    "queue_for_channel",
]
