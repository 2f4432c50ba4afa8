import asyncio
from typing import Any

from aio_pika.abc import AbstractChannel, AbstractRobustConnection

from commrelay.core.config import rabbitmq_logger
from commrelay.infrastructure.messaging.queues import declare_queues, persistent_message


class MessagePublisher:
    """
    Publishes serialized messages to durable queues.

    The channel is opened lazily on the first publish with publisher
    confirms enabled, so ``publish`` only returns once the broker has taken
    responsibility for the message. The queue topology is declared once per
    channel.

    Args:
        connection: Robust RabbitMQ connection owned by the caller.
    """

    def __init__(self, connection: AbstractRobustConnection):
        self._connection = connection
        self._channel: AbstractChannel | None = None
        self._channel_lock = asyncio.Lock()

    async def _get_channel(self) -> AbstractChannel:
        async with self._channel_lock:
            if self._channel is None or self._channel.is_closed:
                channel = await self._connection.channel(publisher_confirms=True)
                await declare_queues(channel)
                self._channel = channel
            return self._channel

    async def publish(
        self, queue_name: str, body: bytes, headers: dict[str, Any] | None = None
    ) -> None:
        """
        Publishes a message to the specified queue asynchronously.

        Args:
            queue_name (str): The name of the queue to publish to.
            body (bytes): Serialized message body (JSON).
            headers (dict[str, Any], optional): Message headers.

        Raises:
            Any exceptions raised by the underlying connection or publishing mechanisms.
        Note:
            The message is sent as a persistent message with content type 'application/json'.
        """
        channel = await self._get_channel()
        await channel.default_exchange.publish(
            persistent_message(body, headers or {}),
            routing_key=queue_name,
        )
        rabbitmq_logger.debug(f"Published message to {queue_name}")

    async def close(self) -> None:
        if self._channel is not None:
            try:
                if not self._channel.is_closed:
                    await self._channel.close()
            finally:
                self._channel = None


__all__ = ["MessagePublisher"]
