"""
Delivery worker for CommRelay.

Standalone Usage:
    python -m commrelay.infrastructure.messaging.main
"""

import asyncio
import signal
from dataclasses import dataclass, field

from aio_pika.abc import AbstractChannel, AbstractQueue, AbstractRobustConnection

from commrelay.core.config import rabbitmq_logger, settings
from commrelay.core.db import AsyncSessionLocal, dispose_db, init_db
from commrelay.core.enums import TraceService
from commrelay.core.services import (
    BrevoService,
    StatusStore,
    TraceCorrelator,
    TwilioService,
    build_event_log,
)
from commrelay.infrastructure.messaging.connection import close_connection, get_connection
from commrelay.infrastructure.messaging.consumer import DeliveryExecutor
from commrelay.infrastructure.messaging.queues import (
    declare_queues,
    get_channel_queue_configs,
)


@dataclass
class RunningConsumers:
    """Handles needed to stop the consumers started by :func:`start_consumers`."""

    channels: list[AbstractChannel] = field(default_factory=list)
    subscriptions: list[tuple[AbstractQueue, str]] = field(default_factory=list)

    async def stop(self) -> None:
        """Cancel every consumer, then close the channels."""
        for queue, consumer_tag in self.subscriptions:
            try:
                await queue.cancel(consumer_tag)
            except Exception as e:
                rabbitmq_logger.warning(
                    f"Failed to cancel consumer on {queue.name}: {str(e)}"
                )
        self.subscriptions.clear()

        for channel in self.channels:
            if not channel.is_closed:
                await channel.close()
        self.channels.clear()
        rabbitmq_logger.info("Consumers stopped.")


async def start_consumers(
    connection: AbstractRobustConnection,
    executor: DeliveryExecutor,
) -> RunningConsumers:
    """
    Start one consumer per channel queue.

    Each consumer gets its own channel with ``prefetch_count=1`` so it holds
    at most one unacknowledged message, while consumers of different queues
    run concurrently.

    Args:
        connection: Robust RabbitMQ connection owned by the caller.
        executor: Delivery executor processing every consumed message.

    Returns:
        RunningConsumers: Handles used to stop the consumers.
    """
    running = RunningConsumers()
    for config in get_channel_queue_configs():
        channel = await connection.channel()
        await channel.set_qos(prefetch_count=1)
        running.channels.append(channel)

        queues = await declare_queues(channel)
        queue = queues[config.name]
        consumer_tag = await queue.consume(executor.process_message, no_ack=False)
        running.subscriptions.append((queue, consumer_tag))
        rabbitmq_logger.info(f"Started consumer for {config.name}")

    rabbitmq_logger.info("Consumers started. Waiting for messages...")
    return running


async def main() -> None:
    """
    Main entry point for standalone worker execution.

    Initializes the status store, the event log and the provider clients,
    starts the consumers, and runs until SIGINT or SIGTERM.
    """
    shutdown_event = asyncio.Event()
    running: RunningConsumers | None = None

    def handle_shutdown(signum, frame):
        rabbitmq_logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    rabbitmq_logger.info("Starting delivery worker...")
    event_log = build_event_log(settings)

    try:
        rabbitmq_logger.info("Initializing database...")
        await init_db()
        rabbitmq_logger.info("Database initialized successfully.")

        rabbitmq_logger.info("Starting event log...")
        await event_log.start()
        rabbitmq_logger.info("Event log started successfully.")

        if settings.DELIVERY_MODE == "live":
            rabbitmq_logger.info("Initializing provider clients...")
            await BrevoService.init(
                api_key=settings.BREVO_API_KEY,
                sender_email=settings.BREVO_SENDER_EMAIL,
                sender_name=settings.BREVO_SENDER_NAME,
            )
            await TwilioService.init(
                account_sid=settings.TWILIO_ACCOUNT_SID,
                auth_token=settings.TWILIO_AUTH_TOKEN,
            )
            rabbitmq_logger.info("Provider clients initialized successfully.")

        executor = DeliveryExecutor(
            status_store=StatusStore(AsyncSessionLocal),
            correlator=TraceCorrelator(TraceService.DELIVERY, event_log),
        )

        rabbitmq_logger.info("Starting message consumers...")
        connection = await get_connection()
        running = await start_consumers(connection, executor)

        await shutdown_event.wait()

    except Exception as e:
        rabbitmq_logger.exception(f"Messaging error: {e}")
        raise

    finally:
        rabbitmq_logger.info("Shutting down delivery worker...")

        if running is not None:
            await running.stop()

        await close_connection()
        await event_log.close()
        await BrevoService.aclose()
        await TwilioService.aclose()

        await dispose_db()
        rabbitmq_logger.info("Database disposed successfully.")

        rabbitmq_logger.info("Delivery worker shutdown complete.")


if __name__ == "__main__":
    asyncio.run(main())
