import aio_pika

from commrelay.core.config import rabbitmq_logger, settings

_connection: aio_pika.RobustConnection | None = None


async def get_connection(url: str | None = None) -> aio_pika.RobustConnection:
    """
    Asynchronously retrieves a robust connection to RabbitMQ.

    If a connection does not exist or is closed, a new robust connection is established
    using ``url`` or, when omitted, the URL specified in the application settings.
    Otherwise, the existing connection is returned.

    Only the process entrypoints call this; the router and the delivery
    executor receive the connection (or objects built on it) explicitly.

    Returns:
        aio_pika.RobustConnection: An active robust connection to RabbitMQ.
    """
    global _connection
    if _connection is None or _connection.is_closed:
        _connection = await aio_pika.connect_robust(url or settings.RABBITMQ_URL)  # type: ignore[assignment]
        rabbitmq_logger.info("RabbitMQ connection established")
    return _connection  # type: ignore[return-value]


async def close_connection() -> None:
    """Close the process-wide connection if it is open."""
    global _connection
    if _connection is not None:
        try:
            if not _connection.is_closed:
                await _connection.close()
                rabbitmq_logger.info("RabbitMQ connection closed")
        finally:
            _connection = None
