from commrelay.infrastructure.messaging.publisher import MessagePublisher


async def start_consumers(connection, executor):
    """Start delivery consumers. Wrapper to avoid circular import."""
    from commrelay.infrastructure.messaging.main import start_consumers as _start_consumers

    return await _start_consumers(connection, executor)


__all__ = ["MessagePublisher", "start_consumers"]
