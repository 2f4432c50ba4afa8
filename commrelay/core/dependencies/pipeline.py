from fastapi import Request

from commrelay.core.services.router import ChannelRouter
from commrelay.core.services.status_store import StatusStore


def get_channel_router(request: Request) -> ChannelRouter:
    """Return the channel router built in the application lifespan."""
    return request.app.state.channel_router


def get_status_store(request: Request) -> StatusStore:
    """Return the status store built in the application lifespan."""
    return request.app.state.status_store
