from commrelay.core.dependencies.pipeline import get_channel_router, get_status_store

__all__ = ["get_channel_router", "get_status_store"]
