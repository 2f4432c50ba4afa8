from commrelay.core.db.config import (
    async_engine,
    AsyncSessionLocal,
    Base,
    dispose_db,
    engine_options,
    init_db,
)

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "Base",
    "dispose_db",
    "engine_options",
    "init_db",
]
