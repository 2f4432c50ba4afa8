from commrelay.core.schemas.message import (
    CamelModel,
    DeliveryRecordResponse,
    MessageEnvelope,
    MessageInput,
    RouteResult,
    SendMessageResponse,
)

__all__ = [
    "CamelModel",
    "DeliveryRecordResponse",
    "MessageEnvelope",
    "MessageInput",
    "RouteResult",
    "SendMessageResponse",
]
