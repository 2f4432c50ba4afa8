from commrelay.core.exceptions.types import (
    AppException,
    CacheUnavailableException,
    DatabaseException,
    DeliveryException,
    EventLogPublishException,
    MessageNotFoundException,
    MessageValidationException,
    NotFoundException,
    ProviderException,
    RoutingException,
)

__all__ = [
    "AppException",
    "CacheUnavailableException",
    "DatabaseException",
    "DeliveryException",
    "EventLogPublishException",
    "MessageNotFoundException",
    "MessageValidationException",
    "NotFoundException",
    "ProviderException",
    "RoutingException",
]
