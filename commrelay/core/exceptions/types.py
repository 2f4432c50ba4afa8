from fastapi import status


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
        self.details = details
        super().__init__(message)


class DatabaseException(AppException):
    """Exception raised for database-related errors."""

    def __init__(self, message: str = "A database error occurred."):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class NotFoundException(AppException):
    """Exception raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found."):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class MessageNotFoundException(NotFoundException):
    """Exception raised when no delivery record exists for a message id."""

    def __init__(self, message: str = "Message not found."):
        super().__init__(message)


class MessageValidationException(AppException):
    """Exception raised when an inbound message fails field checks.

    Raised before any side effect: nothing is reserved in the dedup cache
    and nothing is enqueued.
    """

    def __init__(self, message: str, trace_id: str | None = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)
        self.trace_id = trace_id


class RoutingException(AppException):
    """Exception raised when a message could not be submitted to its queue."""

    def __init__(
        self,
        message: str = "Failed to route message.",
        trace_id: str | None = None,
        message_id: str | None = None,
    ):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.trace_id = trace_id
        self.message_id = message_id


class CacheUnavailableException(AppException):
    """Exception raised when the deduplication cache cannot be reached."""

    def __init__(self, message: str = "Deduplication cache unavailable."):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


class ProviderException(AppException):
    """Exception raised when an upstream delivery provider rejects a request."""

    def __init__(
        self,
        message: str = "Delivery provider error.",
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        provider: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, status_code, details)
        self.provider = provider


class DeliveryException(AppException):
    """Exception raised by a delivery action when one attempt fails.

    Recovered by the delivery executor through bounded retry.
    """

    def __init__(self, message: str = "Delivery failed.", channel: str | None = None):
        super().__init__(message, status.HTTP_502_BAD_GATEWAY)
        self.channel = channel


class EventLogPublishException(AppException):
    """Exception raised when a trace event cannot be published to the event log."""

    def __init__(self, message: str = "Failed to publish event."):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


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
