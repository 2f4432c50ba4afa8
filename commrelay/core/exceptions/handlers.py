from fastapi import Request
from fastapi.responses import JSONResponse

from commrelay.core.config import request_logger
from commrelay.core.exceptions.types import (
    AppException,
    DatabaseException,
    NotFoundException,
)


async def general_exception_handler(request: Request, exc: AppException):
    """
    Handles application exceptions by returning a JSON response with the error message.

    Args:
        request: The request object.
        exc (AppException): The exception instance.

    Returns:
        JSONResponse: A response containing the error message and the exception's status code.
    """
    request_logger.error(f"AppException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)},
    )


async def database_exception_handler(request: Request, exc: DatabaseException):
    """
    Handles database exceptions by returning a JSON response with the error message.

    Args:
        request: The request object.
        exc (DatabaseException): The database exception instance.

    Returns:
        JSONResponse: A response containing the error message and status code 500.
    """
    request_logger.error(f"DatabaseException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": f"A database error occurred.\n{str(exc)}"},
    )


async def not_found_exception_handler(request: Request, exc: NotFoundException):
    request_logger.info(f"NotFoundException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)},
    )


exception_schema = {
    404: {
        "description": "Resource not found",
        "content": {
            "application/json": {"example": {"detail": "Message not found."}}
        },
    },
    500: {
        "description": "Internal server error",
        "content": {
            "application/json": {
                "example": {"detail": "A database error occurred.\n<reason>"}
            }
        },
    },
}


__all__ = [
    "database_exception_handler",
    "exception_schema",
    "general_exception_handler",
    "not_found_exception_handler",
]
