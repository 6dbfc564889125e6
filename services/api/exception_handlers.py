"""FastAPI exception handlers for custom exceptions."""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from core.exceptions import (
    AlreadyExistsError,
    NotFoundError,
    PasteboxError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)


def status_for(exc: PasteboxError) -> int:
    if isinstance(exc, UnauthorizedError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, AlreadyExistsError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, StorageError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    # ConfigurationError, CorruptStateError and anything unclassified
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def pastebox_exception_handler(request: Request, exc: PasteboxError) -> JSONResponse:
    """Handle Pastebox-specific exceptions."""
    status_code = status_for(exc)

    log = logger.warning if status_code < 500 else logger.error
    log(
        "Pastebox exception on {method} {path}: {type} - {message}",
        method=request.method,
        path=request.url.path,
        type=type(exc).__name__,
        message=str(exc),
        details=exc.details,
    )

    headers = {"WWW-Authenticate": "Basic"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": exc.details,
        },
        headers=headers,
    )
