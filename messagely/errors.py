"""
Error taxonomy and the handlers that turn it into HTTP responses.

Repository and guard code raises one of the ``MessagelyError`` subclasses;
the handlers registered by ``register_exception_handlers`` map each kind to
a fixed status code and a short message. Nothing from the store or the
hashing layer ever reaches the client.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MessagelyError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(MessagelyError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class UnauthorizedError(MessagelyError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class InvalidTokenError(UnauthorizedError):
    default_message = "Invalid token"


class ForbiddenError(MessagelyError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(MessagelyError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(MessagelyError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


async def messagely_error_handler(request: Request, exc: MessagelyError) -> JSONResponse:
    logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")

    headers = None
    if isinstance(exc, UnauthorizedError):
        headers = {"WWW-Authenticate": "Bearer"}

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Field locations only; input values may contain passwords
    locations = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    logger.warning(f"Request validation failed on {request.url.path}: {locations}")

    return await messagely_error_handler(request, BadRequestError("Invalid request body"))


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the error handlers to the application."""
    app.add_exception_handler(MessagelyError, messagely_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
