"""Error taxonomy and the FastAPI handlers that render it.

Every failure a handler can report is one of:
    - ValidationError: malformed or missing input (400)
    - AuthenticationError: missing or invalid credential (401)
    - AuthorizationError: authenticated but not allowed (403)
    - NotFoundError: unknown message id (404)
    - StorageError: the message store failed (500)

HTTP responses always use the shape ``{"status": ..., "message": ...}`` where
status is "fail" for client errors and "error" for server errors.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_SERVER_MESSAGE = "An unexpected error occurred on the server."


class ChatError(Exception):
    """Base class for errors that map to a client-visible status code."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"

    def to_dict(self) -> dict:
        return {"status": self.status, "message": self.message}


class ValidationError(ChatError):
    status_code = 400


class AuthenticationError(ChatError):
    status_code = 401


class AuthorizationError(ChatError):
    status_code = 403


class NotFoundError(ChatError):
    status_code = 404


class StorageError(ChatError):
    status_code = 500


async def _chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("[errors] %s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Report the first problem only; clients show a single line.
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid {location}: {first.get('msg', 'invalid value')}" if location \
            else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(ValidationError(message).to_dict(), status_code=400)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "[errors] Unhandled exception on %s %s: %s",
        request.method, request.url.path, exc,
        exc_info=exc,
    )
    return JSONResponse(
        {"status": "error", "message": GENERIC_SERVER_MESSAGE},
        status_code=500,
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register the taxonomy handlers on an application."""
    app.add_exception_handler(ChatError, _chat_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
