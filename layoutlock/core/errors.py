"""
Error envelope for the design API.

Every rejection the service can produce is a DesignAPIError with a stable
``code``. The exception handlers below render it (and request-shape errors)
into the JSON body the front-end branches on.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from layoutlock.middleware.logging_middleware import get_request_id

logger = logging.getLogger(__name__)

INVALID_INPUT = "INVALID_INPUT"
IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
UNSUPPORTED_SPACE_TYPE = "UNSUPPORTED_SPACE_TYPE"
LIMIT_REACHED = "LIMIT_REACHED"
RATE_LIMITED = "RATE_LIMITED"
IMAGE_UNCLEAR = "IMAGE_UNCLEAR"
UPSTREAM_BLOCKED = "UPSTREAM_BLOCKED"
GENERATION_FAILED = "GENERATION_FAILED"
UPSTREAM_ERROR = "UPSTREAM_ERROR"
BUSY = "BUSY"
CONFIG_ERROR = "CONFIG_ERROR"


class DesignAPIError(Exception):
    """A rejection that maps to one error code and HTTP status."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        retryable: bool = False,
        retry_after_seconds: Optional[int] = None,
        remaining: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        self.retry_after_seconds = retry_after_seconds
        self.remaining = remaining
        self.reason = reason

    def to_payload(self, request_id: str) -> Dict[str, Any]:
        return {
            "ok": False,
            "requestId": request_id,
            "code": self.code,
            "error": self.message,
            "retryable": self.retryable,
            "retryAfterSeconds": self.retry_after_seconds,
            "remaining": self.remaining,
            "limitReached": self.code == LIMIT_REACHED,
            "needClearerPhoto": self.code == IMAGE_UNCLEAR,
            "reason": self.reason,
        }


def invalid_input(message: str) -> DesignAPIError:
    return DesignAPIError(INVALID_INPUT, message, status_code=400)


def error_response(exc: DesignAPIError) -> JSONResponse:
    headers = {}
    if exc.retry_after_seconds and exc.retry_after_seconds > 0:
        headers["Retry-After"] = str(exc.retry_after_seconds)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(get_request_id()), headers=headers)


async def design_error_handler(request: Request, exc: DesignAPIError) -> JSONResponse:
    log_level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(log_level, f"{request.method} {request.url.path} rejected: {exc.code} ({exc.status_code}) {exc.message}")
    return error_response(exc)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = first.get("msg", "Invalid request")
    message = f"Invalid field '{field}': {detail}" if field else detail
    return error_response(invalid_input(message))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error in {request.method} {request.url.path}: {exc}")
    return error_response(
        DesignAPIError(
            BUSY,
            "AI service is temporarily unavailable. Please try again in about a minute.",
            status_code=503,
            retryable=True,
            retry_after_seconds=60,
        )
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DesignAPIError, design_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
