"""
Request correlation IDs and per-request access logging.

The ID lives in a ContextVar so services, error handlers and the structlog
processor chain can all read it without passing it around. A caller-supplied
X-Request-ID is reused when it looks safe to log; otherwise a fresh one is
generated.
"""
import logging
import re
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"

# Inbound IDs are echoed into logs and headers, so keep them short and plain
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9_-]{6,64}$")

# Load balancer probes are logged at DEBUG only
QUIET_PATHS = frozenset({"/health"})

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

logger = logging.getLogger(__name__)


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def get_request_id() -> str:
    """Get the current request ID from context."""
    return request_id_var.get()


def ensure_request_id() -> str:
    """Return the current request ID, assigning one when no middleware ran."""
    request_id = request_id_var.get()
    if not request_id:
        request_id = new_request_id()
        request_id_var.set(request_id)
    return request_id


def inbound_request_id(header_value: Optional[str]) -> Optional[str]:
    if header_value and _SAFE_REQUEST_ID.match(header_value.strip()):
        return header_value.strip()
    return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a request ID for the duration of the request, logs the outcome with
    its latency and returns the ID in the X-Request-ID response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = inbound_request_id(request.headers.get(REQUEST_ID_HEADER)) or new_request_id()
        request_id_var.set(request_id)

        path = request.url.path
        quiet = path in QUIET_PATHS
        start_time = time.perf_counter()
        logger.log(
            logging.DEBUG if quiet else logging.INFO,
            f"[{request_id}] → {request.method} {path}",
            extra={"method": request.method, "path": path, "phase": "request_start"},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"[{request_id}] ✗ {request.method} {path} failed after {duration_ms:.0f}ms: {type(e).__name__}",
                extra={"path": path, "duration_ms": round(duration_ms), "phase": "request_error"},
                exc_info=True,
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if quiet:
            log_level = logging.DEBUG
        elif response.status_code >= 500:
            log_level = logging.ERROR
        elif response.status_code >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO
        logger.log(
            log_level,
            f"[{request_id}] ← {response.status_code} {request.method} {path} ({duration_ms:.0f}ms)",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms),
                "phase": "request_end",
            },
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ContextualLogger:
    """
    Thin wrapper that prefixes every message with [request_id], for services
    whose console output should be traceable per request.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _format_msg(self, msg: str) -> str:
        request_id = get_request_id()
        return f"[{request_id}] {msg}" if request_id else msg

    def debug(self, msg: str, *args, **kwargs):
        self.logger.debug(self._format_msg(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self.logger.info(self._format_msg(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self.logger.warning(self._format_msg(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self.logger.error(self._format_msg(msg), *args, **kwargs)


def get_logger(name: str) -> ContextualLogger:
    """Get a contextual logger that includes the request ID."""
    return ContextualLogger(name)
