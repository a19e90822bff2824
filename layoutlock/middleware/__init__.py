"""
Middleware package for the API.
"""
from layoutlock.middleware.logging_middleware import (
    ContextualLogger,
    RequestLoggingMiddleware,
    ensure_request_id,
    get_logger,
    get_request_id,
)

__all__ = [
    "RequestLoggingMiddleware",
    "ContextualLogger",
    "ensure_request_id",
    "get_logger",
    "get_request_id",
]
