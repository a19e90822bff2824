"""
Logging configuration for the API.

Every stdlib record (ours, uvicorn's, sqlalchemy's) is rendered through the
same structlog processor chain, so JSON output in production carries the
request ID and logger name on each line.

Usage:
    import logging
    logger = logging.getLogger(__name__)

    # Or, to prefix messages with [request_id] in console output as well:
    from layoutlock.middleware.logging_middleware import get_logger
    logger = get_logger(__name__)
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from layoutlock.core.config import settings
from layoutlock.middleware.logging_middleware import get_request_id

LOG_DIR = Path("logs")
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = (
    "uvicorn.access",
    "uvicorn.error",
    "aiohttp",
    "httpx",
    "httpcore",
    "google_genai",
    "sqlalchemy.engine",
    "asyncio",
)


def add_request_id(logger, method_name, event_dict):
    """structlog processor: attach the current request ID, when there is one."""
    request_id = get_request_id()
    if request_id and "request_id" not in event_dict:
        event_dict["request_id"] = request_id
    return event_dict


def _pre_chain():
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_request_id,
    ]


def _renderer(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty(), exception_formatter=structlog.dev.plain_traceback)


def _formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
    processors = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if isinstance(renderer, structlog.processors.JSONRenderer):
        processors.append(structlog.processors.format_exc_info)
    processors.append(renderer)
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *_pre_chain()],
        processors=processors,
    )


def _rotating_handler(filename: str, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(LOG_DIR / filename, maxBytes=LOG_FILE_MAX_BYTES, backupCount=5)
    handler.setLevel(level)
    # Files are always JSON so they can be shipped as-is
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    return handler


def setup_logging():
    """Configure structlog and the stdlib root logger for the application."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_pre_chain(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(_formatter(_renderer(settings.log_format)))
    root_logger.addHandler(console_handler)

    if settings.environment == "production":
        LOG_DIR.mkdir(exist_ok=True)
        root_logger.addHandler(_rotating_handler("layoutlock.log", logging.DEBUG))
        root_logger.addHandler(_rotating_handler("layoutlock_errors.log", logging.ERROR))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={settings.log_level}, format={settings.log_format}, env={settings.environment}"
    )
