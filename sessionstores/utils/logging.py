"""
structlog setup for sessionstores.

Level and renderer come from SessionStoreSettings (SESSIONSTORES_LOG_LEVEL,
SESSIONSTORES_LOG_JSON) unless passed explicitly. Callers can attach fields
such as the session ID with structlog.contextvars.bind_contextvars.

    from sessionstores.utils.logging import get_logger

    logger = get_logger(__name__)
    logger.error("mongo_set_failed", error=str(e), sid=sid, key=key)
"""

import logging
import sys

import structlog
from structlog.types import FilteringBoundLogger, Processor

from sessionstores.config.settings import settings

# Field names containing any of these are masked
SENSITIVE_KEYS = {
    "password",
    "secret",
    "authorization",
    "credentials",
    "access_token",
    "refresh_token",
}

REDACTED = "***REDACTED***"


def filter_sensitive_data(
    logger: FilteringBoundLogger, method_name: str, event_dict: dict
) -> dict:
    """Mask values whose field name looks like a credential."""
    for key in list(event_dict.keys()):
        if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
            event_dict[key] = REDACTED
    return event_dict


def build_processors(json_logs: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        filter_sensitive_data,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    return processors


def configure_logging(
    log_level: str | None = None,
    json_logs: bool | None = None,
    log_file: str | None = None,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Minimum level; defaults to settings.log_level
        json_logs: JSON output instead of console; defaults to settings.log_json
        log_file: Optional file that receives a copy of every record
    """
    level_name = (log_level or settings.log_level).upper()
    if json_logs is None:
        json_logs = settings.log_json
    level = getattr(logging, level_name)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    # basicConfig does nothing once the root logger has handlers
    logging.getLogger().setLevel(level)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        logging.getLogger().addHandler(file_handler)

    structlog.configure(
        processors=build_processors(json_logs),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "sessionstores") -> FilteringBoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)


configure_logging()


__all__ = ["configure_logging", "filter_sensitive_data", "get_logger"]
