"""
Structured logging configuration.

structlog builds the event dict (request id from contextvars, app context,
exception text) and hands it to the stdlib logger as record extras. A single
python-json-logger handler on the root logger then writes one flat JSON
object per line, for our own loggers and for uvicorn and SQLAlchemy alike.
"""
import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger.json import JsonFormatter

from evently.config import get_settings

# Stdlib record attributes emitted on every line, renamed to our field names
RECORD_FIELDS = "%(levelname)s %(name)s %(message)s"
RENAMED_FIELDS = {"levelname": "level", "name": "logger", "message": "event"}


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    settings = get_settings()
    event_dict["app_name"] = settings.app_name
    event_dict["app_env"] = settings.app_env
    return event_dict


def build_json_formatter() -> JsonFormatter:
    """Formatter producing ``timestamp``, ``level``, ``logger`` and ``event`` keys."""
    return JsonFormatter(
        RECORD_FIELDS,
        rename_fields=RENAMED_FIELDS,
        timestamp=True,
    )


def setup_logging() -> None:
    """
    Configure structlog and the root JSON handler.

    Timestamps, level names and logger names come from the stdlib record,
    so the structlog chain only adds what the record does not carry.
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(build_json_formatter())
    root_logger.addHandler(json_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
