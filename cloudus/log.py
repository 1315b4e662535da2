"""
Structured logging setup.

Log events are snake_case names with key/value context. In JSON mode the
structlog event dict is handed to the stdlib as ``extra`` fields and rendered
by python-json-logger; otherwise structlog renders a console line.
"""
import logging
import sys

import structlog
from pythonjsonlogger import jsonlogger

from cloudus.config import Settings


def configure_logging(settings: Settings) -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.log_json:
        processors.append(structlog.stdlib.render_to_log_kwargs)
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level, logging.INFO))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_json:
        # timestamp, level and logger arrive as extra fields from structlog
        handler.setFormatter(jsonlogger.JsonFormatter("%(message)s", rename_fields={"message": "event"}))
    root_logger.addHandler(handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, json=settings.log_json
    )
