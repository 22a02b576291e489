import logging
import sys
from typing import Any

import structlog

from .settings import Settings, settings as default_settings

# Libraries whose INFO output drowns out the job lifecycle events
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def _shared_processors(settings: Settings) -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        # Add caller information in development
        structlog.processors.CallsiteParameterAdder(
            parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            if settings.debug
            else []
        ),
    ]


def _renderers(settings: Settings) -> list:
    # JSON lines for production, pretty printing for development
    if settings.debug:
        return [structlog.dev.ConsoleRenderer()]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structured logging for workers, producers and the CLI.

    structlog loggers write directly to stdout. Records from stdlib loggers
    (job handlers, SQLAlchemy, alembic) go through the same processors, with
    their ``extra=`` fields lifted into the event, so one process emits one
    log format.
    """
    settings = settings or default_settings
    level = getattr(logging, settings.log_level)
    shared = _shared_processors(settings)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                *shared,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.ExtraAdder(),
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_renderers(settings),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.INFO if settings.db_echo and name == "sqlalchemy.engine" else logging.WARNING
        )

    structlog.configure(
        processors=[*shared, *_renderers(settings)],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_worker_context(worker_id: int | str, **context: Any) -> None:
    """Attach worker identity to every log message from the current task."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(worker_id=worker_id, **context)
