"""
Logging setup for the tablewright controller.

structlog renders both its own events and records from stdlib loggers
(kubernetes, urllib3, uvicorn) through one handler on stdout: JSON lines in
the cluster, colored console output when run locally.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

DEFAULT_APP_NAME = "tablewright-controller"

# Client libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = {
    "kubernetes": logging.WARNING,
    "urllib3": logging.WARNING,
    "asyncio": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


class AppContext:
    """Processor stamping the application name on every event."""

    def __init__(self, app_name: str = DEFAULT_APP_NAME) -> None:
        self.app_name = app_name

    def __call__(self, logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app", self.app_name)
        return event_dict


def level_first(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Move level and timestamp to the front so JSON lines scan well."""
    head = {key: event_dict.pop(key) for key in ("level", "timestamp") if key in event_dict}
    return {**head, **event_dict}


def _shared_processors(app_name: str) -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        AppContext(app_name),
    ]


def _render_processors(json_logs: bool) -> list[Processor]:
    if json_logs:
        return [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            level_first,
            structlog.processors.JSONRenderer(),
        ]
    return [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
    ]


def configure_logging(
    json_logs: bool = True,
    log_level: str = "INFO",
    app_name: str = DEFAULT_APP_NAME,
) -> None:
    """Route structlog and stdlib logging through a single stdout handler."""
    shared = _shared_processors(app_name)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=_render_processors(json_logs),
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
