"""structlog setup for the engine and its workers.

Engine code logs key/value events through ``structlog.get_logger``;
channel and worker modules use stdlib ``logging``. Both end up in one
root handler, rendered as JSON or, with ``LOG_FORMAT=text``, as coloured
console lines.
"""

import logging
import sys
from enum import Enum
from typing import Optional

import structlog

from app.config import Settings, get_settings

# Third-party loggers and the level they are held at
_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "celery": logging.INFO,
}


def enum_values(logger, method_name, event_dict):
    """Render ``ExecutionStatus.SUCCESS`` and friends as ``SUCCESS``."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def _renderer(settings: Settings):
    if settings.LOG_FORMAT == "text" or settings.is_development:
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Route structlog and stdlib logging through one root handler."""
    settings = settings or get_settings()

    pre_chain: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        enum_values,
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings),
        ],
    ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root.setLevel(level)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.SQLALCHEMY_ECHO else logging.WARNING
    )
    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def bind_execution(workflow_id: str, execution_id: Optional[str] = None) -> None:
    """Tag every log line of the current task with the running execution."""
    structlog.contextvars.bind_contextvars(workflow_id=workflow_id, execution_id=execution_id)


def clear_execution() -> None:
    structlog.contextvars.unbind_contextvars("workflow_id", "execution_id")
