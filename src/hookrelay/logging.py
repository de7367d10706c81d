"""Structured logging for hookrelay.

Library modules log through ``logging.getLogger(__name__)``. ``configure_logging``
installs one root handler whose ``ProcessorFormatter`` runs those stdlib
records through the same structlog chain as ``get_logger`` loggers, so bound
context such as ``delivery_id`` and ``webhook_id`` lands on every line.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from structlog.typing import Processor

HANDLER_NAME = "hookrelay"

_configured = False


def _shared_processors() -> list[Processor]:
    """Processors applied to structlog and stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderer_chain(format: str) -> list[Processor]:
    if format.lower() == "json":
        return [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    return [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
    ]


def configure_logging(level: str = "INFO", format: str = "json") -> None:
    """Route hookrelay and structlog output through one formatter.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Log level name. Unknown names fall back to INFO.
        format: "json" for production, "text" for a console renderer.

    Example:
        ```python
        configure_logging(level="DEBUG", format="text")
        bind_context(delivery_id="dlv_abc")
        logging.getLogger("hookrelay.webhooks").info("Attempt started")
        ```
    """
    global _configured

    log_level = getattr(logging, level.upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared = _shared_processors()
    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=_renderer_chain(format),
        )
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)
    logging.getLogger("hookrelay").setLevel(log_level)

    _configured = True


def reset_logging() -> None:
    """Undo ``configure_logging``: drop its handler and restore default levels."""
    global _configured

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.setLevel(logging.WARNING)
    logging.getLogger("hookrelay").setLevel(logging.NOTSET)
    _configured = False


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Structured logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: object) -> None:
    """Bind values to every later log line in the current task.

    Context lives in contextvars, so each asyncio task (each delivery
    worker) carries its own copy.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    """Remove specific keys from the logging context."""
    structlog.contextvars.unbind_contextvars(*keys)
