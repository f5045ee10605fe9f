"""structlog setup for the controller process.

Both structlog loggers and stdlib loggers (the kubernetes client, urllib3)
go through the same processor chain and the same root-logger handlers.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Kept at WARNING unless debugging; the kubernetes client logs every request
NOISY_LOGGERS = ("kopf", "kubernetes", "urllib3")

# Marks handlers installed here so a second configure_logging replaces them
_HANDLER_MARK = "_integration_toolkit_handler"


def resolve_level(verbose: bool, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    return logging.INFO if verbose else logging.WARNING


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_pre_chain())


def _install(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    setattr(handler, _HANDLER_MARK, True)
    logging.getLogger().addHandler(handler)
    return handler


def _remove_installed_handlers() -> None:
    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(handler)
        handler.close()


def _setup_file_logging(log_file: Path) -> RotatingFileHandler:
    """Add a rotating JSON-lines file handler.

    The handler does not filter by level. It rotates at ``MAX_LOG_SIZE``
    and keeps ``BACKUP_COUNT`` old files.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=MAX_LOG_SIZE, backupCount=BACKUP_COUNT)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    _install(handler, logging.DEBUG)
    return handler


def configure_logging(
    verbose: bool = False,
    debug: bool = False,
    json_output: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure structlog and the root logger.

    Console output goes to stderr, as colored key/value lines on a TTY or
    as JSON lines with ``json_output`` for log collectors. Calling this
    again replaces the handlers from the previous call.

    Args:
        verbose: Show INFO and above.
        debug: Show DEBUG and above, including client library logs and
            tracebacks with locals.
        json_output: Render console logs as JSON lines.
        log_file: Optional path of a rotating log file.
    """
    level = resolve_level(verbose, debug)

    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=debug),
        )

    _remove_installed_handlers()
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer))
    _install(console, level)

    # Handlers filter; the root passes everything through
    logging.getLogger().setLevel(logging.DEBUG)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET if debug else logging.WARNING)

    if log_file is not None:
        _setup_file_logging(log_file)
