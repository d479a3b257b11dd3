"""Logging configuration for Personifeed.

Every service logs through structlog with key/value context. Values bound
with :func:`bound_log_context` (``run_id``, ``user_id``) are carried by
``contextvars`` into every log line of the current task, including lines
emitted from inside the per-user workflow graph.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from rich.logging import RichHandler

from personifeed.infrastructure.config import get_logs_dir

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "aiosqlite", "asyncio", "multipart")

bound_log_context = structlog.contextvars.bound_contextvars


def _build_handlers(
    log_level: int,
    format_type: str,
    log_path: Optional[Path],
) -> List[logging.Handler]:
    if format_type == "text":
        console: logging.Handler = RichHandler(
            rich_tracebacks=True,
            show_path=False,
            show_time=False,  # timestamp comes from the processors
        )
    else:
        console = logging.StreamHandler(sys.stdout)
    console.setLevel(log_level)
    handlers = [console]

    if log_path is not None:
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(file_handler)

    return handlers


def setup_logging(
    level: str = "INFO",
    format_type: str = "structured",
    log_file: bool = True,
    log_dir: Optional[Path] = None,
) -> structlog.stdlib.BoundLogger:
    """Set up structured logging with rich console output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: "structured" for JSON lines, "text" for the rich console
        log_file: Also write ``personifeed.log``
        log_dir: Directory for the log file, defaults to ``<project>/logs``

    Returns:
        Configured structlog logger
    """
    log_level = getattr(logging, level.upper())

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "structured":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    log_path = None
    if log_file:
        directory = log_dir or get_logs_dir()
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / "personifeed.log"

    logging.basicConfig(
        level=log_level,
        handlers=_build_handlers(log_level, format_type, log_path),
        format="%(message)s",
        force=True,
    )

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = structlog.get_logger("personifeed")
    logger.info("Logging configured", level=level, format=format_type, log_file=str(log_path))

    return logger


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LoggerMixin:
    """Gives services a ``logger`` named after their class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger
