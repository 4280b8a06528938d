"""Structured logging for sqlledger.

Events are emitted through structlog on top of the standard logging module.
Every event goes to stderr and, when a log file is configured, is appended to
that file as one timestamped human-readable line. The file is opened in
append mode and never truncated, so it accumulates an audit trail across runs.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

ROOT_LOGGER = "sqlledger"

_SHARED_PROCESSORS: list = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def setup_logging(
    json_output: bool = False,
    level: str = "INFO",
    log_file: Path | str | None = None,
) -> None:
    """Configure structlog and the handlers of the sqlledger logger.

    Safe to call more than once: handlers installed by an earlier call are
    closed and replaced.

    Args:
        json_output: Render stderr lines as JSON instead of console format.
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional path of the append-only log sink.
    """
    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if json_output:
        stream_renderer = structlog.processors.JSONRenderer()
    else:
        stream_renderer = structlog.dev.ConsoleRenderer(colors=False)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=stream_renderer,
            foreign_pre_chain=_SHARED_PROCESSORS,
        )
    )
    logger.addHandler(stream_handler)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.dev.ConsoleRenderer(colors=False),
                foreign_pre_chain=_SHARED_PROCESSORS,
            )
        )
        logger.addHandler(file_handler)

    logger.setLevel(level.upper())
    logger.propagate = False


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger under the sqlledger namespace.

    Args:
        name: Component name, e.g. "runner".
    """
    return structlog.get_logger(f"{ROOT_LOGGER}.{name}")
