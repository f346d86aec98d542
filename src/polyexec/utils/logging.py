"""structlog setup shared by the CLI, the MCP server and the HTTP API.

Everything goes to stderr: with the stdio MCP transport, stdout carries the
protocol and must stay clean.
"""

import logging
import sys
from typing import Any

import structlog

# Third-party loggers that flood DEBUG output with HTTP wire detail
_QUIET_LOGGERS = ("docker", "urllib3", "uvicorn.access")


def _pick_renderer(level: str, fmt: str) -> structlog.types.Processor:
    if fmt == "console" or (fmt == "auto" and level.upper() == "DEBUG"):
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(level: str = "INFO", fmt: str = "auto") -> None:
    """Route stdlib and structlog records through one stderr handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: ``json``, ``console``, or ``auto`` (console at DEBUG, JSON otherwise).
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _pick_renderer(level, fmt),
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)


def bind_context(**values: Any) -> None:
    """Attach request or session values to every log line in the current context."""
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
