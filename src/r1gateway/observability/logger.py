"""
observability/logger.py — r1gateway Structured Logger

Sets up structlog with:
  - JSON output to a rotating log file (skipped when log_dir is None)
  - Human-readable console output on a TTY, JSON when piped (systemd, Docker)
  - Consistent fields on every log line: timestamp, level, event, and the
    connection context (connection_id, remote, device_id) bound per handler task

Usage:
    from r1gateway.observability.logger import get_logger, setup_logging
    setup_logging(level="INFO", log_dir="./data/logs")
    log = get_logger(__name__)
    log.info("gateway.device_paired", device_id="r1-abc", remote="10.0.0.7:51234")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

# websockets logs every handshake failure and keepalive at INFO/DEBUG
_MUTED_LOGGERS = [
    "websockets",
    "websockets.server",
    "websockets.client",
]


def _mute_noisy_loggers(level: int) -> None:
    """Hold third-party loggers at WARNING or above, even when debugging."""
    for name in _MUTED_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


# Applied to structlog events and to stdlib records (websockets, asyncio)
_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.format_exc_info,
]


def _formatter(renderer: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=_SHARED_PROCESSORS,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path | None = "./data/logs",
    json_format: Optional[bool] = None,  # None = auto-detect from tty
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for the rotating r1gateway.log (always JSON).
                        None disables the file.
        json_format:    Console renderer. None picks JSON unless stdout is a TTY.
        console_output: Whether to emit logs to stdout at all.
        max_bytes:      Size at which the log file rotates.
        backup_count:   Rotated files to keep.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if json_format is None:
        json_format = not sys.stdout.isatty()

    handlers: list[logging.Handler] = []

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "r1gateway.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(_formatter(
            structlog.processors.JSONRenderer()
            if json_format
            else structlog.dev.ConsoleRenderer(colors=True)
        ))
        handlers.append(console_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)
    _mute_noisy_loggers(numeric_level)

    structlog.configure(
        processors=_SHARED_PROCESSORS
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "r1gateway", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, component="sender")
        log.info("gateway.send_dropped", device_id="r1-abc")
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_connection(connection_id: str, remote: str) -> None:
    """
    Bind connection context to every log call in the current handler task.

    Each websockets handler runs in its own asyncio task, so contextvars
    keep one connection's fields out of another's log lines.
    """
    structlog.contextvars.bind_contextvars(connection_id=connection_id, remote=remote)


def bind_device(device_id: str) -> None:
    """Add the paired device id to the current connection's log context."""
    structlog.contextvars.bind_contextvars(device_id=device_id)


def clear_connection() -> None:
    """Clear connection context vars when the handler task finishes."""
    structlog.contextvars.clear_contextvars()
