"""Structured logging setup for LoadStage."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

# LogRecord attributes that engine components attach via ``extra=``.
_CONTEXT_FIELDS = ("user_id", "elapsed", "target", "active")


class _JsonFormatter(logging.Formatter):
    """One-line JSON log formatter.

    Emits objects with keys timestamp, level, logger and message, plus any
    run context (``user_id``, ``elapsed``, ``target``, ``active``) passed
    through ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            A single-line JSON string.
        """
        log_entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Configure and return the root ``loadstage`` logger.

    Repeated calls only update the level and stream of the existing handler,
    so the engine and the CLI can both call this without duplicating output.

    Args:
        level: Logging level (e.g., ``logging.DEBUG``). Defaults to INFO.
        json_format: Emit one JSON object per line instead of plain text.

    Returns:
        The configured ``loadstage`` logger.
    """
    logger = logging.getLogger("loadstage")
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
            if isinstance(handler, logging.StreamHandler):
                handler.setStream(sys.stderr)
        return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if json_format:
        formatter: logging.Formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Keep output off the root logger
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``loadstage`` namespace.

    Args:
        name: Logger name, appended to the ``loadstage.`` prefix, e.g.
            ``get_logger("engine.pool")``.

    Returns:
        A child logger.
    """
    return logging.getLogger(f"loadstage.{name}")
