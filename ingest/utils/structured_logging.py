"""Structured logging for the sentiment ingestion service."""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict


class StructuredLogger:
    """
    JSON-structured logger for ingestion jobs.

    Outputs log lines in JSON format for easy parsing:
    {
        "time": "2025-01-13T14:00:00.000000Z",
        "level": "INFO",
        "message": "ingestion_completed",
        "symbol": "NVDA",
        "date": "2025-01-10",
        "type": "messages",
        "messages": 42
    }
    """

    def __init__(self, name: str, level: int = logging.INFO):
        """Initialize structured logger."""
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # getLogger returns the same object per name; attach the handler once
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(level)
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)
        self.logger.propagate = False

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        log_entry = {
            'time': datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
            'level': logging.getLevelName(level),
            'message': message,
        }
        log_entry.update(kwargs)
        self.logger.log(level, json.dumps(log_entry, default=str))

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, **kwargs)

    def warn(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, **kwargs)

    def bind(self, **kwargs: Any) -> 'BoundLogger':
        """Return a bound logger with context."""
        return BoundLogger(self, kwargs)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)


class BoundLogger:
    """Logger with bound context variables."""

    def __init__(self, logger: StructuredLogger, context: Dict[str, Any]):
        self.logger = logger
        self.context = context

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, **{**self.context, **kwargs})

    def error(self, message: str, **kwargs: Any) -> None:
        self.logger.error(message, **{**self.context, **kwargs})

    def warn(self, message: str, **kwargs: Any) -> None:
        self.logger.warn(message, **{**self.context, **kwargs})

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, **{**self.context, **kwargs})

    def bind(self, **kwargs: Any) -> 'BoundLogger':
        return BoundLogger(self.logger, {**self.context, **kwargs})


def get_logger(name: str, level: int = logging.INFO) -> StructuredLogger:
    """
    Get or create structured logger.

    Args:
        name: Logger name
        level: Log level

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name, level)
