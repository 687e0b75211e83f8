"""
Structured logging for observability.

Records carry the current session context and render as JSON or text.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, TextIO, Union

from .context import ContextManager


PACKAGE_LOGGER = "session_coordinator"


class LogLevel(str, Enum):
    """Log levels matching Python logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_python_level(self) -> int:
        """Convert to Python logging level."""
        return getattr(logging, self.value)


@dataclass
class LogRecord:
    """A structured log record."""

    timestamp: datetime = field(default_factory=datetime.now)
    level: LogLevel = LogLevel.INFO
    message: str = ""
    logger_name: str = ""
    session_id: Optional[str] = None
    operation: Optional[str] = None
    request_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
            "logger": self.logger_name,
        }

        if self.session_id:
            result["session_id"] = self.session_id
        if self.operation:
            result["operation"] = self.operation
        if self.request_id:
            result["request_id"] = self.request_id
        if self.attributes:
            result["attributes"] = self.attributes
        if self.exception:
            result["exception"] = self.exception

        return result

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        """Convert to human-readable text."""
        parts = [
            self.timestamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"[{self.level.value}]",
            self.logger_name,
            "-",
            self.message,
        ]

        if self.session_id:
            context = f"session={self.session_id}"
            if self.operation:
                context += f" op={self.operation}"
            parts.append(f"({context})")

        if self.attributes:
            attrs = " ".join(f"{k}={v}" for k, v in self.attributes.items())
            parts.append(f"[{attrs}]")

        text = " ".join(parts)

        if self.exception:
            text += f"\n{self.exception}"

        return text


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs structured logs enriched with session context."""

    def __init__(self, json_output: bool = True):
        super().__init__()
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        """Format log record."""
        context = ContextManager.get_current()

        try:
            level = LogLevel(record.levelname)
        except ValueError:
            level = LogLevel.INFO

        log_record = LogRecord(
            timestamp=datetime.fromtimestamp(record.created),
            level=level,
            message=record.getMessage(),
            logger_name=record.name,
            session_id=context.session_id if context else None,
            operation=context.operation if context else None,
            request_id=context.request_id if context else None,
            attributes=getattr(record, "attributes", {}),
            exception=self.formatException(record.exc_info) if record.exc_info else None,
        )

        if self.json_output:
            return log_record.to_json()
        return log_record.to_text()


def configure_logging(
    level: Union[LogLevel, str] = LogLevel.INFO,
    json_output: bool = False,
    output: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the package logger with a structured handler.

    Logs go to stderr by default so stdout stays free for command output.
    Calling again replaces the handler installed by a previous call.

    Args:
        level: Log level
        json_output: Whether to output JSON
        output: Output stream

    Returns:
        The configured package logger
    """
    level = LogLevel(level.upper() if isinstance(level, str) else level)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level.to_python_level())

    for handler in list(logger.handlers):
        if isinstance(handler.formatter, StructuredFormatter):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(output or sys.stderr)
    handler.setFormatter(StructuredFormatter(json_output))
    logger.addHandler(handler)
    logger.propagate = False

    return logger
