"""Structured JSON logging for the ingestion service.

Outputs one JSON object per line on stdout with severity, timestamp,
message, and the pipeline context passed through ``extra``.
"""

import json
import logging
import sys
from datetime import UTC, datetime

# Context attributes copied from ``extra`` into the JSON entry
CONTEXT_FIELDS = (
    "call_id",
    "call_sid",
    "stage",
    "attempt",
    "delay_seconds",
    "breaker",
    "duration_seconds",
    "error",
)


class StructuredJsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    SEVERITY_MAP: dict[int, str] = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARNING",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON string with severity, timestamp, logger, message, and
            context fields.
        """
        log_entry: dict[str, object] = {
            "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "severity": self.SEVERITY_MAP.get(record.levelno, "DEFAULT"),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Install the JSON formatter on the root logger.

    Args:
        level: Root log level name (e.g. "INFO", "DEBUG").
    """
    root = logging.getLogger()
    root.setLevel(level)

    # Avoid adding duplicate handlers if called multiple times
    for handler in root.handlers:
        if isinstance(handler.formatter, StructuredJsonFormatter):
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)
