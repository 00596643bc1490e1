"""Structured JSON logging for transcription runs.

Formats each record as one JSON object with severity, timestamp, and
message fields, plus the per-run context fields passed via `extra`.
main._setup_logging() installs it on the root logger.
"""

import json
import logging
from datetime import UTC, datetime

# Fields copied from `extra` into the JSON entry when present
CONTEXT_FIELDS = ("request_id", "engine", "attempt", "error_kind", "duration_seconds")


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
            JSON string with severity, timestamp, logger, message, and any
            run context fields.
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
                log_entry[key] = str(value) if key == "error_kind" else value

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])

        return json.dumps(log_entry, default=str)
