"""Structured JSON logging for the OpenWord admin jobs."""

import logging
import json
import sys
from datetime import datetime, timezone

# Passed through ``extra=`` by batch jobs so one run can be traced in the logs.
CONTEXT_FIELDS = ("job", "migration_id", "organisation_id", "session_id")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines, with any batch context attached."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send ``openword_admin`` logs to stdout as JSON; safe to call repeatedly."""
    root = logging.getLogger("openword_admin")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(isinstance(h.formatter, JSONFormatter) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
    root.propagate = False
