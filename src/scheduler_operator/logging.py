from __future__ import annotations

import json
import logging
import sys
from typing import Any

STRUCTURED_FIELDS = ("controller", "resource", "uid", "child", "event", "reason")

# Attributes every LogRecord carries; anything else on a record is an extra field
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


class StructuredJSONFormatter(logging.Formatter):
    """Formats each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES and key not in STRUCTURED_FIELDS:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_structured_logging(level: str = "INFO") -> None:
    """Configure the root logger to write structured JSON to stdout."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJSONFormatter())
    root_logger.addHandler(handler)

    # kopf propagates to the root logger
    logging.getLogger("kopf").setLevel(level)


class StructuredLogger:
    """Logger that attaches structured fields to each record."""

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log_with_fields(
        self,
        level: int,
        message: str,
        controller: str | None = None,
        resource: str | None = None,
        uid: str | None = None,
        child: str | None = None,
        event: str | None = None,
        reason: str | None = None,
        **kwargs: Any,
    ) -> None:
        extra: dict[str, Any] = {}
        for key, value in (
            ("controller", controller),
            ("resource", resource),
            ("uid", uid),
            ("child", child),
            ("event", event),
            ("reason", reason),
        ):
            if value is not None:
                extra[key] = value
        extra.update(kwargs)
        self._logger.log(level, message, extra=extra)

    def debug(self, message: str, **fields: Any) -> None:
        self._log_with_fields(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log_with_fields(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log_with_fields(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log_with_fields(logging.ERROR, message, **fields)


logger = StructuredLogger("scheduler-operator")
