"""Log formatters for JSON and console output."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer

# Context variables copied onto every record, in output order
CONTEXT_FIELDS = ("app_name", "namespace", "resource_class", "cycle_id")


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Only fields listed in FIELDS are emitted, so property values from
    Secrets never reach the log stream through ad-hoc extras.
    """

    # Allowed extra fields -> type to coerce to (None keeps the value as is)
    FIELDS: dict[str, type | None] = {
        # Errors
        "error_category": None,
        "error_message": None,
        "error_type": None,
        "error": None,
        "http_status": int,
        # Retry / backoff
        "operation": None,
        "attempt": int,
        "max_attempts": int,
        "total_attempts": int,
        "delay_seconds": float,
        "consecutive_failures": int,
        # Sources
        "source": None,
        "source_kind": None,
        "source_name": None,
        "source_count": int,
        "key": None,
        "path": None,
        "label_selector": None,
        "profiles": None,
        "namespaces": None,
        # Watch / reload
        "mode": None,
        "strategy": None,
        "state": None,
        "change_type": None,
        "events_coalesced": int,
        "period_seconds": float,
        "debounce_seconds": float,
        "changed_keys": None,
        "added": int,
        "removed": int,
        "changed": int,
        "prefixes": None,
        "property_count": int,
        "duration_ms": float,
        "callback_error": None,
        # Process
        "signal": None,
        "port": int,
        "preferred_port": int,
    }

    @classmethod
    def _coerce(cls, field: str, value: Any) -> Any:
        """Numeric fields keep their type; unconvertible values become null."""
        expected = cls.FIELDS[field]
        if expected is None:
            return value
        try:
            return expected(value)
        except (TypeError, ValueError):
            return None

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, UTC)
        entry: dict[str, Any] = {
            "ts": ts.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = get_log_context()
        entry.update({field: context[field] for field in CONTEXT_FIELDS if context[field]})

        if record.levelno == logging.DEBUG or record.levelno >= logging.ERROR:
            entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = self._coerce(field, value)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

        2026-01-05 10:00:00 INFO [demo/apps] [config_maps] [c-...] Message

    Level names are colored when stdout is a TTY.
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno) if self._use_colors else None
        return f"{color}{record.levelname}{self.RESET}" if color else record.levelname

    @staticmethod
    def _tags(record: logging.LogRecord) -> list[str]:
        context = get_log_context()
        app = context["app_name"]
        if app and context["namespace"]:
            app = f"{app}/{context['namespace']}"
        values = [
            app,
            context["resource_class"],
            getattr(record, "cycle_id", None) or context["cycle_id"],
            getattr(record, "source", None),
            getattr(record, "key", None),
        ]
        return [f"[{value}]" for value in values if value]

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        parts = [ts, self._level(record), *self._tags(record), record.getMessage()]
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
