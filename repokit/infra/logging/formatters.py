"""Custom logging formatters with trace correlation."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace

# Attributes every LogRecord carries; anything else came from extra= or a filter
_RESERVED_ATTRS = frozenset(
    [*vars(logging.LogRecord("", logging.NOTSET, "", 0, "", None, None)), "message", "taskName"]
)


class JSONFormatter(logging.Formatter):
    """JSON Lines formatter with UTC timestamps.

    One JSON object per line, with ``extra=`` fields, injected log context,
    and the active OpenTelemetry trace/span ids when a span is recording.

    Example output:
        {"level": "INFO", "logger": "repository.Actor", "message": "Entity not found",
         "timestamp": "2025-01-01T00:00:00.123Z", "operation": "db.fetch_and_update"}
    """

    def __init__(
        self,
        fmt_keys: dict[str, str] | None = None,
        static: dict[str, Any] | None = None,
    ) -> None:
        """Initialize JSON formatter.

        Args:
            fmt_keys: Mapping of output keys to LogRecord attributes.
            static: Fields added to every record (e.g. {"service": "repokit"}).
        """
        super().__init__()
        self.fmt_keys = fmt_keys or {"level": "levelname", "logger": "name"}
        self.static = static or {}

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {k: getattr(record, v, None) for k, v in self.fmt_keys.items()}
        data["message"] = record.getMessage()
        data["timestamp"] = (
            datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

        span = trace.get_current_span()
        ctx = span.get_span_context()
        if ctx.is_valid:
            data["trace_id"] = format(ctx.trace_id, "032x")
            data["span_id"] = format(ctx.span_id, "016x")

        # Newlines are escaped to keep one record per line
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info).replace("\n", "\\n")
        if record.stack_info:
            data["stack_trace"] = record.stack_info.replace("\n", "\\n")

        data.update(self.static)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in data:
                data[key] = value

        return json.dumps(data, ensure_ascii=False, default=str)
