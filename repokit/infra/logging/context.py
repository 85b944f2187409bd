"""Context management for structured logging.

Context lives in a ``ContextVar`` so every asyncio task (one per request)
carries its own copy. ``ContextInjectingFilter`` copies the current context
onto each log record, where ``JSONFormatter`` picks it up.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        set_log_context(request_id="abc-123", account_id=42)
        logger.info("Listing actors")  # record carries request_id and account_id
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Drop all logging context for the current task."""
    _log_context.set({})


def remove_from_log_context(*keys: str) -> None:
    """Remove specific keys from the logging context."""
    current = _log_context.get().copy()
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


class ContextInjectingFilter(logging.Filter):
    """Inject the contextvar log context into every LogRecord.

    Existing record attributes (including ``extra=`` fields) win over context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
