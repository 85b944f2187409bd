"""Lazy evaluation support for logging.

Hot paths in the repository (page summaries, preload dispatch) log at
DEBUG with lambdas so the message is only built when DEBUG is enabled:

    logger = get_lazy_logger("repository.Actor")
    logger.debug(lambda: f"db.list: {len(rows)} rows, next={meta.next_cursor!r}")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any


class LazyLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that evaluates callable messages and args on demand."""

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        """Log ``msg`` at ``level``, calling it (and callable args) only if enabled."""
        if not self.isEnabledFor(level):
            return

        if callable(msg):
            msg = msg()
        if args:
            args = tuple(arg() if callable(arg) else arg for arg in args)

        msg, kwargs = self.process(msg, kwargs)
        self.logger.log(level, msg, *args, **kwargs)

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        """Merge bound context into ``extra`` without dropping call-site extras."""
        if self.extra:
            kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_lazy_logger(name: str, **context: Any) -> LazyLoggerAdapter:
    """Get logger with lazy evaluation support.

    Args:
        name: Logger name (usually __name__).
        **context: Optional context bound to every record.

    Returns:
        Logger adapter with lazy evaluation support.
    """
    return LazyLoggerAdapter(logging.getLogger(name), context or {})


class LazyString:
    """String whose value is computed when the record is formatted."""

    __slots__ = ("_func",)

    def __init__(self, func: Callable[[], Any]) -> None:
        self._func = func

    def __str__(self) -> str:
        return str(self._func())

    def __repr__(self) -> str:
        return f"LazyString({self._func!r})"


def lazy(func: Callable[[], Any]) -> LazyString:
    """Wrap ``func`` for use as a ``%s`` argument: ``logger.debug("%s", lazy(dump))``."""
    return LazyString(func)
