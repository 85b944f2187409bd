"""Logging infrastructure.

    import logging
    from repokit.infra.logging import get_lazy_logger, set_log_context, setup_logging

    setup_logging()
    set_log_context(request_id="abc-123")
    logging.getLogger(__name__).info("Listing actors")

    lazy_logger = get_lazy_logger(__name__)
    lazy_logger.debug(lambda: f"Expensive: {dump(rows)}")  # only built when DEBUG is on
"""

from repokit.infra.logging.config import configure_logging, setup_logging
from repokit.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    remove_from_log_context,
    set_log_context,
)
from repokit.infra.logging.formatters import JSONFormatter
from repokit.infra.logging.lazy import LazyLoggerAdapter, LazyString, get_lazy_logger, lazy

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "LazyString",
    "clear_log_context",
    "configure_logging",
    "get_lazy_logger",
    "get_log_context",
    "lazy",
    "remove_from_log_context",
    "set_log_context",
    "setup_logging",
]
