"""Logging configuration setup.

Uses ``logging.config.dictConfig`` with every handler on the root logger;
library loggers (``repository.*``, ``repokit.*``) propagate up to it.
"""

from __future__ import annotations

import logging
import logging.config
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from repokit.core.settings.logs import LoggingSettings

logger = logging.getLogger(__name__)
_LOGGING_INITIALIZED = False


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **configure_kwargs: Any,
) -> None:
    """Configure logging once across entrypoints.

    Args:
        log_settings: Logging settings; loaded via get_logging_settings() if omitted.
        force: Reconfigure logging even if it was already initialized.
        **configure_kwargs: Explicit overrides for configure_logging().
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    if log_settings is None:
        from repokit.core.settings import get_logging_settings

        log_settings = get_logging_settings()

    configure_logging(**{**log_settings.to_logging_kwargs(), **configure_kwargs})
    _LOGGING_INITIALIZED = True


def configure_logging(
    log_level: str = "INFO",
    *,
    json_logs: bool = True,
    include_context: bool = True,
    service_name: str = "repokit",
    sqlalchemy_level: str = "WARNING",
    capture_warnings: bool = True,
) -> dict[str, Any]:
    """Configure root logging through dictConfig.

    Args:
        log_level: Root logger level.
        json_logs: Emit JSON Lines instead of human-readable text.
        include_context: Attach ContextInjectingFilter to the console handler.
        service_name: Static ``service`` field on JSON records.
        sqlalchemy_level: Level of the ``sqlalchemy.engine`` logger.
        capture_warnings: Forward Python warnings to logging.

    Returns:
        The dictConfig dictionary that was applied.
    """
    if capture_warnings:
        logging.captureWarnings(True)

    if json_logs:
        formatter: dict[str, Any] = {
            "()": "repokit.infra.logging.formatters.JSONFormatter",
            "static": {"service": service_name},
        }
    else:
        formatter = {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"}

    console: dict[str, Any] = {
        "class": "logging.StreamHandler",
        "formatter": "default",
        "stream": "ext://sys.stderr",
    }
    filters: dict[str, Any] = {}
    if include_context:
        filters["context"] = {"()": "repokit.infra.logging.context.ContextInjectingFilter"}
        console["filters"] = ["context"]

    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "filters": filters,
        "handlers": {"console": console},
        "loggers": {
            "sqlalchemy.engine": {"level": sqlalchemy_level.upper(), "propagate": True},
        },
        "root": {"level": log_level.upper(), "handlers": ["console"]},
    }
    logging.config.dictConfig(config)
    logger.debug("Logging configured", extra={"json_logs": json_logs, "level": log_level})
    return config
