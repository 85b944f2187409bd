"""Pydantic Settings v2 configuration.

Settings are read from environment variables (and an optional .env file),
validated once and frozen:

    from repokit.core.settings import get_pagination_settings

    settings = get_pagination_settings()
    print(settings.max_limit)
"""

from __future__ import annotations

from .database import DatabaseSettings
from .loader import get_db_settings, get_logging_settings, get_pagination_settings
from .logs import LoggingSettings
from .pagination import PaginationSettings

__all__ = [
    "DatabaseSettings",
    "LoggingSettings",
    "PaginationSettings",
    "get_db_settings",
    "get_logging_settings",
    "get_pagination_settings",
]
