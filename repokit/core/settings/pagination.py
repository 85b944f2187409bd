"""Pagination settings for keyset-paginated listings.

Environment variables use PAGINATION_ prefix.
Example: PAGINATION_DEFAULT_LIMIT=50, PAGINATION_MAX_LIMIT=100
"""

from __future__ import annotations

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CURSOR_SECRET = "repokit-cursor-key"


class PaginationSettings(BaseSettings):
    """Pagination configuration settings.

    Attributes:
        default_limit: Page size used when the caller does not ask for one.
        max_limit: Largest page size; larger requests are clamped to it.
        cursor_secret: Key for the cursor integrity tag. Rotating it
            invalidates every cursor handed out before the rotation. The
            built-in default is public; set PAGINATION_CURSOR_SECRET in production.

    Example:
        settings = PaginationSettings()
        limit = max(min(requested_limit, settings.max_limit), 1)
    """

    default_limit: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Default page size when limit not specified",
    )
    max_limit: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum allowed page size (hard limit)",
    )
    cursor_secret: SecretStr = Field(
        default=SecretStr(DEFAULT_CURSOR_SECRET),
        min_length=8,
        description="Key used to tag cursors so tampered tokens are rejected",
    )

    model_config = SettingsConfigDict(
        env_prefix="PAGINATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _default_within_max(self) -> PaginationSettings:
        if self.default_limit > self.max_limit:
            msg = "default_limit must not exceed max_limit"
            raise ValueError(msg)
        return self

    @property
    def uses_default_secret(self) -> bool:
        """True when no cursor secret was configured; such cursors can be forged."""
        return self.cursor_secret.get_secret_value() == DEFAULT_CURSOR_SECRET

    def clamp_limit(self, limit: int | None) -> int:
        """Clamp a requested page size into ``[1, max_limit]``."""
        if limit is None:
            return self.default_limit
        return max(min(limit, self.max_limit), 1)
