"""Logging configuration settings."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LoggingSettings(BaseSettings):
    """Structured logging configuration.

    Environment variables use LOG_ prefix.
    Example: LOG_LEVEL=DEBUG, LOG_JSON=false
    """

    service_name: str = Field(
        default="repokit",
        description="Service name to include in log records (static field in JSON)",
    )
    level: LogLevel = Field(
        default="INFO",
        description="Root logger level (DEBUG|INFO|WARNING|ERROR|CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias=AliasChoices("json", "log_json", "json_logs"),
        description="Enable JSON Lines (JSONL) formatted structured logs",
    )
    include_context: bool = Field(
        default=True,
        description="Copy the contextvar log context onto every record",
    )
    sqlalchemy_level: LogLevel = Field(
        default="WARNING",
        description="Level for the sqlalchemy.engine logger",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    def to_logging_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``configure_logging()``."""
        return {
            "log_level": self.level,
            "json_logs": self.json_logs,
            "include_context": self.include_context,
            "service_name": self.service_name,
            "sqlalchemy_level": self.sqlalchemy_level,
        }
