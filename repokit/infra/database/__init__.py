"""Database engine and session helpers."""

from repokit.infra.database.session import create_engine, create_session_factory, session_scope

__all__ = ["create_engine", "create_session_factory", "session_scope"]
