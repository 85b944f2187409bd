"""Database repository exceptions.

Every failure the repository layer can report is a subclass of
``RepositoryError`` so callers can branch on the kind with ``except``
clauses instead of inspecting raw SQLAlchemy exceptions:

    try:
        actor = await repo.fetch_and_update(session, stmt, with_=change)
    except NotFoundError:
        ...
    except ChangesetInvalidError as exc:
        return exc.errors_by_field()
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from repokit.core.changeset import Changeset


class RepositoryError(Exception):
    """Base exception for repository operations.

    Attributes:
        message: Error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize repository error.

        Args:
            message: Error description
            details: Additional context about the error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Format error message with details."""
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class NotFoundError(RepositoryError):
    """No row matched a single-row fetch.

    Attributes:
        model_name: Name of the model class that wasn't found
        identifier: The key/value pairs that were searched for
    """

    def __init__(self, model_name: str, identifier: dict[str, Any] | None = None):
        self.model_name = model_name
        self.identifier = identifier or {}

        if self.identifier:
            id_str = ", ".join(f"{k}={v!r}" for k, v in self.identifier.items())
            message = f"{model_name} not found with {id_str}"
        else:
            message = f"{model_name} not found"

        super().__init__(message, details={"model": model_name, **self.identifier})

    def __repr__(self) -> str:
        """Repr for debugging."""
        return f"NotFoundError(model={self.model_name!r}, identifier={self.identifier!r})"


class MultipleResultsFoundError(RepositoryError):
    """Multiple rows found when expecting one.

    Usually a missing unique constraint or a query that forgot a filter.
    """

    def __init__(self, model_name: str, filter_description: str):
        self.model_name = model_name
        self.filter_description = filter_description

        message = f"Expected one {model_name}, found multiple matching: {filter_description}"
        super().__init__(message, details={"model": model_name, "filter": filter_description})


class InvalidCursorError(RepositoryError):
    """Pagination cursor is malformed, tampered with or has null boundaries.

    Treated as bad user input. Listing fails closed instead of guessing
    a default page.
    """

    def __init__(self, reason: str = "malformed cursor"):
        self.reason = reason
        super().__init__("Invalid pagination cursor", details={"reason": reason})


class InvalidFilterError(RepositoryError):
    """Invalid filter or query parameters."""

    def __init__(self, message: str, filter_name: str | None = None):
        details = {"filter": filter_name} if filter_name else {}
        super().__init__(message, details=details)


class QueryContractError(RepositoryError):
    """A query contract does not satisfy the pagination preconditions."""

    def __init__(self, contract: Any, message: str):
        self.contract = contract
        name = getattr(contract, "__name__", type(contract).__name__)
        super().__init__(message, details={"contract": name})


class ChangesetError(RepositoryError):
    """Programming error while building or applying a changeset."""


class ChangesetInvalidError(RepositoryError):
    """The changeset failed validation; nothing was written.

    Attributes:
        changeset: The invalid changeset, including nested embed changesets
    """

    def __init__(self, changeset: Changeset):
        self.changeset = changeset
        fields = sorted(changeset.errors_by_field())
        super().__init__("Changeset is invalid", details={"fields": fields})

    def errors_by_field(self) -> dict[str, Any]:
        """Field-scoped error messages, nested embeds included."""
        return self.changeset.errors_by_field()


class ChangesetRejectedError(RepositoryError):
    """The changeset function returned a failure value instead of a changeset.

    Attributes:
        reason: Whatever the changeset function returned
    """

    def __init__(self, reason: Any):
        self.reason = reason
        super().__init__("Changeset function rejected the update", details={"reason": reason})


class StorageError(RepositoryError):
    """The database engine failed (connection, statement, timeout).

    The original SQLAlchemy exception is kept as ``__cause__``. This layer
    never retries.
    """

    def __init__(self, operation: str, error: Exception):
        self.operation = operation
        self.error = error
        super().__init__(
            f"Storage failure during {operation}",
            details={"error": type(error).__name__},
        )


class AfterCommitError(RepositoryError):
    """An after-commit callback failed.

    The mutation is already committed and is not rolled back.

    Attributes:
        entity: The committed entity
        callback: The callback that failed
    """

    def __init__(self, entity: Any, callback: Any):
        self.entity = entity
        self.callback = callback
        name = getattr(callback, "__qualname__", repr(callback))
        super().__init__("After-commit callback failed", details={"callback": name})


__all__ = [
    "AfterCommitError",
    "ChangesetError",
    "ChangesetInvalidError",
    "ChangesetRejectedError",
    "InvalidCursorError",
    "InvalidFilterError",
    "MultipleResultsFoundError",
    "NotFoundError",
    "QueryContractError",
    "RepositoryError",
    "StorageError",
]
