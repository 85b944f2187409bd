"""Relational access building blocks.

Query Contracts:
    - QueryContract: per-entity ordering, preload resolvers and filters
    - CursorField: one (binding, direction, field) ordering entry
    - ContractRegistry: read-only model -> contract map built at startup

Filters:
    - Filter, Range, by_range: user-facing filter descriptors
    - CollectionFilter: WHERE ... IN helper
    - apply_filter, append_filter, apply_filters

Preloading:
    - resolve, load, Preload

The repository lives in ``repokit.core.database.repository`` and is also
exported from ``repokit``.
"""

from repokit.core.database.exceptions import (
    AfterCommitError,
    ChangesetError,
    ChangesetInvalidError,
    ChangesetRejectedError,
    InvalidCursorError,
    InvalidFilterError,
    MultipleResultsFoundError,
    NotFoundError,
    QueryContractError,
    RepositoryError,
    StorageError,
)
from repokit.core.database.filters import (
    CollectionFilter,
    Filter,
    Range,
    StatementFilter,
    append_filter,
    apply_filter,
    apply_filters,
    by_range,
)
from repokit.core.database.preloader import Preload, load, resolve
from repokit.core.database.query import (
    ContractRegistry,
    CursorField,
    QueryContract,
    SortDirection,
    fetch_cursor_fields,
    get_filters,
    get_preloads,
)

__all__ = [
    "AfterCommitError",
    "ChangesetError",
    "ChangesetInvalidError",
    "ChangesetRejectedError",
    "CollectionFilter",
    "ContractRegistry",
    "CursorField",
    "Filter",
    "InvalidCursorError",
    "InvalidFilterError",
    "MultipleResultsFoundError",
    "NotFoundError",
    "Preload",
    "QueryContract",
    "QueryContractError",
    "Range",
    "RepositoryError",
    "SortDirection",
    "StatementFilter",
    "StorageError",
    "append_filter",
    "apply_filter",
    "apply_filters",
    "by_range",
    "fetch_cursor_fields",
    "get_filters",
    "get_preloads",
    "load",
    "resolve",
]
