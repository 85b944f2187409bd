"""Query contracts: the per-entity capability consumed by the repository.

Every entity type that can be listed, locked or preloaded publishes one
contract class. The ordering is mandatory; preloads and filters are
optional and default to empty.

Example:
    class ActorQuery(QueryContract):
        @classmethod
        def cursor_fields(cls):
            return [
                CursorField(Actor, "asc", "inserted_at"),
                CursorField(Actor, "asc", "id"),
            ]

        @classmethod
        def preloads(cls):
            return {"memberships": select(Membership).where(Membership.deleted_at.is_(None))}

Contracts are immutable and shared by every request. ``ContractRegistry``
maps model classes to their contracts so the registry can be built once at
startup and handed to the repository.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from enum import StrEnum
from functools import cache
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, NamedTuple

from sqlalchemy import Index, Select, UniqueConstraint
from sqlalchemy.orm import ColumnProperty

from repokit.core.database.exceptions import QueryContractError

if TYPE_CHECKING:
    from sqlalchemy import Column

    from repokit.core.database.filters import Filter


class SortDirection(StrEnum):
    """Sort direction of one ordering field."""

    ASC = "asc"
    DESC = "desc"

    def reversed(self) -> SortDirection:
        return SortDirection.DESC if self is SortDirection.ASC else SortDirection.ASC


class CursorField(NamedTuple):
    """One ``(binding, direction, field)`` entry of a contract's ordering.

    Attributes:
        binding: Mapped class or ``aliased()`` entity the field belongs to
        direction: Sort direction for forward pagination
        field: Attribute name; also read from result rows to build cursors
    """

    binding: Any
    direction: SortDirection | str
    field: str

    @property
    def column(self) -> Any:
        """SQL expression for this field."""
        return getattr(self.binding, self.field)

    @property
    def sort(self) -> SortDirection:
        return SortDirection(self.direction)


# A preload resolver is either a function enriching already-fetched entities,
# a static statement restricting the association, or a zero-argument factory
# returning such a statement.
type PreloadFunction = Callable[[list[Any]], list[Any] | Awaitable[list[Any]]]
type PreloadResolver = PreloadFunction | Select[Any] | Callable[[], Select[Any]]


class QueryContract:
    """Base class for per-entity query contracts.

    Subclasses are used as classes, never instantiated.
    """

    @classmethod
    def cursor_fields(cls) -> Sequence[CursorField]:
        """Total ordering of result rows; the last field must be unique per row."""
        raise QueryContractError(cls, "cursor_fields() is required for pagination")

    @classmethod
    def preloads(cls) -> Mapping[str, PreloadResolver]:
        """Custom preload resolvers keyed by association name."""
        return {}

    @classmethod
    def filters(cls) -> Sequence[Filter]:
        """User-facing filter descriptors."""
        return ()


def _column_of(contract: type[QueryContract], cursor_field: CursorField) -> Column[Any]:
    try:
        attr = cursor_field.column
    except AttributeError as exc:
        raise QueryContractError(
            contract, f"{cursor_field.field!r} is not an attribute of {cursor_field.binding!r}"
        ) from exc

    prop = getattr(attr, "property", None)
    if not isinstance(prop, ColumnProperty) or len(prop.columns) != 1:
        raise QueryContractError(contract, f"{cursor_field.field!r} is not a plain column")
    return prop.columns[0]


def _is_unique(column: Column[Any]) -> bool:
    if column.primary_key and len(column.table.primary_key.columns) == 1:
        return True
    if column.unique:
        return True
    for constraint in column.table.constraints:
        if isinstance(constraint, UniqueConstraint) and list(constraint.columns) == [column]:
            return True
    for index in getattr(column.table, "indexes", ()):
        if isinstance(index, Index) and index.unique and list(index.columns) == [column]:
            return True
    return False


@cache
def fetch_cursor_fields(contract: type[QueryContract]) -> tuple[CursorField, ...]:
    """Return the contract's ordering after checking its preconditions.

    The ordering must be non-empty, every field must be a NOT NULL column
    (cursor values are never null) and the trailing field must be unique per
    row; otherwise ties make page boundaries ambiguous.

    Raises:
        QueryContractError: If the ordering cannot define a strict total order
    """
    fields = tuple(CursorField(*entry) for entry in contract.cursor_fields())
    if not fields:
        raise QueryContractError(contract, "cursor_fields() must not be empty")

    for entry in fields:
        try:
            SortDirection(entry.direction)
        except ValueError as exc:
            raise QueryContractError(
                contract, f"unknown sort direction {entry.direction!r}"
            ) from exc
        if _column_of(contract, entry).nullable:
            raise QueryContractError(
                contract, f"cursor field {entry.field!r} must not be nullable"
            )

    if not _is_unique(_column_of(contract, fields[-1])):
        raise QueryContractError(
            contract, f"trailing cursor field {fields[-1].field!r} must be unique per row"
        )
    return fields


def get_preloads(contract: type[QueryContract]) -> Mapping[str, PreloadResolver]:
    return MappingProxyType(dict(contract.preloads()))


def get_filters(contract: type[QueryContract]) -> tuple[Filter, ...]:
    return tuple(contract.filters())


class ContractRegistry(Mapping[type, type[QueryContract]]):
    """Read-only mapping of model classes to their query contracts.

    Example:
        contracts = ContractRegistry({Actor: ActorQuery, Token: TokenQuery})
        repo = Repo.from_registry(Actor, contracts)
        page = await repo.list(session, select(Actor))
    """

    __slots__ = ("_contracts",)

    def __init__(self, contracts: Mapping[type, type[QueryContract]]) -> None:
        self._contracts = MappingProxyType(dict(contracts))

    def __getitem__(self, model: type) -> type[QueryContract]:
        return self._contracts[model]

    def __iter__(self) -> Iterator[type]:
        return iter(self._contracts)

    def __len__(self) -> int:
        return len(self._contracts)

    def resolve(self, contract_or_model: type) -> type[QueryContract]:
        """Return the contract itself, or the contract registered for a model."""
        if isinstance(contract_or_model, type) and issubclass(contract_or_model, QueryContract):
            return contract_or_model
        try:
            return self._contracts[contract_or_model]
        except KeyError as exc:
            raise QueryContractError(contract_or_model, "no query contract registered") from exc


__all__ = [
    "ContractRegistry",
    "CursorField",
    "PreloadResolver",
    "QueryContract",
    "SortDirection",
    "fetch_cursor_fields",
    "get_filters",
    "get_preloads",
]
