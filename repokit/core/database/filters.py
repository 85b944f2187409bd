"""Filtering helpers for SQLAlchemy statements.

Two layers live here. ``StatementFilter`` subclasses are plain helpers that
modify a ``select()`` in place of hand-written ``where()`` chains:

    stmt = select(Actor)
    stmt = CollectionFilter(Actor.type, ["account_user", "service_account"]).apply(stmt)

``Filter`` descriptors are the user-facing side published by query
contracts. A descriptor names a filter, documents its value type and holds a
function returning ``(statement, condition)`` so the function can add joins
before the condition is applied:

    Filter(
        name="inserted_at",
        title="Created",
        type="range",
        fun=lambda stmt, value: (stmt, by_range(value, Actor.inserted_at)),
    )

``apply_filters()`` validates user input against the contract's descriptors
and raises ``InvalidFilterError`` for unknown names or disallowed values.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import Select, false

from repokit.core.database.exceptions import InvalidFilterError

if TYPE_CHECKING:
    from sqlalchemy.orm import InstrumentedAttribute
    from sqlalchemy.sql.elements import ColumnElement

    from repokit.core.database.query import QueryContract

type FilterResult = tuple[Select[Any], ColumnElement[bool]]
type FilterFunction = Callable[[Select[Any], Any], FilterResult]
type FilterType = Literal["string", "boolean", "range", "list"]


class StatementFilter(ABC):
    """Base class for statement filters.

    All filters implement `apply()` which modifies a SQLAlchemy statement.
    """

    @abstractmethod
    def apply(self, statement: Select[Any]) -> Select[Any]:
        """Apply filter to statement."""
        ...


class CollectionFilter(StatementFilter):
    """Filter by collection (WHERE ... IN).

    An empty collection matches nothing, or everything when inverted.
    """

    def __init__(
        self,
        field: InstrumentedAttribute[Any],
        values: Sequence[Any],
        *,
        invert: bool = False,
    ):
        self.field = field
        self.values = list(values)
        self.invert = invert

    def apply(self, statement: Select[Any]) -> Select[Any]:
        if not self.values:
            return statement.where(false()) if not self.invert else statement

        if self.invert:
            return statement.where(self.field.notin_(self.values))
        return statement.where(self.field.in_(self.values))


@dataclass(frozen=True, slots=True)
class Range:
    """Inclusive value range; either bound may be open (None)."""

    from_: Any = None
    to: Any = None


def by_range(value: Range, expression: Any) -> ColumnElement[bool]:
    """Build a condition for an inclusive range over ``expression``.

    Raises:
        InvalidFilterError: If both bounds are open
    """
    if value.from_ is None and value.to is None:
        raise InvalidFilterError("Range filter needs at least one bound")
    if value.to is None:
        return expression >= value.from_
    if value.from_ is None:
        return expression <= value.to
    if value.from_ == value.to:
        return expression == value.from_
    return expression.between(value.from_, value.to)


@dataclass(frozen=True, slots=True)
class Filter:
    """User-facing filter descriptor.

    Attributes:
        name: Key used in ``filters={name: value}``
        fun: ``(statement, value) -> (statement, condition)``
        title: Human-readable label
        type: Value type accepted by ``fun``
        values: Allowed values, or None to accept any value of ``type``
    """

    name: str
    fun: FilterFunction
    title: str | None = None
    type: FilterType = "string"
    values: tuple[Any, ...] | None = field(default=None)

    def check(self, value: Any) -> Any:
        """Validate and normalize a user-supplied value."""
        match self.type:
            case "range":
                if isinstance(value, Mapping):
                    value = Range(from_=value.get("from"), to=value.get("to"))
                if not isinstance(value, Range):
                    raise InvalidFilterError("Expected a range", filter_name=self.name)
            case "boolean":
                if not isinstance(value, bool):
                    raise InvalidFilterError("Expected a boolean", filter_name=self.name)
            case "list":
                if isinstance(value, str | bytes) or not isinstance(value, Sequence):
                    raise InvalidFilterError("Expected a list", filter_name=self.name)
                value = list(value)
            case "string":
                if not isinstance(value, str):
                    raise InvalidFilterError("Expected a string", filter_name=self.name)

        if self.values is not None:
            candidates = value if self.type == "list" else [value]
            if any(candidate not in self.values for candidate in candidates):
                raise InvalidFilterError("Value is not allowed", filter_name=self.name)
        return value


def apply_filter(result: FilterResult) -> Select[Any]:
    """Turn a filter function's ``(statement, condition)`` into a statement."""
    statement, condition = result
    return statement.where(condition)


def append_filter(
    statement: Select[Any], fun: Callable[[Select[Any]], FilterResult]
) -> Select[Any]:
    """Chain filter functions:

    stmt = append_filter(stmt, lambda s: by_account_id_filter(s, account_id))
    """
    return apply_filter(fun(statement))


def apply_filters(
    statement: Select[Any],
    contract: type[QueryContract],
    filters: Mapping[str, Any] | None,
) -> Select[Any]:
    """Apply user-supplied filter values using the contract's descriptors.

    Raises:
        InvalidFilterError: For an unknown filter name or a bad value
    """
    if not filters:
        return statement

    descriptors = {descriptor.name: descriptor for descriptor in contract.filters()}
    for name, value in filters.items():
        descriptor = descriptors.get(name)
        if descriptor is None:
            raise InvalidFilterError(f"Unknown filter {name!r}", filter_name=name)
        statement = apply_filter(descriptor.fun(statement, descriptor.check(value)))
    return statement


__all__ = [
    "CollectionFilter",
    "Filter",
    "FilterFunction",
    "Range",
    "StatementFilter",
    "append_filter",
    "apply_filter",
    "apply_filters",
    "by_range",
]
