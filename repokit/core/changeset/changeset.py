"""Validated mutations.

A ``Changeset`` carries the source data, the pending changes cast from
untrusted input and every field error found along the way. It is
immutable: each step returns a new changeset, so a half-validated value can
never leak into storage.

    changeset = (
        Changeset.cast(actor, params, ["name", "email", "type"])
        .validate_required(["name", "type"])
        .validate_length("name", max=255)
        .pipe(validate_email, "email")
    )
    if changeset.valid:
        await repo.update(session, changeset)

Casting goes through pydantic ``TypeAdapter`` so declared field types
(from an explicit ``types`` map, a pydantic schema or the SQLAlchemy
mapper) decide what raw values are accepted.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Any, NamedTuple

from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy import JSON
from sqlalchemy import inspect as sa_inspect

from repokit.core.database.exceptions import ChangesetError, ChangesetInvalidError

_EMPTY: Mapping[str, Any] = MappingProxyType({})

type Hook = Callable[[Changeset], Changeset]
type ErrorSpec = FieldError | tuple[str, str] | tuple[str, str, Mapping[str, Any]]


class FieldError(NamedTuple):
    """One field-scoped validation error."""

    field: str
    message: str
    meta: Mapping[str, Any] = _EMPTY


@lru_cache(maxsize=512)
def _adapter(type_: Any) -> TypeAdapter[Any]:
    return TypeAdapter(type_)


def _python_type(column: Any) -> Any:
    # JSON columns hold documents; python_type is not a mapping on every release
    if isinstance(column.type, JSON):
        return dict[str, Any]
    try:
        return column.type.python_type
    except NotImplementedError:
        return Any


def resolve_types(
    data: Any,
    fields: Iterable[str],
    types: Mapping[str, Any] | None = None,
    schema: type[BaseModel] | None = None,
) -> dict[str, Any]:
    """Find the declared type of every field.

    Lookup order: explicit ``types``, the pydantic ``schema``, the pydantic
    model of ``data``, then the SQLAlchemy mapper of ``data``.

    Raises:
        ChangesetError: If a field has no known type
    """
    model_fields = {}
    if schema is not None:
        model_fields = schema.model_fields
    elif isinstance(data, BaseModel):
        model_fields = type(data).model_fields

    mapper = None if isinstance(data, Mapping | BaseModel) else sa_inspect(type(data), raiseerr=False)

    resolved: dict[str, Any] = {}
    for name in fields:
        if types is not None and name in types:
            resolved[name] = types[name]
        elif name in model_fields:
            resolved[name] = model_fields[name].annotation
        elif mapper is not None and name in mapper.columns:
            resolved[name] = _python_type(mapper.columns[name])
        else:
            msg = f"Unknown type for field {name!r}"
            raise ChangesetError(msg, details={"field": name})
    return resolved


def data_value(data: Any, name: str) -> Any:
    """Read a field from dict, pydantic or ORM data."""
    if isinstance(data, Mapping):
        return data.get(name)
    return getattr(data, name, None)


def _has_field(data: Any, name: str) -> bool:
    if isinstance(data, Mapping):
        return name in data
    if isinstance(data, BaseModel):
        return name in type(data).model_fields
    return hasattr(data, name)


def _to_error(spec: ErrorSpec) -> FieldError:
    if isinstance(spec, FieldError):
        return spec
    if len(spec) == 2:
        return FieldError(spec[0], spec[1])
    return FieldError(spec[0], spec[1], MappingProxyType(dict(spec[2])))


@dataclass(frozen=True, slots=True)
class Changeset:
    """Immutable, progressively validated set of field changes.

    Attributes:
        data: Source value (dict, pydantic model or mapped ORM instance)
        changes: Pending changes; nested changesets for polymorphic embeds
        errors: Accumulated field errors, in the order they were added
        params: Raw input the changes were cast from
        types: Declared type of every castable field
        valid: False once any error was added
        action: Set when the changeset is applied (``insert``, ``update``, ...)
        schema: Pydantic model used to build the result of ``apply_action()``
        prepare: Hooks run just before the changeset is written
    """

    data: Any
    changes: Mapping[str, Any] = _EMPTY
    errors: tuple[FieldError, ...] = ()
    params: Mapping[str, Any] | None = None
    types: Mapping[str, Any] = _EMPTY
    valid: bool = True
    action: str | None = None
    schema: type[BaseModel] | None = None
    prepare: tuple[Hook, ...] = field(default=(), repr=False)

    # Construction

    @classmethod
    def cast(
        cls,
        data: Any,
        params: Mapping[str, Any],
        permitted: Sequence[str],
        *,
        types: Mapping[str, Any] | None = None,
        schema: type[BaseModel] | None = None,
        empty_values: tuple[Any, ...] = ("",),
    ) -> Changeset:
        """Cast permitted keys of ``params`` into typed changes.

        Keys outside ``permitted`` are ignored. Values equal to the current
        data are not recorded as changes; values in ``empty_values`` become
        None. A value the declared type rejects adds an ``is invalid``
        error instead of a change.
        """
        resolved = resolve_types(data, permitted, types, schema)
        changes: dict[str, Any] = {}
        errors: list[FieldError] = []

        for name in permitted:
            if name not in params:
                continue
            value = params[name]
            if value in empty_values:
                value = None

            if value is not None:
                try:
                    value = _adapter(resolved[name]).validate_python(value)
                except ValidationError:
                    errors.append(
                        FieldError(name, "is invalid", MappingProxyType({"validation": "cast"}))
                    )
                    continue

            if value != data_value(data, name):
                changes[name] = value

        return cls(
            data=data,
            changes=MappingProxyType(changes),
            errors=tuple(errors),
            params=MappingProxyType(dict(params)),
            types=MappingProxyType(resolved),
            valid=not errors,
            schema=schema,
        )

    @classmethod
    def change(
        cls,
        data: Any,
        changes: Mapping[str, Any] | None = None,
        *,
        types: Mapping[str, Any] | None = None,
        schema: type[BaseModel] | None = None,
    ) -> Changeset:
        """Wrap already-trusted changes without casting them."""
        changes = dict(changes or {})
        resolved = dict(types or {})
        changeset = cls(data=data, types=MappingProxyType(resolved), schema=schema)
        for name, value in changes.items():
            changeset = changeset.put_change(name, value)
        return changeset

    def _replace(self, **kwargs: Any) -> Changeset:
        if "changes" in kwargs:
            kwargs["changes"] = MappingProxyType(dict(kwargs["changes"]))
        return dataclasses.replace(self, **kwargs)

    # Changes

    def put_change(self, name: str, value: Any) -> Changeset:
        """Record a change; a value equal to the current data drops it."""
        changes = dict(self.changes)
        if not isinstance(value, Changeset) and value == data_value(self.data, name):
            changes.pop(name, None)
        else:
            changes[name] = value
        return self._replace(changes=changes)

    def delete_change(self, name: str) -> Changeset:
        if name not in self.changes:
            return self
        changes = dict(self.changes)
        del changes[name]
        return self._replace(changes=changes)

    def get_change(self, name: str, default: Any = None) -> Any:
        return self.changes.get(name, default)

    def has_change(self, name: str) -> bool:
        return name in self.changes

    def update_change(self, name: str, fun: Callable[[Any], Any]) -> Changeset:
        """Replace a pending change with ``fun(change)``; no-op without a change."""
        if name not in self.changes:
            return self
        return self.put_change(name, fun(self.changes[name]))

    def fetch_field(self, name: str) -> tuple[str, Any] | None:
        """Return ``("changes", value)``, ``("data", value)`` or None if unknown."""
        if name in self.changes:
            return "changes", self.changes[name]
        if _has_field(self.data, name):
            return "data", data_value(self.data, name)
        return None

    def get_field(self, name: str, default: Any = None) -> Any:
        found = self.fetch_field(name)
        return default if found is None else found[1]

    def data_value(self, name: str) -> Any:
        return data_value(self.data, name)

    # Errors

    def add_error(self, name: str, message: str, **meta: Any) -> Changeset:
        error = FieldError(name, message, MappingProxyType(meta) if meta else _EMPTY)
        return self._replace(errors=(*self.errors, error), valid=False)

    def has_errors(self, name: str | None = None) -> bool:
        if name is None:
            return bool(self.errors)
        return any(error.field == name for error in self.errors)

    def is_empty(self, name: str) -> bool:
        return self.get_field(name) is None

    def errors_by_field(self) -> dict[str, Any]:
        """Group messages by field; nested embed errors become nested dicts."""
        grouped: dict[str, Any] = {}
        for error in self.errors:
            grouped.setdefault(error.field, []).append(error.message)

        for name, value in self.changes.items():
            if isinstance(value, Changeset) and not value.valid and name not in grouped:
                grouped[name] = value.errors_by_field()
        return grouped

    # Validation

    def validate_change(
        self, name: str, validator: Callable[[str, Any], Iterable[ErrorSpec]]
    ) -> Changeset:
        """Run ``validator(field, value)`` on a non-null pending change.

        The validator returns ``(field, message)`` pairs, optionally with a
        meta mapping as third element; an empty result means valid.
        """
        value = self.changes.get(name)
        if value is None:
            return self

        changeset = self
        for spec in validator(name, value):
            error = _to_error(spec)
            changeset = changeset._replace(errors=(*changeset.errors, error), valid=False)
        return changeset

    def validate_required(
        self, names: str | Sequence[str], message: str = "can't be blank"
    ) -> Changeset:
        """Require a non-blank value in changes or data.

        Fields that already carry an error are not reported twice.
        """
        changeset = self
        for name in [names] if isinstance(names, str) else names:
            value = self.get_field(name)
            missing = value is None or (isinstance(value, str) and not value.strip())
            if missing and not self.has_errors(name):
                changeset = changeset.add_error(name, message, validation="required")
        return changeset

    def validate_length(
        self,
        name: str,
        *,
        min: int | None = None,  # noqa: A002
        max: int | None = None,  # noqa: A002
        is_: int | None = None,
    ) -> Changeset:
        def check(_name: str, value: Any) -> list[ErrorSpec]:
            unit = "character(s)" if isinstance(value, str) else "item(s)"
            verb = "should be" if isinstance(value, str) else "should have"
            length = len(value)
            if is_ is not None and length != is_:
                return [(name, f"{verb} {is_} {unit}", {"validation": "length", "kind": "is", "count": is_})]
            if min is not None and length < min:
                return [(name, f"{verb} at least {min} {unit}", {"validation": "length", "kind": "min", "count": min})]
            if max is not None and length > max:
                return [(name, f"{verb} at most {max} {unit}", {"validation": "length", "kind": "max", "count": max})]
            return []

        return self.validate_change(name, check)

    def validate_format(
        self, name: str, pattern: str | re.Pattern[str], message: str = "has invalid format"
    ) -> Changeset:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        return self.validate_change(
            name,
            lambda _name, value: [] if regex.search(value) else [(name, message, {"validation": "format"})],
        )

    def validate_inclusion(
        self, name: str, values: Iterable[Any], message: str = "is invalid"
    ) -> Changeset:
        allowed = tuple(values)
        return self.validate_change(
            name,
            lambda _name, value: [] if value in allowed else [(name, message, {"validation": "inclusion"})],
        )

    def validate(self, rule: Hook) -> Changeset:
        """Apply a composable rule ``changeset -> changeset``."""
        return rule(self)

    def pipe(self, fun: Callable[..., Changeset], *args: Any, **kwargs: Any) -> Changeset:
        """Call ``fun(self, *args, **kwargs)``; for module-level validation rules."""
        return fun(self, *args, **kwargs)

    # Applying

    def prepare_changes(self, hook: Hook) -> Changeset:
        """Register a hook that runs right before the changes are written."""
        return self._replace(prepare=(*self.prepare, hook))

    def run_prepare(self) -> Changeset:
        changeset = self._replace(prepare=())
        for hook in self.prepare:
            changeset = hook(changeset)
        return changeset

    def with_action(self, action: str | None) -> Changeset:
        return self._replace(action=action)

    def merge_validity(self, other: Changeset) -> Changeset:
        """Stay valid only if ``other`` is valid too."""
        return self._replace(valid=self.valid and other.valid)

    def drop_params(self, *names: str) -> Changeset:
        """Forget raw input for ``names``."""
        if self.params is None:
            return self
        params = {key: value for key, value in self.params.items() if key not in names}
        return self._replace(params=MappingProxyType(params))

    def apply_changes(self) -> Any:
        """Return the data with every pending change applied, ignoring validity.

        Raises:
            ChangesetError: If the data type cannot be copied with changes
        """
        changes = {
            name: value.apply_changes() if isinstance(value, Changeset) else value
            for name, value in self.changes.items()
        }
        if isinstance(self.data, Mapping):
            return {**self.data, **changes}
        if isinstance(self.data, BaseModel):
            return self.data.model_copy(update=changes)
        msg = f"Cannot apply changes to {type(self.data).__name__}; use Repo.update()"
        raise ChangesetError(msg)

    def apply_action(self, action: str) -> Any:
        """Run prepare hooks and apply changes, or raise if invalid.

        With a ``schema`` and mapping data the result is validated into an
        instance of the schema.

        Raises:
            ChangesetInvalidError: If the changeset is invalid
        """
        changeset = self.with_action(action)
        if not changeset.valid:
            raise ChangesetInvalidError(changeset)

        changeset = changeset.run_prepare()
        if not changeset.valid:
            raise ChangesetInvalidError(changeset)

        result = changeset.apply_changes()
        if changeset.schema is not None and isinstance(result, Mapping):
            return changeset.schema.model_validate(result)
        return result


__all__ = ["Changeset", "FieldError", "data_value", "resolve_types"]
