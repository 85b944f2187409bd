"""Polymorphic embedded documents.

A JSON column often stores one of several typed shapes, chosen by a tag
field. ``cast_polymorphic_embed`` validates such a column as its own nested
changeset and, once the parent is written, flattens the nested result back
into a plain JSON-ready dict:

    class OpenIDConfig(EmbeddedSchema):
        type: Literal["openid_connect"] = "openid_connect"
        client_id: str
        discovery_document_uri: str

        @classmethod
        def changeset(cls, current, attrs):
            return (
                super().changeset(current, attrs)
                .pipe(validate_uri, "discovery_document_uri")
            )

    adapter_config = PolymorphicEmbed(OpenIDConfig, EmailConfig)

    changeset = Changeset.cast(provider, attrs, ["name", "adapter_config"])
    changeset = cast_polymorphic_embed(changeset, "adapter_config", with_=adapter_config)

The nested changeset lives in ``changeset.changes[field]`` until the parent
is applied; only then is it serialized, and only when every level is valid.
"""

from __future__ import annotations

import typing
from collections.abc import Callable, Mapping
from functools import partial
from typing import Annotated, Any, ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from repokit.core.changeset.changeset import Changeset
from repokit.core.database.exceptions import ChangesetError

type EmbedBuilder = Callable[[Mapping[str, Any], Mapping[str, Any]], Changeset]


def _is_map_type(type_: Any) -> bool:
    if type_ in (dict, Mapping):
        return True
    return typing.get_origin(type_) in (dict, Mapping)


def _is_empty(value: Any) -> bool:
    return value is None or value == {}


def _as_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return dict(value)


def _flatten(changeset: Changeset, *, field: str) -> Changeset:
    nested = changeset.get_change(field)
    if not isinstance(nested, Changeset):
        return changeset

    value = nested.apply_action("dump")
    if isinstance(value, BaseModel):
        dumped = value.model_dump(mode="json")
    else:
        dumped = TypeAdapter(Any).dump_python(value, mode="json")
    flattened = {str(key): item for key, item in dumped.items()}
    return changeset.delete_change(field).put_change(field, flattened)


def cast_polymorphic_embed(
    changeset: Changeset,
    field: str,
    *,
    with_: EmbedBuilder,
    required: bool = False,
) -> Changeset:
    """Validate ``field`` as a nested changeset built by ``with_(current, changes)``.

    No embedded validation happens when ``field`` already has an error. The
    parent stays valid only if the nested changeset is valid; the nested
    value is flattened to a dict with string keys by a prepare hook.

    Raises:
        ChangesetError: If ``field`` is not declared as a mapping type
    """
    if not _is_map_type(changeset.types.get(field)):
        msg = f"Polymorphic embed {field!r} must be declared as a mapping"
        raise ChangesetError(msg, details={"field": field})

    if changeset.has_errors(field):
        return changeset

    current = changeset.data_value(field)
    changes = changeset.get_change(field)

    if required and _is_empty(changes) and _is_empty(current):
        return changeset.add_error(field, "can't be blank", validation="required")

    nested = with_(_as_dict(current), _as_dict(changes))
    if not isinstance(nested, Changeset):
        msg = f"Embed builder for {field!r} must return a Changeset"
        raise ChangesetError(msg, details={"field": field})

    nested = nested.with_action(changeset.action or "update")
    changeset = changeset.put_change(field, nested)
    changeset = changeset.merge_validity(nested)
    return changeset.prepare_changes(partial(_flatten, field=field))


class EmbeddedSchema(BaseModel):
    """Base class for embedded document variants.

    Override ``changeset()`` to add validation rules on top of casting.
    """

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def changeset(cls, current: Mapping[str, Any], attrs: Mapping[str, Any]) -> Changeset:
        """Cast ``attrs`` over ``current`` and require the model's required fields."""
        fields = list(cls.model_fields)
        changeset = Changeset.cast(dict(current), attrs, fields, schema=cls)
        required = [name for name, info in cls.model_fields.items() if info.is_required()]
        return changeset.validate_required(required)


class PolymorphicEmbed:
    """Dispatch embedded documents to a variant by their tag field.

    Each variant declares the tag as a ``Literal`` field. Calling the
    instance builds the nested changeset for ``cast_polymorphic_embed``.

    Example:
        embed = PolymorphicEmbed(OpenIDConfig, EmailConfig, tag_field="type")
        config = embed.load(provider.adapter_config)   # OpenIDConfig | EmailConfig
        raw = embed.dump(config)
    """

    unknown_tag_message: ClassVar[str] = "is invalid"

    def __init__(self, *variants: type[EmbeddedSchema], tag_field: str = "type") -> None:
        if not variants:
            msg = "PolymorphicEmbed needs at least one variant"
            raise ChangesetError(msg)

        self.tag_field = tag_field
        self.variants: dict[str, type[EmbeddedSchema]] = {}
        for variant in variants:
            info = variant.model_fields.get(tag_field)
            if info is None:
                msg = f"{variant.__name__} has no {tag_field!r} field"
                raise ChangesetError(msg)
            for tag in typing.get_args(info.annotation):
                self.variants[tag] = variant

        if len(variants) == 1:
            self._adapter = TypeAdapter(variants[0])
        else:
            union = Union[tuple(variants)]  # noqa: UP007
            self._adapter = TypeAdapter(Annotated[union, Field(discriminator=tag_field)])

    def variant_for(self, tag: Any) -> type[EmbeddedSchema] | None:
        return self.variants.get(tag)

    def load(self, data: Mapping[str, Any]) -> EmbeddedSchema:
        """Validate stored data into its variant model."""
        return self._adapter.validate_python(dict(data))

    def dump(self, value: EmbeddedSchema) -> dict[str, Any]:
        return self._adapter.dump_python(value, mode="json")

    def __call__(self, current: Mapping[str, Any], attrs: Mapping[str, Any]) -> Changeset:
        current_tag = current.get(self.tag_field)
        tag = attrs.get(self.tag_field, current_tag)
        variant = self.variant_for(tag)

        if variant is None:
            changeset = Changeset.change(dict(current), types={self.tag_field: str})
            return changeset.add_error(self.tag_field, self.unknown_tag_message, validation="inclusion")

        # Switching variants discards the fields of the previous one
        if tag != current_tag:
            current = {}
        return variant.changeset(current, attrs)


__all__ = ["EmbedBuilder", "EmbeddedSchema", "PolymorphicEmbed", "cast_polymorphic_embed"]
