"""Changesets: validated, typed mutations including polymorphic embeds."""

from repokit.core.changeset.changeset import Changeset, FieldError
from repokit.core.changeset.embeds import EmbeddedSchema, PolymorphicEmbed, cast_polymorphic_embed
from repokit.core.changeset.validators import (
    copy_change,
    normalize_url,
    put_default_value,
    put_hash,
    redact_field,
    trim_change,
    validate_and_normalize_cidr,
    validate_and_normalize_ip,
    validate_base64,
    validate_date,
    validate_datetime,
    validate_does_not_end_with,
    validate_email,
    validate_hash,
    validate_not_in_cidr,
    validate_one_of,
    validate_required_one_of,
    validate_uri,
)

__all__ = [
    "Changeset",
    "EmbeddedSchema",
    "FieldError",
    "PolymorphicEmbed",
    "cast_polymorphic_embed",
    "copy_change",
    "normalize_url",
    "put_default_value",
    "put_hash",
    "redact_field",
    "trim_change",
    "validate_and_normalize_cidr",
    "validate_and_normalize_ip",
    "validate_base64",
    "validate_date",
    "validate_datetime",
    "validate_does_not_end_with",
    "validate_email",
    "validate_hash",
    "validate_not_in_cidr",
    "validate_one_of",
    "validate_required_one_of",
    "validate_uri",
]
