"""Composable validation rules for changesets.

Each rule takes a changeset plus arguments and returns a new changeset;
chain them with ``Changeset.pipe``:

    changeset = (
        Changeset.cast(provider, attrs, ["name", "url", "network"])
        .pipe(validate_uri, "url", require_trailing_slash=True)
        .pipe(normalize_url, "url")
        .pipe(validate_and_normalize_cidr, "network")
        .pipe(validate_not_in_cidr, "network", "100.64.0.0/10")
    )

Rules only look at pending changes unless stated otherwise, so an
unchanged field is never re-validated.
"""

from __future__ import annotations

import base64
import binascii
import inspect
import ipaddress
from collections.abc import Callable, Sequence
from datetime import date, datetime
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from email_validator import EmailNotValidError, validate_email as check_email

from repokit.core.changeset.changeset import Changeset, FieldError
from repokit.core.crypto import hash_equals, hash_value

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}

type Rule = Callable[[Changeset, str], Changeset]


# Helpers


def trim_change(changeset: Changeset, field: str) -> Changeset:
    """Strip whitespace from a string change, or from each string of a list."""

    def trim(value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, list):
            return [item.strip() for item in value]
        return value.strip()

    return changeset.update_change(field, trim)


def copy_change(changeset: Changeset, from_: str, to: str) -> Changeset:
    value = changeset.get_change(from_)
    if value is None:
        return changeset
    return changeset.put_change(to, value)


def _resolve_default(changeset: Changeset, value: Any) -> Any:
    if not callable(value):
        return value
    if len(inspect.signature(value).parameters) == 1:
        return value(changeset)
    return value()


def put_default_value(
    changeset: Changeset,
    field: str,
    value: Any = None,
    *,
    from_: str | None = None,
) -> Changeset:
    """Put ``value`` if the field is unchanged and currently null.

    ``value`` may be a zero-argument factory or a function of the
    changeset; ``from_`` copies the current value of another field.
    """
    if from_ is not None:
        found = changeset.fetch_field(from_)
        if found is None:
            return changeset
        value = found[1]

    if value is None:
        return changeset

    found = changeset.fetch_field(field)
    if found is None or found == ("data", None):
        return changeset.put_change(field, _resolve_default(changeset, value))
    return changeset


def redact_field(changeset: Changeset, field: str) -> Changeset:
    """Remove a change and its raw input so the secret is not kept around."""
    return changeset.delete_change(field).drop_params(field)


def put_hash(
    changeset: Changeset,
    value_field: str,
    kind: str,
    *,
    to: str,
    with_salt: str | None = None,
    with_nonce: str | None = None,
) -> Changeset:
    """Hash ``nonce + value + salt`` from pending changes into ``to``.

    Nothing happens unless ``value_field`` has a non-empty string change.
    """
    value = changeset.get_change(value_field)
    if not isinstance(value, str) or not value:
        return changeset

    def component(name: str | None) -> str:
        part = changeset.get_change(name) if name else None
        return part if isinstance(part, str) else ""

    digest = hash_value(kind, component(with_nonce) + value + component(with_salt))
    return changeset.put_change(to, digest)


# Validations


def validate_email(changeset: Changeset, field: str) -> Changeset:
    """Check the shape of an email address; no DNS lookups."""

    def check(_field: str, value: str) -> list[tuple[str, str]]:
        try:
            check_email(value, check_deliverability=False)
        except EmailNotValidError:
            return [(field, "is an invalid email address")]
        return []

    return changeset.validate_change(field, check).validate_length(field, max=160)


def validate_does_not_end_with(
    changeset: Changeset, field: str, suffix: str, message: str | None = None
) -> Changeset:
    message = message or f'can not end with "{suffix}"'
    return changeset.validate_change(
        field, lambda _field, value: [(field, message)] if value.endswith(suffix) else []
    )


def validate_uri(
    changeset: Changeset,
    field: str,
    *,
    schemes: Sequence[str] = ("http", "https"),
    require_trailing_slash: bool = False,
) -> Changeset:
    """Require an absolute URI with an allowed scheme."""

    def check(_field: str, value: str) -> list[tuple[str, str]]:
        try:
            uri = urlsplit(value)
            uri.port  # noqa: B018
        except ValueError as exc:
            return [(field, f"is invalid. Error at {exc}")]

        if not uri.hostname:
            return [(field, "does not contain a scheme or a host")]
        if not uri.scheme:
            return [(field, "does not contain a scheme")]
        if uri.scheme not in schemes:
            return [(field, f"only {', '.join(schemes)} schemes are supported")]
        if require_trailing_slash and uri.path and not uri.path.endswith("/"):
            return [(field, "does not end with a trailing slash")]
        return []

    return changeset.validate_change(field, check)


def normalize_url(changeset: Changeset, field: str) -> Changeset:
    """Default the scheme to https, drop default ports and end the path with ``/``."""
    value = changeset.get_change(field)
    if not isinstance(value, str) or changeset.has_errors(field):
        return changeset

    uri = urlsplit(value if "//" in value else f"//{value}")
    try:
        port = uri.port
    except ValueError:
        return changeset

    scheme = uri.scheme or "https"
    netloc = uri.hostname or ""
    if ":" in netloc:
        netloc = f"[{netloc}]"
    if uri.username:
        userinfo = uri.username if uri.password is None else f"{uri.username}:{uri.password}"
        netloc = f"{userinfo}@{netloc}"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"

    path = uri.path or "/"
    if not path.endswith("/"):
        path = f"{path}/"
    return changeset.put_change(field, urlunsplit((scheme, netloc, path, uri.query, uri.fragment)))


def validate_one_of(changeset: Changeset, field: str, validators: Sequence[Rule]) -> Changeset:
    """Pass if any validator adds no new error on ``field``; else report them all."""
    if changeset.get_change(field) is None:
        return changeset

    existing = [error for error in changeset.errors if error.field == field]
    collected: list[FieldError] = []
    for validator in validators:
        validated = validator(changeset, field)
        new_errors = [
            error for error in validated.errors if error.field == field and error not in existing
        ]
        if not new_errors:
            return changeset
        collected = new_errors + collected

    return changeset.validate_change(field, lambda _field, _value: collected)


def _parse_network(value: Any) -> ipaddress.IPv4Network | ipaddress.IPv6Network | None:
    try:
        return ipaddress.ip_network(str(value), strict=False)
    except ValueError:
        return None


def validate_not_in_cidr(
    changeset: Changeset, field: str, cidr: str, message: str | None = None
) -> Changeset:
    """Reject an IP or CIDR that overlaps ``cidr`` in either direction."""
    blocked = ipaddress.ip_network(cidr, strict=False)
    message = message or f"can not be in the CIDR {cidr}"

    def check(_field: str, value: Any) -> list[tuple[str, str]]:
        network = _parse_network(value)
        if network is None or network.version != blocked.version:
            return []
        return [(field, message)] if network.overlaps(blocked) else []

    return changeset.validate_change(field, check)


def validate_and_normalize_cidr(changeset: Changeset, field: str) -> Changeset:
    """Rewrite a CIDR so its address is the start of the range."""
    value = changeset.get_change(field)
    if value is None:
        return changeset
    try:
        network = ipaddress.ip_network(str(value), strict=False)
    except ValueError:
        return changeset.add_error(field, "is not a valid CIDR range")
    return changeset.put_change(field, str(network))


def validate_and_normalize_ip(changeset: Changeset, field: str) -> Changeset:
    value = changeset.get_change(field)
    if value is None:
        return changeset
    try:
        address = ipaddress.ip_address(str(value))
    except ValueError:
        return changeset.add_error(field, "is not a valid IP address")
    return changeset.put_change(field, str(address))


def validate_base64(changeset: Changeset, field: str) -> Changeset:
    def check(_field: str, value: str) -> list[tuple[str, str]]:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return [(field, "must be a base64-encoded string")]
        return []

    return changeset.validate_change(field, check)


def validate_hash(changeset: Changeset, value_field: str, kind: str, *, hash_field: str) -> Changeset:
    """Check a submitted plaintext against the hash stored in ``hash_field``.

    A hash field that is absent from the data means the value was verified
    before; a hash that is itself a pending change cannot be verified
    against. A stored hash of None matches no value.
    """
    found = changeset.fetch_field(hash_field)
    if found is None:
        return changeset.add_error(value_field, "is already verified", validation="hash")
    source, hashed = found
    if source == "changes":
        return changeset.add_error(value_field, "can't be verified", validation="hash")

    return changeset.validate_change(
        value_field,
        lambda _field, token: []
        if hash_equals(kind, token, hashed)
        else [(value_field, "is invalid", {"validation": "hash"})],
    )


def validate_required_one_of(changeset: Changeset, fields: Sequence[str]) -> Changeset:
    """Require at least one of ``fields``; otherwise every one of them gets an error."""
    if any(not changeset.is_empty(field) for field in fields):
        return changeset

    message = f"one of these fields must be present: {', '.join(fields)}"
    for field in fields:
        changeset = changeset.add_error(field, message, validation="one_of", one_of=tuple(fields))
    return changeset


def validate_datetime(changeset: Changeset, field: str, *, greater_than: datetime) -> Changeset:
    return changeset.validate_change(
        field,
        lambda _field, value: []
        if value > greater_than
        else [(field, f"must be greater than {greater_than.isoformat()}")],
    )


def validate_date(changeset: Changeset, field: str, *, greater_than: date) -> Changeset:
    return changeset.validate_change(
        field,
        lambda _field, value: []
        if value > greater_than
        else [(field, f"must be greater than {greater_than.isoformat()}")],
    )


__all__ = [
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
