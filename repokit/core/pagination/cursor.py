"""Cursor encoding and decoding for keyset pagination.

A cursor names one side of a page boundary: a direction plus the values of
the contract's ordering fields taken from the boundary row. The wire format
is opaque to callers:

1. ``[direction, [value, ...]]`` serialized with MessagePack (datetimes,
   dates, UUIDs and Decimals travel as extension types)
2. an 8-byte keyed BLAKE2b tag appended to the payload
3. URL-safe base64 without padding

Decoding rejects anything that does not survive every step unchanged: a
non-canonical base64 string, a bad tag, an unknown extension type, a
structure other than ``[direction, values]`` or a null boundary value. All
of those surface as ``InvalidCursorError`` and nothing else escapes
``decode()``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
import uuid
from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

import msgpack
from pydantic import BaseModel, Field

from repokit.core.database.exceptions import InvalidCursorError

TAG_SIZE = 8

_EXT_DATETIME = 1
_EXT_DATE = 2
_EXT_UUID = 3
_EXT_DECIMAL = 4

_SCALAR_TYPES = (str, int, float, bool, bytes, datetime, date, uuid.UUID, Decimal)
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class CursorDirection(StrEnum):
    """Which side of the boundary row the next query reads."""

    AFTER = "after"
    BEFORE = "before"


class Cursor(BaseModel):
    """Decoded cursor.

    Attributes:
        direction: Read rows after or before the boundary row
        values: Ordering field values of the boundary row, in contract order
    """

    direction: CursorDirection = Field(description="Pagination direction")
    values: tuple[Any, ...] = Field(description="Boundary values, one per ordering field")

    model_config = {"frozen": True}


def _pack_ext(value: Any) -> msgpack.ExtType:
    if isinstance(value, datetime):
        return msgpack.ExtType(_EXT_DATETIME, value.isoformat().encode())
    if isinstance(value, date):
        return msgpack.ExtType(_EXT_DATE, value.isoformat().encode())
    if isinstance(value, uuid.UUID):
        return msgpack.ExtType(_EXT_UUID, value.bytes)
    if isinstance(value, Decimal):
        return msgpack.ExtType(_EXT_DECIMAL, str(value).encode())
    msg = f"Cannot encode {type(value).__name__} in a cursor"
    raise TypeError(msg)


def _unpack_ext(code: int, data: bytes) -> Any:
    if code == _EXT_DATETIME:
        return datetime.fromisoformat(data.decode())
    if code == _EXT_DATE:
        return date.fromisoformat(data.decode())
    if code == _EXT_UUID:
        return uuid.UUID(bytes=data)
    if code == _EXT_DECIMAL:
        return Decimal(data.decode())
    msg = f"Unknown cursor extension type {code}"
    raise ValueError(msg)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class CursorCodec:
    """Encode and decode pagination cursors.

    Usage:
        codec = CursorCodec(secret="from-settings")
        token = codec.encode(CursorDirection.AFTER, [inserted_at, actor_id])
        cursor = codec.decode(token)   # raises InvalidCursorError if tampered
    """

    __slots__ = ("_key",)

    def __init__(self, secret: str | bytes) -> None:
        key = secret.encode() if isinstance(secret, str) else secret
        # BLAKE2b keys are at most 64 bytes
        self._key = hashlib.sha512(key).digest() if len(key) > 64 else key

    def _tag(self, payload: bytes) -> bytes:
        return hashlib.blake2b(payload, key=self._key, digest_size=TAG_SIZE).digest()

    def encode(self, direction: CursorDirection | str, values: Sequence[Any]) -> str:
        """Encode a direction and boundary values into an opaque token.

        Raises:
            ValueError: If any boundary value is None
            TypeError: If a value has no cursor representation
        """
        direction = CursorDirection(direction)
        values = list(values)
        if not values or any(value is None for value in values):
            msg = "Cursor values must be present and non-null"
            raise ValueError(msg)

        payload = msgpack.packb([direction.value, values], default=_pack_ext, use_bin_type=True)
        return _b64encode(payload + self._tag(payload))

    def decode(self, token: str) -> Cursor:
        """Decode a token produced by ``encode()``.

        Raises:
            InvalidCursorError: For any malformed, tampered or null-bearing token
        """
        if not isinstance(token, str) or not _TOKEN_RE.match(token):
            raise InvalidCursorError("not a base64url string")

        try:
            raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        except (binascii.Error, ValueError) as exc:
            raise InvalidCursorError("bad base64 encoding") from exc

        # Unused trailing bits would otherwise let two tokens decode alike
        if _b64encode(raw) != token:
            raise InvalidCursorError("non-canonical encoding")

        payload, tag = raw[:-TAG_SIZE], raw[-TAG_SIZE:]
        if not payload or not hmac.compare_digest(tag, self._tag(payload)):
            raise InvalidCursorError("integrity check failed")

        try:
            decoded = msgpack.unpackb(
                payload,
                ext_hook=_unpack_ext,
                raw=False,
                strict_map_key=True,
                use_list=True,
            )
        except Exception as exc:
            raise InvalidCursorError("bad payload") from exc

        return self._validate(decoded)

    @staticmethod
    def _validate(decoded: Any) -> Cursor:
        if not isinstance(decoded, list) or len(decoded) != 2:
            raise InvalidCursorError("bad structure")

        direction, values = decoded
        if direction not in (CursorDirection.AFTER.value, CursorDirection.BEFORE.value):
            raise InvalidCursorError("bad direction")
        if not isinstance(values, list) or not values:
            raise InvalidCursorError("bad values")
        if any(value is None for value in values):
            raise InvalidCursorError("null boundary value")
        if not all(isinstance(value, _SCALAR_TYPES) for value in values):
            raise InvalidCursorError("non-scalar boundary value")

        return Cursor(direction=CursorDirection(direction), values=tuple(values))


__all__ = ["Cursor", "CursorCodec", "CursorDirection"]
