"""Hashing helpers for secrets stored alongside their hash.

    token_hash = hash_value("sha3_256", nonce + secret + salt)
    hash_equals("sha3_256", nonce + submitted + salt, token_hash)
"""

from __future__ import annotations

import hashlib
import hmac


def hash_value(kind: str, value: str | bytes) -> str:
    """Hex digest of ``value`` with the named hashlib algorithm.

    Raises:
        ValueError: If ``kind`` is not a hashlib algorithm
    """
    data = value.encode("utf-8") if isinstance(value, str) else value
    return hashlib.new(kind, data).hexdigest()


def hash_equals(kind: str, value: str | bytes | None, hashed: str | None) -> bool:
    """Compare ``value`` against a stored hash in constant time."""
    if value is None or hashed is None:
        return False
    return hmac.compare_digest(hash_value(kind, value), hashed)


__all__ = ["hash_equals", "hash_value"]
