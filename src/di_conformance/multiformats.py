"""
Multibase and multicodec helpers.

Only the base58-btc multibase encoding (sigil ``z``) is accepted, which is the
sole encoding permitted for EdDSA Data Integrity proof values and Multikey
public keys.
https://www.w3.org/TR/controller-document/#multibase-0
"""

from __future__ import annotations

import re
from enum import Enum
from io import BytesIO
from typing import NamedTuple

import base58
import varint

BASE58_BTC_PREFIX = "z"

_BASE58_RE = re.compile(
    "^[" + re.escape(base58.BITCOIN_ALPHABET.decode()) + "]+$"
)


class DecodeError(Exception):
    """Raised when a multibase or multicodec value is malformed."""


class Multicodec(NamedTuple):
    """Multicodec table entry."""

    name: str
    code: int


class KnownCodecs(Enum):
    """Multicodecs the harness knows how to name."""

    ed25519_pub = Multicodec("ed25519-pub", 0xED)
    ed448_pub = Multicodec("ed448-pub", 0x1203)
    x25519_pub = Multicodec("x25519-pub", 0xEC)
    ed25519_priv = Multicodec("ed25519-priv", 0x1300)

    @classmethod
    def by_code(cls, code: int) -> Multicodec | None:
        """Look up a codec by its numeric code."""
        for codec in cls:
            if codec.value.code == code:
                return codec.value
        return None


def is_base58(value: str) -> bool:
    """Check that every character of ``value`` is in the base58-btc alphabet."""
    return bool(_BASE58_RE.match(value))


def is_multibase_base58(value: object) -> bool:
    """Check for the ``z`` sigil followed by base58-btc characters only."""
    return (
        isinstance(value, str)
        and value.startswith(BASE58_BTC_PREFIX)
        and is_base58(value)
    )


def encode(data: bytes) -> str:
    """Encode bytes as a base58-btc multibase string."""
    return BASE58_BTC_PREFIX + base58.b58encode(data).decode()


def decode(value: str) -> bytes:
    """Decode a base58-btc multibase string.

    A bare sigil decodes to zero bytes; rejecting empty key material is left
    to the caller.

    Raises:
        DecodeError: If the value is empty, lacks the ``z`` sigil or contains
            characters outside the base58-btc alphabet.
    """
    if not isinstance(value, str) or not value:
        raise DecodeError("Empty multibase value")
    if not value.startswith(BASE58_BTC_PREFIX):
        raise DecodeError(
            f"Missing base58-btc multibase prefix 'z' (got {value[0]!r})"
        )

    payload = value[1:]
    if not payload:
        return b""
    if not is_base58(payload):
        raise DecodeError("Multibase value contains non-base58 characters")

    try:
        return base58.b58decode(payload)
    except ValueError as e:
        raise DecodeError(f"Invalid base58-btc value: {e}") from e


def strip_multicodec_prefix(data: bytes) -> tuple[int, bytes]:
    """Split a multicodec-prefixed byte string into ``(code, remainder)``.

    The prefix is an unsigned varint, so the number of bytes consumed depends
    on where the continuation bits stop.

    Raises:
        DecodeError: If no complete varint can be read.
    """
    buffer = BytesIO(data)
    try:
        code = varint.decode_stream(buffer)
    except (EOFError, TypeError) as e:
        raise DecodeError("Truncated or missing multicodec varint prefix") from e
    return code, data[buffer.tell():]


def add_multicodec_prefix(code: int, data: bytes) -> bytes:
    """Prefix ``data`` with the varint encoding of ``code``."""
    return varint.encode(code) + data


def codec_name(code: int) -> str:
    """Human readable name for a multicodec code."""
    codec = KnownCodecs.by_code(code)
    if codec is None:
        return f"unknown (0x{code:x})"
    return codec.name
