"""
auth/keys.py -- Opaque key material and its wire encoding.

generate_key() draws from secrets.token_bytes (the OS CSPRNG). If the OS
cannot supply randomness we raise EntropyError and the request fails; there
is no fallback to a weaker generator.

encode_key()/decode_key() use URL-safe base64 without padding. decode_key()
only accepts the canonical form encode_key() would produce, so the pair is an
exact bijection between byte strings and well-formed key text:
  decode_key(encode_key(b)) == b   for every b
  encode_key(decode_key(s)) == s   for every s decode_key accepts

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import binascii
import re
import secrets

from auth.errors import EntropyError, MalformedKeyError

_KEY_ALPHABET = re.compile(r"[A-Za-z0-9_-]*")


def generate_key(length: int) -> bytes:
    """Return `length` cryptographically secure random bytes."""
    if length <= 0:
        raise ValueError("key length must be positive")
    try:
        return secrets.token_bytes(length)
    except (OSError, NotImplementedError) as exc:
        raise EntropyError() from exc


def encode_key(key: bytes) -> str:
    return base64.urlsafe_b64encode(key).rstrip(b"=").decode("ascii")


def decode_key(text: str) -> bytes:
    """Inverse of encode_key. Raises MalformedKeyError on anything non-canonical.

    Rejected: characters outside the URL-safe alphabet (including '='), a
    length that leaves a single dangling character, and unused trailing bits
    that are not zero (e.g. "AB" and "AA" would otherwise both decode to b"\\x00").
    """
    if not isinstance(text, str) or not _KEY_ALPHABET.fullmatch(text):
        raise MalformedKeyError()
    if len(text) % 4 == 1:
        raise MalformedKeyError()
    padded = text + "=" * (-len(text) % 4)
    try:
        key = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise MalformedKeyError() from exc
    if encode_key(key) != text:
        raise MalformedKeyError()
    return key
