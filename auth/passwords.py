"""
auth/passwords.py -- bcrypt password hashing and verification.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which current
bcrypt releases reject with an explicit error.

bcrypt only reads the first MAX_PASSWORD_BYTES bytes of its input and
recent releases raise ValueError beyond that. The limit is in UTF-8 bytes,
not characters: AuthService enforces it before hashing, so HashError here
means the primitive itself failed.

The work factor comes from Settings.bcrypt_rounds. bcrypt stores the cost in
the hash itself ("$2b$12$..."), so checkpw() verifies old hashes correctly
after the configured cost changes.

_DUMMY_HASH supports timing equalization in AuthService.login(): when the
username does not exist we still run one bcrypt comparison, so response time
does not reveal whether an account exists.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import HashError
from core.config import get_settings

logger = logging.getLogger("tokengate.auth.passwords")

MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Callers must keep plain within MAX_PASSWORD_BYTES once UTF-8 encoded.
    """
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    try:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")
    except ValueError as exc:
        logger.error("bcrypt refused to hash a password (rounds=%d)", cost)
        raise HashError() from exc


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A missing or malformed stored hash counts as a mismatch, and so does a
    plaintext too long for bcrypt to accept.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at import so the first login against an unknown user is not
# measurably slower than later ones.
_DUMMY_HASH: str = hash_password("tokengate_timing_dummy")
