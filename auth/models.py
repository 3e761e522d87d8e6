"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial derived
values). Stores map rows into these; the session manager and grant engine do
the work.

Opaque identifiers (session id, auth code, access token, refresh token) are
raw bytes here. They are only ever turned into text by auth.keys.encode_key
at the transport boundary.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum


class Scope(str, Enum):
    """Permission granted to an OAuth client. Only one scope is ever issued."""

    READ = "Read"
    READ_CHANGE = "ReadChange"


@dataclass
class User:
    """An account that can log in and delegate access to OAuth clients.

    password_hash is the bcrypt hash as text. Anything handed back to a caller
    outside auth/ has it blanked (see AuthService.login).
    """

    email: str
    username: str
    password_hash: str | None = None
    birthdate: date | None = None
    id: int | None = None
    created: datetime | None = None
    last_seen: datetime | None = None


@dataclass
class Session:
    """A bearer session. id is both the primary key and the credential."""

    id: bytes
    user_id: int
    login_time: datetime
    last_seen_time: datetime
    expires: datetime
    user_agent: str = "unknown"


@dataclass
class AuthCode:
    """Short-lived, single-use authorization code."""

    code: bytes
    client_id: str
    user_id: int
    scope: Scope
    expires: datetime


@dataclass
class AccessToken:
    """An access/refresh token pair minted from an authorization code.

    expires is a lifetime in seconds counted from created, not a timestamp.
    """

    token: bytes
    auth_code: bytes  # back-reference to the code that started the grant
    client_id: str
    refresh_token: bytes
    user_id: int
    created: datetime
    expires: int

    @property
    def expires_at(self) -> datetime:
        return self.created + timedelta(seconds=self.expires)
