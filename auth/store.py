"""
auth/store.py -- Store contract and SQLAlchemy Core persistence for auth entities.

The session manager and grant engine only depend on the AuthStore and
OAuthStore protocols below. SQLStore is the shipped implementation.

Contract (both protocols):
  - Every method is a coroutine and runs in its own transaction, so
    cancelling the awaiting task never leaves half a write. redeem_auth_code
    and rotate_access_token pair a delete with an insert inside one
    transaction: either both land or neither does.
  - Lookups return None when the row does not exist.
  - Any driver or connection failure is raised as StoreError. "Absent" and
    "broken" are therefore always distinguishable.
  - Deletes are idempotent and return True only if a row was removed.

Pattern: Repository + Data Mapper. SQLStore is the repository;
_row_to_* functions are the mappers. Nothing outside this module touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL. Exceptions are
  logged by class name only; driver messages can echo bound parameters,
  which include token bytes.

Timestamps are stored as ISO 8601 text (UTC) and opaque keys as BLOBs.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, LargeBinary, MetaData, String, Table, event, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from auth.errors import DuplicateUserError, StoreError
from auth.models import AccessToken, AuthCode, Scope, Session, User
from core.config import get_settings

logger = logging.getLogger("tokengate.auth.store")

# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class AuthStore(Protocol):
    async def insert_user(self, user: User) -> int: ...

    async def get_user_by_id(self, user_id: int) -> User | None: ...

    async def get_user_by_email(self, email: str) -> User | None: ...

    async def get_user_by_username(self, username: str) -> User | None: ...

    async def update_user(self, user: User) -> bool: ...

    async def update_user_password(self, user_id: int, password_hash: str) -> bool: ...

    async def delete_user(self, user_id: int) -> bool: ...

    async def insert_session(self, session: Session) -> None: ...

    async def get_session(self, session_id: bytes) -> Session | None: ...

    async def update_session(self, session: Session) -> bool: ...

    async def delete_session(self, session_id: bytes) -> bool: ...

    async def get_session_and_user(self, session_id: bytes) -> tuple[Session, User] | None: ...


class OAuthStore(Protocol):
    async def insert_auth_code(self, auth_code: AuthCode) -> None: ...

    async def get_auth_code(self, code: bytes) -> AuthCode | None: ...

    async def delete_auth_code(self, code: bytes) -> bool: ...

    async def insert_access_token(self, token: AccessToken) -> None: ...

    async def get_access_token_by_refresh(self, refresh_token: bytes) -> AccessToken | None: ...

    async def delete_access_token(self, token: bytes) -> bool: ...

    async def redeem_auth_code(self, code: bytes, token: AccessToken) -> bool: ...

    async def rotate_access_token(self, previous_token: bytes, token: AccessToken) -> bool: ...

    async def get_access_token_and_user(self, token: bytes) -> tuple[User, AccessToken] | None: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", String(60)),
    Column("birthdate", String(10)),  # ISO date
    Column("created", String(32), nullable=False),
    Column("last_seen", String(32)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", LargeBinary, primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("login_time", String(32), nullable=False),
    Column("last_seen_time", String(32), nullable=False),
    Column("expires", String(32), nullable=False),
    Column("user_agent", String(255), nullable=False),
)

_auth_codes = Table(
    "auth_codes",
    _metadata,
    Column("code", LargeBinary, primary_key=True),
    Column("client_id", String(255), nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("scope", String(30), nullable=False),
    Column("expires", String(32), nullable=False),
)

_access_tokens = Table(
    "access_tokens",
    _metadata,
    Column("token", LargeBinary, primary_key=True),
    Column("auth_code", LargeBinary, nullable=False),
    Column("client_id", String(255), nullable=False),
    Column("refresh_token", LargeBinary, nullable=False, unique=True),
    Column("user_id", Integer, nullable=False),
    Column("created", String(32), nullable=False),
    Column("expires", Integer, nullable=False),  # seconds after created
)

_USER_PREFIX = "owner_"


def _user_columns():
    return [c.label(f"{_USER_PREFIX}{c.name}") for c in _users.c]


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. The aiosqlite adapter only exposes execute()
    on cursors.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SQLStore:
    """SQLAlchemy Core implementation of AuthStore and OAuthStore.

    Usage:
        store = await SQLStore.connect()                       # Settings.database_url
        store = await SQLStore.connect("sqlite+aiosqlite:///x.db")
        user_id = await store.insert_user(User(email=..., username=..., password_hash=...))
        await store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: AsyncEngine = create_async_engine(db_url)
        if db_url.startswith("sqlite"):
            event.listen(self.engine.sync_engine, "connect", _set_wal_mode)

    @classmethod
    async def connect(cls, db_url: str | None = None) -> SQLStore:
        store = cls(db_url or get_settings().database_url)
        await store.create_schema()
        return store

    async def create_schema(self) -> None:
        async with self._transaction() as conn:
            await conn.run_sync(_metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            async with self._transaction() as conn:
                await conn.execute(text("SELECT 1"))
        except StoreError:
            return False
        return True

    @asynccontextmanager
    async def _transaction(self, on_conflict: type[StoreError] = StoreError) -> AsyncIterator[AsyncConnection]:
        """Open a connection inside a transaction and translate driver errors."""
        try:
            async with self.engine.begin() as conn:
                yield conn
        except IntegrityError as exc:
            logger.warning("Store constraint violation (%s)", exc.__class__.__name__)
            raise on_conflict() from exc
        except SQLAlchemyError as exc:
            logger.error("Store operation failed (%s)", exc.__class__.__name__)
            raise StoreError() from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def insert_user(self, user: User) -> int:
        """Insert a user and return its id. Duplicate email/username -> DuplicateUserError."""
        async with self._transaction(on_conflict=DuplicateUserError) as conn:
            result = await conn.execute(
                _users.insert().values(
                    email=user.email,
                    username=user.username,
                    password_hash=user.password_hash,
                    birthdate=_iso(user.birthdate),
                    created=_iso(user.created or datetime.now(timezone.utc)),
                    last_seen=_iso(user.last_seen),
                )
            )
        return result.inserted_primary_key[0]

    async def get_user_by_id(self, user_id: int) -> User | None:
        return await self._get_user(_users.c.id == user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        return await self._get_user(_users.c.email == email)

    async def get_user_by_username(self, username: str) -> User | None:
        """Exact, case-sensitive match."""
        return await self._get_user(_users.c.username == username)

    async def _get_user(self, clause) -> User | None:
        async with self._transaction() as conn:
            row = (await conn.execute(_users.select().where(clause))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def update_user(self, user: User) -> bool:
        """Persist email, username, birthdate and last_seen. The password has its own method."""
        async with self._transaction(on_conflict=DuplicateUserError) as conn:
            result = await conn.execute(
                _users.update()
                .where(_users.c.id == user.id)
                .values(
                    email=user.email,
                    username=user.username,
                    birthdate=_iso(user.birthdate),
                    last_seen=_iso(user.last_seen),
                )
            )
        return result.rowcount > 0

    async def update_user_password(self, user_id: int, password_hash: str) -> bool:
        async with self._transaction() as conn:
            result = await conn.execute(
                _users.update().where(_users.c.id == user_id).values(password_hash=password_hash)
            )
        return result.rowcount > 0

    async def delete_user(self, user_id: int) -> bool:
        """Delete a user. Sessions and tokens owned by the user are left to expire lazily."""
        async with self._transaction() as conn:
            result = await conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def insert_session(self, session: Session) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    login_time=_iso(session.login_time),
                    last_seen_time=_iso(session.last_seen_time),
                    expires=_iso(session.expires),
                    user_agent=session.user_agent,
                )
            )

    async def get_session(self, session_id: bytes) -> Session | None:
        async with self._transaction() as conn:
            row = (await conn.execute(_sessions.select().where(_sessions.c.id == session_id))).fetchone()
        return _row_to_session(row) if row is not None else None

    async def update_session(self, session: Session) -> bool:
        async with self._transaction() as conn:
            result = await conn.execute(
                _sessions.update()
                .where(_sessions.c.id == session.id)
                .values(
                    user_id=session.user_id,
                    login_time=_iso(session.login_time),
                    last_seen_time=_iso(session.last_seen_time),
                    expires=_iso(session.expires),
                    user_agent=session.user_agent,
                )
            )
        return result.rowcount > 0

    async def delete_session(self, session_id: bytes) -> bool:
        async with self._transaction() as conn:
            result = await conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
        return result.rowcount > 0

    async def get_session_and_user(self, session_id: bytes) -> tuple[Session, User] | None:
        """Joint lookup. None if either the session or its owner is missing."""
        stmt = (
            select(*_sessions.c, *_user_columns())
            .select_from(_sessions.join(_users, _sessions.c.user_id == _users.c.id))
            .where(_sessions.c.id == session_id)
        )
        async with self._transaction() as conn:
            row = (await conn.execute(stmt)).fetchone()
        if row is None:
            return None
        return _row_to_session(row), _row_to_user(row, prefix=_USER_PREFIX)

    # ------------------------------------------------------------------
    # Authorization codes
    # ------------------------------------------------------------------

    async def insert_auth_code(self, auth_code: AuthCode) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                _auth_codes.insert().values(
                    code=auth_code.code,
                    client_id=auth_code.client_id,
                    user_id=auth_code.user_id,
                    scope=auth_code.scope.value,
                    expires=_iso(auth_code.expires),
                )
            )

    async def get_auth_code(self, code: bytes) -> AuthCode | None:
        async with self._transaction() as conn:
            row = (await conn.execute(_auth_codes.select().where(_auth_codes.c.code == code))).fetchone()
        return _row_to_auth_code(row) if row is not None else None

    async def delete_auth_code(self, code: bytes) -> bool:
        """Delete a code. Only one of several concurrent callers sees True."""
        async with self._transaction() as conn:
            result = await conn.execute(_auth_codes.delete().where(_auth_codes.c.code == code))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    async def insert_access_token(self, token: AccessToken) -> None:
        async with self._transaction() as conn:
            await conn.execute(_insert_token(token))

    async def redeem_auth_code(self, code: bytes, token: AccessToken) -> bool:
        """Delete the code and insert the token it pays for, in one transaction.

        Returns False (and inserts nothing) if the code was already gone.
        """
        async with self._transaction() as conn:
            result = await conn.execute(_auth_codes.delete().where(_auth_codes.c.code == code))
            if result.rowcount == 0:
                return False
            await conn.execute(_insert_token(token))
        return True

    async def rotate_access_token(self, previous_token: bytes, token: AccessToken) -> bool:
        """Replace one token row with another in one transaction.

        Returns False (and inserts nothing) if previous_token was already gone.
        """
        async with self._transaction() as conn:
            result = await conn.execute(_access_tokens.delete().where(_access_tokens.c.token == previous_token))
            if result.rowcount == 0:
                return False
            await conn.execute(_insert_token(token))
        return True

    async def get_access_token_by_refresh(self, refresh_token: bytes) -> AccessToken | None:
        async with self._transaction() as conn:
            row = (
                await conn.execute(_access_tokens.select().where(_access_tokens.c.refresh_token == refresh_token))
            ).fetchone()
        return _row_to_access_token(row) if row is not None else None

    async def delete_access_token(self, token: bytes) -> bool:
        async with self._transaction() as conn:
            result = await conn.execute(_access_tokens.delete().where(_access_tokens.c.token == token))
        return result.rowcount > 0

    async def get_access_token_and_user(self, token: bytes) -> tuple[User, AccessToken] | None:
        stmt = (
            select(*_access_tokens.c, *_user_columns())
            .select_from(_access_tokens.join(_users, _access_tokens.c.user_id == _users.c.id))
            .where(_access_tokens.c.token == token)
        )
        async with self._transaction() as conn:
            row = (await conn.execute(stmt)).fetchone()
        if row is None:
            return None
        return _row_to_user(row, prefix=_USER_PREFIX), _row_to_access_token(row)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _insert_token(token: AccessToken):
    return _access_tokens.insert().values(
        token=token.token,
        auth_code=token.auth_code,
        client_id=token.client_id,
        refresh_token=token.refresh_token,
        user_id=token.user_id,
        created=_iso(token.created),
        expires=token.expires,
    )


def _row_to_user(row, prefix: str = "") -> User:
    m = row._mapping
    return User(
        id=m[f"{prefix}id"],
        email=m[f"{prefix}email"],
        username=m[f"{prefix}username"],
        password_hash=m[f"{prefix}password_hash"],
        birthdate=_parse_date(m[f"{prefix}birthdate"]),
        created=_parse_dt(m[f"{prefix}created"]),
        last_seen=_parse_dt(m[f"{prefix}last_seen"]),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        login_time=_parse_dt(row.login_time),
        last_seen_time=_parse_dt(row.last_seen_time),
        expires=_parse_dt(row.expires),
        user_agent=row.user_agent,
    )


def _row_to_auth_code(row) -> AuthCode:
    return AuthCode(
        code=row.code,
        client_id=row.client_id,
        user_id=row.user_id,
        scope=Scope(row.scope),
        expires=_parse_dt(row.expires),
    )


def _row_to_access_token(row) -> AccessToken:
    return AccessToken(
        token=row.token,
        auth_code=row.auth_code,
        client_id=row.client_id,
        refresh_token=row.refresh_token,
        user_id=row.user_id,
        created=_parse_dt(row.created),
        expires=row.expires,
    )
