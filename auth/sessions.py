"""
auth/sessions.py -- Bearer session lifecycle: create, validate with sliding
renewal, delete.

Sliding expiry is delta-based. On every successful validation the deadline
moves forward by exactly the time elapsed since the previous validation:

    expires += now - last_seen_time
    last_seen_time = now

so the remaining budget granted at login (1 hour, or years with
stay_logged_in) is preserved rather than reset to a flat now + ttl. The
deadline never moves backward; a negative delta (clock skew) counts as zero.

Expired sessions are purged lazily: the validation that discovers one deletes
it. There is no background sweeper.

Concurrency: validate_session() persists the renewed session and fetches the
owning user as two tasks in an asyncio.TaskGroup. Both must succeed; the
first failure is re-raised and the other task is cancelled. Two requests
racing on one session resolve last-write-wins, which is harmless because both
push the deadline forward by roughly the same amount.

Session keys are bearer credentials. They are never logged; log lines carry
the user id only.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import SessionExpiredError, SessionNotFoundError, UserNotFoundError
from auth.keys import generate_key
from auth.models import Session, User
from auth.store import AuthStore
from core.config import Settings, get_settings

logger = logging.getLogger("tokengate.auth.sessions")

_UNKNOWN_AGENT = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Creates, validates and deletes sessions against an AuthStore.

    Holds no mutable state of its own; one instance is shared by every request.
    clock is injectable so tests can move time without sleeping.
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock

    async def create_session(self, user_id: int, user_agent: str, stay_logged_in: bool) -> Session:
        """Issue and persist a new session for user_id.

        Raises EntropyError if no key material is available, StoreError if
        the insert fails.
        """
        ttl = (
            self._settings.session_remember_ttl_seconds if stay_logged_in else self._settings.session_ttl_seconds
        )
        now = self._clock()
        session = Session(
            id=generate_key(self._settings.session_key_bytes),
            user_id=user_id,
            login_time=now,
            last_seen_time=now,
            expires=now + timedelta(seconds=ttl),
            user_agent=user_agent or _UNKNOWN_AGENT,
        )
        await self._store.insert_session(session)
        logger.info("Session created for user_id=%s (stay_logged_in=%s)", user_id, stay_logged_in)
        return session

    async def validate_session(self, key: bytes) -> User:
        """Return the session's owner and slide the session's deadline forward.

        Raises:
            SessionNotFoundError: no such session (or it was deleted mid-renewal).
            SessionExpiredError:  the deadline has passed; the row is deleted.
            UserNotFoundError:    the owning user no longer exists.
            StoreError:           either store write/read failed.
        """
        session = await self._store.get_session(key)
        if session is None:
            raise SessionNotFoundError()

        now = self._clock()
        if session.expires < now:
            await self._store.delete_session(key)
            logger.info("Purged expired session for user_id=%s", session.user_id)
            raise SessionExpiredError()

        elapsed = now - session.last_seen_time
        if elapsed > timedelta(0):
            session.expires += elapsed
        session.last_seen_time = now

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._persist_renewal(session))
                owner = tg.create_task(self._touch_owner(session.user_id, now))
        except BaseExceptionGroup as group:
            raise group.exceptions[0] from None
        return owner.result()

    async def get_session(self, key: bytes) -> Session | None:
        """Plain lookup with no renewal and no expiry check."""
        return await self._store.get_session(key)

    async def delete_session(self, key: bytes) -> None:
        """Delete a session. Deleting one that does not exist is not an error."""
        if await self._store.delete_session(key):
            logger.info("Session deleted")

    async def _persist_renewal(self, session: Session) -> None:
        if not await self._store.update_session(session):
            # Logged out between our read and our write.
            raise SessionNotFoundError()

    async def _touch_owner(self, user_id: int, now: datetime) -> User:
        user = await self._store.get_user_by_id(user_id)
        if user is None:
            logger.warning("Session references missing user_id=%s", user_id)
            raise UserNotFoundError()
        user.last_seen = now
        await self._store.update_user(user)
        return user
