"""
auth/service.py -- AuthService, the single entry point the transport calls.

AuthService composes the password helpers, SessionManager and
OAuthGrantEngine into the operations a transport exposes:

  login / authorize / logout                  user sessions
  create_auth_code ... validate_refresh_token OAuth grant pass-throughs
  exchange_auth_code / exchange_refresh_token the token endpoint's two grants
  register_user / change_password             account maintenance

Keys arrive and leave as encode_key() text; raw bytes stay inside auth/.
Every User returned from here has password_hash stripped.

Security:
  Unknown user and wrong password raise the same CredentialError. An unknown
  user still pays for one bcrypt comparison against _DUMMY_HASH so timing
  does not reveal which case occurred. bcrypt runs in a worker thread so a
  login does not stall the event loop.

Deadlines: every operation takes timeout= (seconds, None for no limit).
When it runs out, the in-flight store call is cancelled and
OperationCancelledError is raised. Cancelling the calling task propagates
asyncio.CancelledError unchanged.

Mapping error kinds to status codes is the transport's job (api/main.py).

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

from auth.errors import (
    ClientMismatchError,
    CredentialError,
    DuplicateUserError,
    OperationCancelledError,
    RegistrationError,
    UserNotFoundError,
    WeakPasswordError,
)
from auth.keys import decode_key
from auth.models import AccessToken, AuthCode, Session, User
from auth.oauth import OAuthGrantEngine
from auth.passwords import _DUMMY_HASH, MAX_PASSWORD_BYTES, hash_password, verify_password
from auth.sessions import SessionManager
from auth.store import AuthStore, OAuthStore
from core.config import Settings, get_settings

logger = logging.getLogger("tokengate.auth.service")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _redacted(user: User) -> User:
    return dataclasses.replace(user, password_hash=None)


@asynccontextmanager
async def _deadline(timeout: float | None) -> AsyncIterator[None]:
    try:
        async with asyncio.timeout(timeout):
            yield
    except TimeoutError as exc:
        raise OperationCancelledError() from exc


class AuthService:
    """Facade over sessions and the OAuth grant engine.

    Usage:
        store = await SQLStore.connect()
        service = AuthService(store, store)
        user, session = await service.login("alice", "correct horse battery", "curl/8.0")
        user = await service.authorize(encode_key(session.id))
    """

    def __init__(
        self,
        auth_store: AuthStore,
        oauth_store: OAuthStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = auth_store
        self._settings = settings or get_settings()
        self._clock = clock
        self.sessions = SessionManager(auth_store, self._settings, clock)
        self.grants = OAuthGrantEngine(oauth_store, self._settings, clock)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def login(
        self,
        username: str,
        password: str,
        user_agent: str,
        stay_logged_in: bool = False,
        *,
        timeout: float | None = None,
    ) -> tuple[User, Session]:
        """Check credentials and open a session.

        username may also be an email address (anything containing "@").
        Raises CredentialError for an unknown user or a wrong password alike.
        """
        async with _deadline(timeout):
            user = await self._find_login_user(username)
            if user is None or not user.password_hash:
                # Equalize timing -- do NOT return before running bcrypt.
                await asyncio.to_thread(verify_password, password, _DUMMY_HASH)
                logger.warning("Failed login: unknown user")
                raise CredentialError()
            if not await asyncio.to_thread(verify_password, password, user.password_hash):
                logger.warning("Failed login for user_id=%s", user.id)
                raise CredentialError()
            session = await self.sessions.create_session(user.id, user_agent, stay_logged_in)
        return _redacted(user), session

    async def authorize(self, session_key: str, *, timeout: float | None = None) -> User:
        key = decode_key(session_key)
        async with _deadline(timeout):
            user = await self.sessions.validate_session(key)
        return _redacted(user)

    async def logout(self, session_key: str, *, timeout: float | None = None) -> None:
        key = decode_key(session_key)
        async with _deadline(timeout):
            await self.sessions.delete_session(key)

    async def _find_login_user(self, username: str) -> User | None:
        if "@" in username:
            return await self._store.get_user_by_email(username)
        return await self._store.get_user_by_username(username)

    # ------------------------------------------------------------------
    # OAuth grant pass-throughs
    # ------------------------------------------------------------------

    async def create_auth_code(self, user_id: int, client_id: str, *, timeout: float | None = None) -> AuthCode:
        async with _deadline(timeout):
            return await self.grants.create_auth_code(user_id, client_id)

    async def validate_auth_code(self, code: str, *, timeout: float | None = None) -> AuthCode:
        async with _deadline(timeout):
            return await self.grants.validate_auth_code(code)

    async def create_access_token(self, auth_code: AuthCode, *, timeout: float | None = None) -> AccessToken:
        async with _deadline(timeout):
            return await self.grants.create_access_token(auth_code)

    async def validate_access_token(self, token: str, *, timeout: float | None = None) -> User:
        async with _deadline(timeout):
            user = await self.grants.validate_access_token(token)
        return _redacted(user)

    async def validate_refresh_token(self, refresh_token: str, *, timeout: float | None = None) -> AccessToken:
        async with _deadline(timeout):
            return await self.grants.validate_refresh_token(refresh_token)

    # ------------------------------------------------------------------
    # Token endpoint grants
    # ------------------------------------------------------------------

    async def exchange_auth_code(self, code: str, client_id: str, *, timeout: float | None = None) -> AccessToken:
        """grant_type=authorization_code: validate, check client, then redeem.

        A code presented by a client it was not issued to is left untouched.
        Redemption is one store transaction, so a deadline that fires during
        it leaves the code exchangeable.
        """
        async with _deadline(timeout):
            auth_code = await self.grants.validate_auth_code(code)
            if auth_code.client_id != client_id:
                logger.warning(
                    "Client %s presented a code issued to client %s", client_id, auth_code.client_id
                )
                raise ClientMismatchError()
            return await self.grants.redeem_auth_code(auth_code)

    async def exchange_refresh_token(
        self, refresh_token: str, client_id: str, *, timeout: float | None = None
    ) -> AccessToken:
        """grant_type=refresh_token: rotate the pair the refresh token belongs to.

        Only the client the pair was issued to may rotate it; anyone else gets
        ClientMismatchError and the pair is left untouched.
        """
        async with _deadline(timeout):
            previous = await self.grants.validate_refresh_token(refresh_token)
            if previous.client_id != client_id:
                logger.warning(
                    "Client %s presented a refresh token issued to client %s", client_id, previous.client_id
                )
                raise ClientMismatchError("Refresh token was not issued to this client.")
            return await self.grants.refresh_access_token(previous)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def register_user(
        self,
        email: str,
        username: str,
        password: str,
        birthdate: date,
        *,
        timeout: float | None = None,
    ) -> User:
        """Create an account.

        Raises RegistrationError for a malformed email, a username containing
        "@" (login would treat it as an email), an underage birthdate or a
        taken email/username, and WeakPasswordError for a short password.
        """
        if "@" not in email:
            raise RegistrationError("Email address is not valid.")
        if not username or "@" in username:
            raise RegistrationError("Username must be non-empty and must not contain '@'.")
        self._check_password_policy(password)
        if _age_in_years(birthdate, self._clock().date()) < self._settings.min_user_age_years:
            raise RegistrationError(f"User must be at least {self._settings.min_user_age_years} years old.")

        now = self._clock()
        user = User(
            email=email,
            username=username,
            password_hash=await asyncio.to_thread(hash_password, password),
            birthdate=birthdate,
            created=now,
            last_seen=now,
        )
        async with _deadline(timeout):
            try:
                user.id = await self._store.insert_user(user)
            except DuplicateUserError as exc:
                raise RegistrationError("A user with that email or username already exists.") from exc
        logger.info("User registered: user_id=%s", user.id)
        return _redacted(user)

    async def change_password(
        self,
        user_id: int,
        old_password: str,
        new_password: str,
        *,
        timeout: float | None = None,
    ) -> None:
        """Replace a user's password after re-checking the current one.

        Existing sessions stay valid.
        """
        self._check_password_policy(new_password)
        async with _deadline(timeout):
            user = await self._store.get_user_by_id(user_id)
            if user is None:
                raise UserNotFoundError()
            if not await asyncio.to_thread(verify_password, old_password, user.password_hash):
                raise CredentialError()
            new_hash = await asyncio.to_thread(hash_password, new_password)
            await self._store.update_user_password(user_id, new_hash)
        logger.info("Password changed for user_id=%s", user_id)

    def _check_password_policy(self, password: str) -> None:
        if len(password) < self._settings.min_password_length:
            raise WeakPasswordError(
                f"Password must be at least {self._settings.min_password_length} characters."
            )
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise WeakPasswordError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")


def _age_in_years(birthdate: date, today: date) -> int:
    before_birthday = (today.month, today.day) < (birthdate.month, birthdate.day)
    return today.year - birthdate.year - int(before_birthday)
