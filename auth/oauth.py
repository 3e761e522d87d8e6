"""
auth/oauth.py -- Authorization-code grant engine.

Flow:
  1. An authenticated session authorizes a client: create_auth_code() issues
     a short-lived, single-use code bound to (user, client, scope).
  2. The client exchanges the code: validate_auth_code(), then
     redeem_auth_code(). The result is an access token (3600 s) plus a
     refresh token, both opaque random bytes.
  3. Resource calls present the access token: validate_access_token()
     returns the bound user, or TokenExpiredError once created + expires has
     passed. There is no auto-renewal here.
  4. The client presents the refresh token: validate_refresh_token() finds
     the row regardless of whether its access token has expired, and
     refresh_access_token() replaces the row with a new pair bound to the same
     code reference and client, so each refresh token works once.

Single use of codes: redeem_auth_code() deletes the code and stores the
minted token in one store transaction, and the delete's row count decides
who wins. When two exchanges race on one code only one delete removes a row;
the other caller gets CodeNotFoundError and nothing is stored for it. A
deadline that fires mid-redemption rolls the whole transaction back, so the
code stays exchangeable. Refresh rotation works the same way through
rotate_access_token().

Lazy expiry: expired codes are deleted by the validation that finds them.
Access-token rows are never swept.

Only one scope is ever issued (Scope.READ_CHANGE). Multi-scope enforcement,
PKCE and dynamic client registration are out of scope.

Every *encoded* argument is key text produced by auth.keys.encode_key and
fails with MalformedKeyError if it is not.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import (
    CodeExpiredError,
    CodeNotFoundError,
    RefreshTokenNotFoundError,
    TokenExpiredError,
    TokenNotFoundError,
)
from auth.keys import decode_key, generate_key
from auth.models import AccessToken, AuthCode, Scope, User
from auth.store import OAuthStore
from core.config import Settings, get_settings

logger = logging.getLogger("tokengate.auth.oauth")

DEFAULT_SCOPE = Scope.READ_CHANGE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthGrantEngine:
    """Issues and validates authorization codes, access tokens and refresh tokens."""

    def __init__(
        self,
        store: OAuthStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock

    # ------------------------------------------------------------------
    # Authorization codes
    # ------------------------------------------------------------------

    async def create_auth_code(self, user_id: int, client_id: str) -> AuthCode:
        auth_code = AuthCode(
            code=generate_key(self._settings.auth_code_bytes),
            client_id=client_id,
            user_id=user_id,
            scope=DEFAULT_SCOPE,
            expires=self._clock() + timedelta(seconds=self._settings.auth_code_ttl_seconds),
        )
        await self._store.insert_auth_code(auth_code)
        logger.info("Authorization code issued to client_id=%s for user_id=%s", client_id, user_id)
        return auth_code

    async def validate_auth_code(self, encoded_code: str) -> AuthCode:
        """Look up a code. An expired code is deleted and never exchangeable."""
        code = decode_key(encoded_code)
        auth_code = await self._store.get_auth_code(code)
        if auth_code is None:
            raise CodeNotFoundError()
        if auth_code.expires < self._clock():
            await self._store.delete_auth_code(code)
            logger.info("Purged expired authorization code for client_id=%s", auth_code.client_id)
            raise CodeExpiredError()
        return auth_code

    async def consume_auth_code(self, auth_code: AuthCode) -> None:
        """Delete the code; CodeNotFoundError if another exchange got there first."""
        if not await self._store.delete_auth_code(auth_code.code):
            logger.warning("Authorization code replay for client_id=%s", auth_code.client_id)
            raise CodeNotFoundError()

    # ------------------------------------------------------------------
    # Access and refresh tokens
    # ------------------------------------------------------------------

    async def create_access_token(self, auth_code: AuthCode) -> AccessToken:
        """Mint an access/refresh pair for an already-validated code.

        The code is not re-checked here. Passing a stale or consumed code is
        a caller error.
        """
        token = self._mint(auth_code.code, auth_code.client_id, auth_code.user_id)
        await self._store.insert_access_token(token)
        logger.info("Access token issued to client_id=%s for user_id=%s", auth_code.client_id, auth_code.user_id)
        return token

    async def redeem_auth_code(self, auth_code: AuthCode) -> AccessToken:
        """Consume the code and store a new pair for it as one atomic step.

        CodeNotFoundError if another exchange consumed the code first.
        """
        token = self._mint(auth_code.code, auth_code.client_id, auth_code.user_id)
        if not await self._store.redeem_auth_code(auth_code.code, token):
            logger.warning("Authorization code replay for client_id=%s", auth_code.client_id)
            raise CodeNotFoundError()
        logger.info("Access token issued to client_id=%s for user_id=%s", auth_code.client_id, auth_code.user_id)
        return token

    async def validate_access_token(self, encoded_token: str) -> User:
        token = decode_key(encoded_token)
        found = await self._store.get_access_token_and_user(token)
        if found is None:
            raise TokenNotFoundError()
        user, access_token = found
        if access_token.expires_at < self._clock():
            raise TokenExpiredError()
        return user

    async def validate_refresh_token(self, encoded_refresh_token: str) -> AccessToken:
        """Return the row the refresh token belongs to.

        The paired access token's own expiry is deliberately not checked.
        """
        refresh_token = decode_key(encoded_refresh_token)
        access_token = await self._store.get_access_token_by_refresh(refresh_token)
        if access_token is None:
            raise RefreshTokenNotFoundError()
        return access_token

    async def refresh_access_token(self, previous: AccessToken) -> AccessToken:
        """Replace previous with a fresh pair bound to the same code reference and client.

        If the old row is already gone a concurrent refresh won the race and
        RefreshTokenNotFoundError is raised; nothing is stored for the loser.
        """
        token = self._mint(previous.auth_code, previous.client_id, previous.user_id)
        if not await self._store.rotate_access_token(previous.token, token):
            logger.warning("Refresh token replay for client_id=%s user_id=%s", previous.client_id, previous.user_id)
            raise RefreshTokenNotFoundError()
        logger.info("Refresh token rotated for client_id=%s user_id=%s", previous.client_id, previous.user_id)
        return token

    def _mint(self, auth_code: bytes, client_id: str, user_id: int) -> AccessToken:
        return AccessToken(
            token=generate_key(self._settings.access_token_bytes),
            auth_code=auth_code,
            client_id=client_id,
            refresh_token=generate_key(self._settings.access_token_bytes),
            user_id=user_id,
            created=self._clock(),
            expires=self._settings.access_token_ttl_seconds,
        )
