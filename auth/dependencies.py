"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two bearer credentials exist, both sent as "Authorization: Bearer <key>":
  1. Session key    -- issued by POST /api/v1/auth/login to first-party clients.
  2. Access token   -- issued by POST /oauth/token to third-party OAuth clients.

get_session_user() and get_token_user() resolve the matching credential to a
User or raise HTTP 401. A malformed key is reported as 401 rather than 400:
to the caller it is simply not a valid credential. Store failures are not
caught here; they reach the app-wide AuthError handler and become a 500.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import ExpiredError, InvalidError, NotFoundError
from auth.models import User
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def bearer_token(request: Request) -> str:
    """Return the raw bearer value from the Authorization header or raise 401."""
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise _unauthorized("Authentication required.")
    return header[7:].strip()


async def get_session_user(request: Request) -> User:
    """Require a valid session key. Each successful call slides the session's expiry."""
    service = get_auth_service(request)
    try:
        return await service.authorize(bearer_token(request))
    except (InvalidError, NotFoundError, ExpiredError) as exc:
        raise _unauthorized("Invalid or expired session.") from exc


async def get_token_user(request: Request) -> User:
    """Require a valid, unexpired OAuth access token."""
    service = get_auth_service(request)
    try:
        return await service.validate_access_token(bearer_token(request))
    except (InvalidError, NotFoundError, ExpiredError) as exc:
        raise _unauthorized("Invalid or expired access token.") from exc


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )
