"""
api/routes/oauth.py -- Authorization-code grant endpoints for third-party clients.

Routes:
  POST /oauth/authorize  -- form: sesh_key, client_id, redirect_uri, state
                            Validates the user's session, issues an auth code
                            and 303-redirects to redirect_uri?state=..&code=..
  POST /oauth/token      -- HTTP Basic client credentials; form: grant_type
                            (authorization_code + code | refresh_token +
                            refresh_token). Returns a TokenResponse.

Client authentication follows RFC 6749 section 2.3.1: client_id/secret
pairs come from Settings.oauth_clients and are compared in constant time.

Redirect safety: unknown clients and redirect URIs outside the client's
allowlist (Settings.oauth_redirect_uris, exact match) get a 400 JSON error,
never a redirect. A client with no allowlist entry cannot redirect at all.
Once the redirect target is trusted, errors are reported to the client as
?error=invalid_request|access_denied|server_error like the success path.

Token errors use the RFC 6749 section 5.2 body {"error": "..."}. Store
failures are not caught here and surface as the generic 500.
"""

from __future__ import annotations

import logging
import secrets
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from api.models import TokenResponse
from auth.dependencies import get_auth_service
from auth.errors import AuthError, ExpiredError, InvalidError, NotFoundError
from auth.keys import encode_key
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("tokengate.api.oauth")

router = APIRouter()

_basic = HTTPBasic(auto_error=False)

_NO_CACHE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


@router.post("/oauth/authorize")
async def authorize(
    sesh_key: str = Form(...),
    client_id: str = Form(...),
    redirect_uri: str = Form(...),
    state: str = Form(default=""),
    service: AuthService = Depends(get_auth_service),
):
    client_id = client_id.strip()
    redirect_uri = redirect_uri.strip()
    settings = get_settings()
    if client_id not in settings.oauth_clients:
        return _client_error("Unknown client.")
    if redirect_uri not in settings.oauth_redirect_uris.get(client_id, []):
        return _client_error("redirect_uri is not registered for this client.")

    params = {"state": state}
    try:
        user = await service.authorize(sesh_key.strip())
    except InvalidError:
        params["error"] = "invalid_request"
        return _redirect(redirect_uri, params)
    except (NotFoundError, ExpiredError):
        params["error"] = "access_denied"
        return _redirect(redirect_uri, params)
    except AuthError:
        logger.exception("Session validation failed during OAuth authorize")
        params["error"] = "server_error"
        return _redirect(redirect_uri, params)

    try:
        auth_code = await service.create_auth_code(user.id, client_id)
    except AuthError:
        logger.exception("Could not issue authorization code for client_id=%s", client_id)
        params["error"] = "server_error"
        return _redirect(redirect_uri, params)

    params["code"] = encode_key(auth_code.code)
    return _redirect(redirect_uri, params)


@router.post("/oauth/token", response_model=TokenResponse)
async def token(
    grant_type: str = Form(...),
    code: str = Form(default=""),
    refresh_token: str = Form(default=""),
    credentials: HTTPBasicCredentials | None = Depends(_basic),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    if credentials is None or not _client_authenticated(credentials):
        logger.warning("Token request with missing or bad client credentials")
        return JSONResponse(
            status_code=401,
            content={"error": "invalid_client"},
            headers={"WWW-Authenticate": "Basic", **_NO_CACHE},
        )

    try:
        if grant_type == "authorization_code":
            access_token = await service.exchange_auth_code(code.strip(), credentials.username)
        elif grant_type == "refresh_token":
            access_token = await service.exchange_refresh_token(refresh_token.strip(), credentials.username)
        else:
            return _token_error("unsupported_grant_type")
    except (InvalidError, NotFoundError, ExpiredError) as exc:
        logger.info("Rejected %s grant for client_id=%s (%s)", grant_type, credentials.username, exc.kind)
        return _token_error("invalid_grant")

    body = TokenResponse(
        access_token=encode_key(access_token.token),
        refresh_token=encode_key(access_token.refresh_token),
        expires_in=access_token.expires,
    )
    return JSONResponse(content=body.model_dump(), headers=_NO_CACHE)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client_authenticated(credentials: HTTPBasicCredentials) -> bool:
    expected = get_settings().oauth_clients.get(credentials.username)
    if expected is None:
        return False
    return secrets.compare_digest(credentials.password.encode(), expected.encode())


def _redirect(redirect_uri: str, params: dict[str, str]) -> RedirectResponse:
    separator = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(f"{redirect_uri}{separator}{urlencode(params)}", status_code=303)


def _client_error(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": {"code": "invalid_client", "message": message}})


def _token_error(error: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": error}, headers=_NO_CACHE)
