"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/auth/users      -- register an account (public)
  POST /api/v1/auth/login      -- password login; returns a session key
  POST /api/v1/auth/authorize  -- validate the Bearer session key, return the user
  POST /api/v1/auth/logout     -- delete the Bearer session (idempotent)
  POST /api/v1/auth/password   -- change password (requires session)
  GET  /api/v1/me              -- the user behind a Bearer OAuth access token

Security:
  POST /login is rate-limited per client address (Settings.login_rate_limit).
  Wrong username and wrong password produce the same 401 body.
  Cache-Control: no-store on every response that carries a session key.

Error kinds raised by AuthService are translated to status codes by the
AuthError handler in api/main.py; routes only catch what they treat specially.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_LIMIT, limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordChangeRequest,
    RegisterRequest,
    UserResponse,
)
from auth.dependencies import bearer_token, get_auth_service, get_session_user, get_token_user
from auth.errors import CredentialError
from auth.keys import encode_key
from auth.models import User
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/users:      public -- self-registration
# - POST /api/v1/auth/login:      public
# - POST /api/v1/auth/authorize:  Bearer session key
# - POST /api/v1/auth/logout:     Bearer session key (unknown keys succeed)
# - POST /api/v1/auth/password:   Bearer session key
# - GET  /api/v1/me:              Bearer OAuth access token
router = APIRouter()


@router.post("/auth/users", response_model=UserResponse, status_code=201)
async def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> UserResponse:
    """Create an account. Password length and minimum age are enforced by AuthService."""
    user = await service.register_user(body.email, body.username, body.password, body.birthdate)
    return UserResponse.from_user(user)


@limiter.limit(LOGIN_LIMIT)  # must be ABOVE @router so FastAPI introspects the undecorated function
@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username (or email) and password; return a session key."""
    service = get_auth_service(request)
    user_agent = request.headers.get("User-Agent", "")
    try:
        user, session = await service.login(body.username, body.password, user_agent, body.stay_logged_in)
    except CredentialError:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            session_key=encode_key(session.id),
            expires=session.expires,
            user=UserResponse.from_user(user),
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/authorize", response_model=UserResponse)
async def authorize(user: User = Depends(get_session_user)) -> UserResponse:
    """Return the session's user. Each call slides the session's expiry forward."""
    return UserResponse.from_user(user)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> MessageResponse:
    """Delete the Bearer session. Logging out twice is not an error."""
    service = get_auth_service(request)
    await service.logout(bearer_token(request))
    return MessageResponse(message="Logged out.")


@router.post("/auth/password", status_code=204)
async def change_password(
    request: Request,
    body: PasswordChangeRequest,
    user: User = Depends(get_session_user),
) -> Response:
    service = get_auth_service(request)
    await service.change_password(user.id, body.old_password, body.new_password)
    return Response(status_code=204)


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_token_user)) -> UserResponse:
    """Identity of the user an OAuth client is acting for."""
    return UserResponse.from_user(user)
