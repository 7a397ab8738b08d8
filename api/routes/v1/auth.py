"""
api/routes/v1/auth.py -- Registration, login and self-service REST endpoints.

Routes:
  POST   /api/v1/auth/register           -- self-registration; 201
  POST   /api/v1/auth/login              -- password login; returns a bearer token
  GET    /api/v1/auth/current            -- the caller with roles and permissions expanded
  PUT    /api/v1/auth/current/password   -- change own password (CAN_UPDATE_SELF)
  DELETE /api/v1/auth/current            -- delete own account (CAN_DELETE_SELF)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] AuthorizationEngine.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    PasswordChange,
    RegisterRequest,
    UserResponse,
)
from api.routes.v1.responses import get_directory, user_response
from auth.authorization import AuthorizationEngine
from auth.dependencies import authorize_request, current_principal
from core.errors import UnauthorizedError

# Auth policy:
# - POST   /api/v1/auth/register:          public -- self-registration gets the default role only
# - POST   /api/v1/auth/login:             public -- login endpoint must be unauthenticated
# - GET    /api/v1/auth/current:           requires a valid token, no specific permission
# - PUT    /api/v1/auth/current/password:  requires CAN_UPDATE_SELF
# - DELETE /api/v1/auth/current:           requires CAN_DELETE_SELF
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an enabled account holding only the default role."""
    directory = get_directory(request)
    user = directory.register_user(
        body.username,
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return user_response(directory, user)


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a bearer token.

    Returns the same generic error for unknown username, wrong password and
    disabled account to avoid leaking which one it was.
    """
    engine: AuthorizationEngine = request.app.state.engine
    try:
        token = engine.login(body.username, body.password)
    except UnauthorizedError as exc:
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        resp.headers["WWW-Authenticate"] = "Bearer"
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=request.app.state.settings.jwt_expiration,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/current", response_model=UserResponse)
def current(request: Request) -> UserResponse:
    """Return the caller with roles and permissions resolved as of now."""
    principal = current_principal(request)
    return UserResponse.from_user(principal.user, principal.roles)


@router.put("/auth/current/password", status_code=204)
def change_own_password(request: Request, body: PasswordChange) -> Response:
    """Change the caller's password. The current password must be supplied."""
    principal = authorize_request(request, "CAN_UPDATE_SELF")
    get_directory(request).update_password(principal.id, body.old_password, body.new_password)
    return Response(status_code=204)


@router.delete("/auth/current", status_code=204)
def delete_own_account(request: Request) -> Response:
    """Delete the caller's own account. Outstanding tokens stop working immediately."""
    principal = authorize_request(request, "CAN_DELETE_SELF")
    get_directory(request).delete_self(principal)
    return Response(status_code=204)
