"""
auth/dependencies.py -- Request-level authorization helpers for FastAPI routes.

Handlers call these explicitly as their first statement:

    @router.post("/roles")
    def create_role(request: Request, body: RoleCreate) -> RoleResponse:
        principal = authorize_request(request, "CAN_CREATE_ROLE")
        ...

The token is read from the `Authorization: Bearer <token>` header. Errors are
the engine's own (UnauthorizedError / ForbiddenError); api/main.py maps them to
401 / 403, so nothing here builds HTTP responses.

Layer rule: auth/dependencies.py may import from fastapi (for Request) because
it is the seam between the engine and the transport. No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.authorization import AuthorizationEngine
from auth.models import Principal
from core.errors import UnauthorizedError


def bearer_token(request: Request) -> str:
    """Return the bearer token from the Authorization header, or raise UnauthorizedError."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Authentication required.")
    return token.strip()


def current_principal(request: Request) -> Principal:
    """Resolve the caller to a Principal. Raises UnauthorizedError."""
    engine: AuthorizationEngine = request.app.state.engine
    return engine.current_principal(bearer_token(request))


def authorize_request(request: Request, permission: str) -> Principal:
    """Resolve the caller and require permission. Raises UnauthorizedError or ForbiddenError."""
    engine: AuthorizationEngine = request.app.state.engine
    return engine.authorize(bearer_token(request), permission)
