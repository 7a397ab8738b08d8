"""
core/errors.py -- Error taxonomy shared by auth/ and api/.

Every failure the engine reports is one of these classes. The transport layer
maps them onto status codes in one place (api/main.py); nothing in auth/ knows
about HTTP.

  ValidationError    malformed input, detected before any storage write   -> 400
  ConflictError      uniqueness violation                                 -> 409
  NotFoundError      unknown entity id                                    -> 404
  UnauthorizedError  missing/invalid/expired token, unknown or disabled user -> 401
  ForbiddenError     valid principal lacking the required permission      -> 403
  TransientError     storage timeout / unavailability, safe to retry      -> 503
  InternalError      misconfiguration or primitive failure                -> 500

Unauthorized and Forbidden are siblings, not parent/child, so an except clause
for one can never swallow the other.

Layer rule: core/ is the kernel. No project imports.
"""

from __future__ import annotations


class GatehouseError(Exception):
    """Base exception for Gatehouse."""

    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GatehouseError):
    """Input failed validation."""

    code = "validation_error"


class ConflictError(GatehouseError):
    """An entity with the same unique key already exists."""

    code = "conflict"


class NotFoundError(GatehouseError):
    """Requested entity was not found."""

    code = "not_found"

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class UnauthorizedError(GatehouseError):
    """The caller could not be authenticated."""

    code = "unauthorized"


class InvalidTokenError(UnauthorizedError):
    """Bearer token failed verification.

    `reason` is for server-side logs only ("expired", "bad_signature",
    "malformed"). The message shown to callers is the same for every reason.
    """

    def __init__(self, reason: str) -> None:
        super().__init__("Invalid credentials.")
        self.reason = reason


class ForbiddenError(GatehouseError):
    """Authenticated principal lacks the required permission."""

    code = "forbidden"

    def __init__(self, permission: str) -> None:
        super().__init__(f"Missing permission: {permission}")
        self.permission = permission


class TransientError(GatehouseError):
    """Storage timed out or is unavailable."""

    code = "unavailable"


class InternalError(GatehouseError):
    """Unexpected failure inside the engine."""

    code = "internal_error"
