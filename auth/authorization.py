"""
auth/authorization.py -- Authentication and permission checks.

AuthorizationEngine answers two questions and nothing else:
  - login:     do these credentials belong to an enabled user? -> token
  - authorize: does the bearer of this token hold permission P right now?

Decision procedure for authorize(token, P), evaluated fresh on every call:
  1. TokenService.verify(token)           -> InvalidTokenError (401)
  2. load the subject user                -> UnauthorizedError (401) if missing or disabled
  3. resolve roles -> permissions now     (dangling ids contribute nothing)
  4. P not in the union of names          -> ForbiddenError (403)
  5. return the Principal

Nothing is cached between calls. That is what makes a role edit, a disabled
account or a deleted user take effect on the very next request without any
token revocation machinery.

Ownership ("is this principal the owner of resource Y") is not decided here.
Callers express self-service actions as their own permissions (CAN_UPDATE_SELF,
CAN_DELETE_SELF) and compare ids themselves.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from auth.directory import IdentityDirectory
from auth.models import Principal, User
from auth.passwords import PasswordHasher
from auth.tokens import TokenService
from core.errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger("gatehouse.authorization")

_BAD_CREDENTIALS = "Invalid username or password."


class AuthorizationEngine:
    """Login, current-principal lookup and permission checks.

    Usage:
        engine = AuthorizationEngine(directory, hasher, tokens)
        token = engine.login("alice", "pw")
        principal = engine.authorize(token, "CAN_CREATE_USER")
    """

    def __init__(self, directory: IdentityDirectory, hasher: PasswordHasher, tokens: TokenService) -> None:
        self._directory = directory
        self._hasher = hasher
        self._tokens = tokens

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, username: str, password: str) -> User:
        """Verify a username/password pair with timing equalization [C1].

        Always runs argon2 whether or not the user exists:
        - Unknown username: argon2 runs against the dummy hash (same cost)
        - Wrong password / disabled user: argon2 runs against the real hash

        Every failure raises the same UnauthorizedError, so the caller cannot
        tell a missing user from a wrong password or a disabled account.
        """
        user = self._directory.get_user_by_username(username or "")
        if user is None:
            self._hasher.verify_dummy(password or "")
            raise UnauthorizedError(_BAD_CREDENTIALS)
        if not self._hasher.verify(password or "", user.password):
            raise UnauthorizedError(_BAD_CREDENTIALS)
        if not user.enabled:
            raise UnauthorizedError(_BAD_CREDENTIALS)
        return user

    def login(self, username: str, password: str, expiration_seconds: int | None = None) -> str:
        """Authenticate and issue a bearer token for the user's id."""
        user = self.authenticate(username, password)
        logger.info("User %s logged in", user.id)
        return self._tokens.issue(user.id or "", expiration_seconds)

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    def principal_for(self, user_id: str) -> Principal:
        """Load the user and resolve roles and permissions as of now."""
        user = self._directory.find_user(user_id)
        if user is None:
            logger.info("Token subject %s no longer exists", user_id)
            raise UnauthorizedError("Invalid credentials.")
        if not user.enabled:
            logger.info("Token subject %s is disabled", user_id)
            raise UnauthorizedError("Invalid credentials.")
        return Principal(user=user, roles=self._directory.resolve_user(user))

    def current_principal(self, token: str) -> Principal:
        claims = self._tokens.verify(token)
        return self.principal_for(claims.sub)

    def effective_permission_names(self, user: User) -> frozenset[str]:
        return Principal(user=user, roles=self._directory.resolve_user(user)).permission_names

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def require(self, principal: Principal, permission: str) -> Principal:
        """Raise ForbiddenError unless principal holds permission."""
        if not principal.has_permission(permission):
            logger.info("Principal %s lacks %s", principal.id, permission)
            raise ForbiddenError(permission)
        return principal

    def authorize(self, token: str, permission: str) -> Principal:
        """Return the principal behind token if it currently holds permission.

        Raises UnauthorizedError (bad token, unknown or disabled user) or
        ForbiddenError (valid principal without the permission). The two are
        never converted into each other.
        """
        return self.require(self.current_principal(token), permission)
