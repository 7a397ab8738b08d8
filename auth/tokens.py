"""
auth/tokens.py -- JWT bearer token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with JWT_SECRET and carry
       only the subject (user id), issued-at and expiry. Roles and permissions
       are deliberately NOT embedded -- they are resolved per request so a role
       edit takes effect without re-issuing tokens.

  Expiry: checked here against an injectable clock rather than by jose, so the
       boundary is exact: a token is valid while now < exp and invalid from
       the second exp is reached. There is no leeway.

  No revocation list: a token stays Valid until exp. AuthorizationEngine
       re-checks that the subject exists and is enabled on every request,
       which is what makes disabling or deleting a user take effect at once.

  Failure reporting: every verification failure raises InvalidTokenError with
       the same caller-facing message. The reason (expired / bad_signature /
       malformed) is only logged, so callers get no oracle.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from jose import ExpiredSignatureError, JWTError, jwt

from core.errors import InternalError, InvalidTokenError

logger = logging.getLogger("gatehouse.tokens")

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenClaims:
    sub: str
    iat: int
    exp: int


class TokenService:
    """Issues and verifies signed, time-bounded bearer tokens.

    Usage:
        tokens = TokenService(settings.jwt_secret, settings.jwt_expiration)
        token = tokens.issue(user.id)
        claims = tokens.verify(token)   # raises InvalidTokenError
    """

    def __init__(
        self,
        secret: str,
        expiration_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise InternalError("Token service requires a signing secret.")
        self._secret = secret
        self.expiration_seconds = expiration_seconds
        self._clock = clock

    def issue(self, user_id: str, expiration_seconds: int | None = None) -> str:
        """Encode a signed JWT for user_id.

        Args:
            user_id:            Subject claim. Must be the user's stable id,
                                not the username, so renames do not orphan tokens.
            expiration_seconds: Lifetime override. Defaults to JWT_EXPIRATION.
        """
        duration = expiration_seconds if expiration_seconds is not None else self.expiration_seconds
        now = int(self._clock())
        payload = {"sub": user_id, "iat": now, "exp": now + duration}
        try:
            return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)
        except JWTError as exc:
            logger.error("Error generating JWT token: %s", exc)
            raise InternalError("Failed to issue token.") from exc

    def verify(self, token: str) -> TokenClaims:
        """Verify signature and expiry. Returns the claims or raises InvalidTokenError."""
        if not token:
            raise InvalidTokenError("malformed")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except ExpiredSignatureError as exc:
            raise self._reject("expired") from exc
        except JWTError as exc:
            reason = "bad_signature" if "signature" in str(exc).lower() else "malformed"
            raise self._reject(reason) from exc

        sub, iat, exp = payload.get("sub"), payload.get("iat"), payload.get("exp")
        if not isinstance(sub, str) or not sub or not isinstance(exp, int) or not isinstance(iat, int):
            raise self._reject("malformed")
        if self._clock() >= exp:
            raise self._reject("expired")
        return TokenClaims(sub=sub, iat=iat, exp=exp)

    @staticmethod
    def _reject(reason: str) -> InvalidTokenError:
        logger.info("Rejected bearer token (%s)", reason)
        return InvalidTokenError(reason)
