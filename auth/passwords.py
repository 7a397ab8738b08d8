"""
auth/passwords.py -- Credential hashing (argon2id via argon2-cffi).

Security design decisions:
  Primitive: argon2id, a memory-hard function, through argon2-cffi's
       PasswordHasher. Every hash call draws a fresh random salt, which is
       encoded into the PHC string along with the cost parameters. Stored
       hashes therefore stay verifiable after the cost is raised.

  Deployment salt: HASH_SALT is a deployment-wide secret. It is mixed in as
       an HMAC-SHA256 pepper before argon2 sees the password. A leaked users
       table alone is therefore not enough to run an offline dictionary attack.

  Timing equalization [C1]: verify_dummy() runs the same argon2 work against a
       precomputed hash. Login calls it when the username is unknown, so the
       response time does not reveal whether a username exists.

Neither plaintext nor hash material is ever logged or put into an error message.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass

import argon2
from argon2.exceptions import HashingError, InvalidHashError, VerificationError

from core.errors import InternalError, ValidationError

logger = logging.getLogger("gatehouse.passwords")


@dataclass(frozen=True)
class HashCost:
    """argon2id cost parameters. memory_cost is in KiB.

    The defaults are argon2-cffi's RFC 9106 low-memory profile.
    """

    time_cost: int = 3
    memory_cost: int = 65536
    parallelism: int = 4

    def hasher(self) -> argon2.PasswordHasher:
        return argon2.PasswordHasher(
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            type=argon2.Type.ID,
        )


DEFAULT_COST = HashCost()


def _pepper(salt: str, plain: str) -> bytes:
    digest = hmac.new(salt.encode("utf-8"), plain.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest)


def hash_password(plain: str, salt: str, cost: HashCost = DEFAULT_COST) -> str:
    """Return an argon2id PHC string of the plaintext peppered with the deployment salt."""
    if not plain:
        raise ValidationError("Empty passwords are not allowed.")
    if not salt:
        raise InternalError("Password hashing requires a deployment salt.")
    try:
        return cost.hasher().hash(_pepper(salt, plain))
    except HashingError as exc:
        logger.error("Password hashing failed: %s", type(exc).__name__)
        raise InternalError("Failed to hash password.") from exc


def verify_password(plain: str, salt: str, hashed: str, cost: HashCost = DEFAULT_COST) -> bool:
    """Return True if plain matches hashed. Malformed or empty hashes return False.

    Cost parameters are read from the stored hash; `cost` only builds the verifier.
    """
    if not hashed or not salt:
        return False
    try:
        return cost.hasher().verify(hashed, _pepper(salt, plain))
    except (VerificationError, InvalidHashError, UnicodeEncodeError):
        return False


class PasswordHasher:
    """hash_password / verify_password bound to one deployment salt.

    Usage:
        hasher = PasswordHasher(settings.hash_salt)
        stored = hasher.hash("secret")
        hasher.verify("secret", stored)  # True
    """

    def __init__(self, salt: str, cost: HashCost = DEFAULT_COST) -> None:
        if not salt:
            raise InternalError("Password hasher requires a non-empty deployment salt.")
        self._salt = salt
        self._cost = cost
        # Computed once so the first unknown-user login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash("gatehouse_timing_dummy")

    def hash(self, plain: str) -> str:
        return hash_password(plain, self._salt, cost=self._cost)

    def verify(self, plain: str, hashed: str) -> bool:
        return verify_password(plain, self._salt, hashed, cost=self._cost)

    def verify_dummy(self, plain: str) -> None:
        """Burn one verification's worth of work. Always call it on unknown users [C1]."""
        verify_password(plain, self._salt, self._dummy_hash, cost=self._cost)
