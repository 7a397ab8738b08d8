"""
auth/models.py -- Domain dataclasses for identity and access entities.

Pattern: Data class (pure data container, near-zero logic). Stores map rows to
these objects; the directory and the authorization engine do the work.

Relations are id references, not embedded copies: a Role holds permission
ids and a User holds role ids. They are resolved against their collections at
read time (IdentityDirectory.resolve_role / resolve_user), so an edit to a
permission or role is visible on the very next request.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class Permission:
    """An atomic named capability, e.g. CAN_CREATE_USER.

    name is immutable after creation; description is editable.
    """

    name: str
    description: str = ""
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Role:
    """A named bundle of permission ids.

    permissions may contain ids of permissions that were deleted later. Those
    dangling ids are kept as-is and contribute nothing during resolution.
    """

    name: str
    description: str = ""
    permissions: list[str] = field(default_factory=list)
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class User:
    """An authenticatable principal.

    password holds the full hash string (algorithm, cost and salt included).
    It is never serialized outward -- api/models.py has no field for it.
    """

    username: str
    email: str
    password: str = field(default="", repr=False)
    first_name: str = ""
    last_name: str = ""
    roles: list[str] = field(default_factory=list)
    enabled: bool = True
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class AuditAction(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class ResourceType(str, Enum):
    permission = "permission"
    role = "role"
    user = "user"


class AuditOutcome(str, Enum):
    success = "success"
    failure = "failure"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of one mutating call.

    actor_id is the acting user's id, or "SYSTEM" for bootstrap and
    self-registration where no principal exists yet.
    """

    actor_id: str
    action: AuditAction
    resource_type: ResourceType
    resource_id: str
    outcome: AuditOutcome
    id: str | None = None
    created_at: str | None = None
    expires_at: str | None = None


@dataclass(frozen=True)
class ResolvedRole:
    """A role with its permission ids replaced by the permissions that still exist."""

    role: Role
    permissions: list[Permission] = field(default_factory=list)


@dataclass(frozen=True)
class Principal:
    """An authenticated user plus everything needed to make a decision.

    Built fresh on every request by AuthorizationEngine; never cached.
    """

    user: User
    roles: list[ResolvedRole] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.user.id or ""

    @property
    def permission_names(self) -> frozenset[str]:
        """Union of permission names across every role."""
        return frozenset(p.name for r in self.roles for p in r.permissions)

    def has_permission(self, name: str) -> bool:
        return name in self.permission_names
