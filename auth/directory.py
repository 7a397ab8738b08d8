"""
auth/directory.py -- Identity Directory: lifecycle of permissions, roles and users.

The directory is the only writer of entities. The authorization engine reads
through it (resolve_user) but never mutates anything.

Write rules, applied in this order on every mutating call:
  1. Validate input (empty names, email syntax, negative skip). Nothing is
     written when validation fails.
  2. Check uniqueness (permission name, role name, username, email) and
     referenced ids (role -> permission ids, user -> role ids). Storage unique
     constraints back the uniqueness checks up under concurrent writers; both
     paths surface as ConflictError.
  3. Write, then record an audit entry (success or failure) when audit is
     enabled. Audit failures never reach the caller.

Resolution: roles hold permission ids, users hold role ids. resolve_role and
resolve_user look them up at call time and silently skip ids that no longer
exist, so a deleted permission simply stops contributing.

Deletion policy:
  delete_permission  no cascade; roles keep the dangling id.
  delete_role        cascade-clears the role id from every user.

Passwords: update_user never touches the stored hash unless a new password is
passed explicitly. Every hash goes through the PasswordHasher.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TypeVar

from auth.audit import SYSTEM_ACTOR, AuditTrail
from auth.models import (
    AuditAction,
    AuditOutcome,
    Permission,
    Principal,
    ResolvedRole,
    ResourceType,
    Role,
    User,
)
from auth.passwords import PasswordHasher
from auth.store import Collection, DirectoryStore
from core.errors import ConflictError, GatehouseError, NotFoundError, ValidationError
from core.pagination import Page, clamp_limit, validate_search_text, validate_skip

logger = logging.getLogger("gatehouse.directory")

EMAIL_PATTERN = re.compile(r"^[a-z0-9_+]([a-z0-9_+.\-]*[a-z0-9_+])?@[a-z0-9]+([\-.][a-z0-9]+)*\.[a-z]{2,}$")

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------


def _required(value: str | None, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"Empty {field} values are not allowed.")
    return value


def _normalize_email(email: str | None) -> str:
    email = _required(email, "email").lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email address.")
    return email


def _unique_ids(ids: list[str] | None) -> list[str]:
    """De-duplicate while preserving first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for i in ids or []:
        if i not in seen:
            seen.add(i)
            result.append(i)
    return result


class IdentityDirectory:
    """CRUD, list and search for Permission, Role and User.

    Usage:
        directory = IdentityDirectory(store, hasher, audit_trail, max_fetch_limit=100)
        perm = directory.create_permission("CAN_CREATE_USER")
        role = directory.create_role("ADMIN", permissions=[perm.id])
        user = directory.create_user("alice", "alice@example.com", "pw", roles=[role.id])

    actor_id on mutating calls is the acting principal's user id. It is only
    used for the audit trail; authorization happens before the call.
    """

    def __init__(
        self,
        store: DirectoryStore,
        hasher: PasswordHasher,
        audit: AuditTrail,
        max_fetch_limit: int = 100,
        default_role_name: str = "DEFAULT",
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._audit = audit
        self._max_fetch_limit = max_fetch_limit
        self.default_role_name = default_role_name

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _audited(
        self,
        actor_id: str,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: str = "",
    ) -> Iterator[dict]:
        """Record the outcome of the wrapped write. The body may set target["id"]."""
        target = {"id": resource_id}
        try:
            yield target
        except GatehouseError:
            self._audit.record(actor_id, action, resource_type, target["id"], AuditOutcome.failure)
            raise
        self._audit.record(actor_id, action, resource_type, target["id"], AuditOutcome.success)

    def _list(self, collection: Collection[T], skip: int | None, limit: int | None) -> Page[T]:
        skip = validate_skip(skip)
        return collection.find_paged(None, skip, clamp_limit(limit, self._max_fetch_limit))

    def _search(self, collection: Collection[T], text: str, skip: int | None, limit: int | None) -> Page[T]:
        text = validate_search_text(text)
        skip = validate_skip(skip)
        return collection.text_search(text, skip, clamp_limit(limit, self._max_fetch_limit))

    @staticmethod
    def _require_ids(collection: Collection, ids: list[str], kind: str) -> None:
        if not ids:
            return
        found = {e.id for e in collection.find_many_by_ids(ids)}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError(kind, ", ".join(missing))

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, name: str, description: str = "", actor_id: str = SYSTEM_ACTOR) -> Permission:
        name = _required(name, "name")
        with self._audited(actor_id, AuditAction.create, ResourceType.permission) as target:
            if self._store.permissions.find_one(name=name) is not None:
                raise ConflictError(f"A permission named {name} already exists.")
            created = self._store.permissions.insert(Permission(name=name, description=description or ""))
            target["id"] = created.id
        logger.info("Created permission %s (%s)", created.name, created.id)
        return created

    def get_permission(self, permission_id: str) -> Permission:
        found = self._store.permissions.find_by_id(permission_id)
        if found is None:
            raise NotFoundError("Permission", permission_id)
        return found

    def get_permission_by_name(self, name: str) -> Permission | None:
        return self._store.permissions.find_one(name=name)

    def get_permissions_by_ids(self, ids: list[str]) -> list[Permission]:
        return self._store.permissions.find_many_by_ids(_unique_ids(ids))

    def list_permissions(self, skip: int | None = 0, limit: int | None = None) -> Page[Permission]:
        return self._list(self._store.permissions, skip, limit)

    def search_permissions(self, text: str, skip: int | None = 0, limit: int | None = None) -> Page[Permission]:
        return self._search(self._store.permissions, text, skip, limit)

    def update_permission(
        self, permission_id: str, description: str, actor_id: str = SYSTEM_ACTOR
    ) -> Permission:
        """Update a permission's description. Its name is fixed at creation."""
        with self._audited(actor_id, AuditAction.update, ResourceType.permission, permission_id):
            if not self._store.permissions.update(permission_id, description=description or ""):
                raise NotFoundError("Permission", permission_id)
        return self.get_permission(permission_id)

    def delete_permission(self, permission_id: str, actor_id: str = SYSTEM_ACTOR) -> None:
        """Delete a permission. Roles referencing it keep a dangling id that resolves to nothing."""
        with self._audited(actor_id, AuditAction.delete, ResourceType.permission, permission_id):
            if not self._store.permissions.delete(permission_id):
                raise NotFoundError("Permission", permission_id)
        logger.info("Deleted permission %s", permission_id)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(
        self,
        name: str,
        description: str = "",
        permissions: list[str] | None = None,
        actor_id: str = SYSTEM_ACTOR,
    ) -> Role:
        name = _required(name, "name")
        permission_ids = _unique_ids(permissions)
        with self._audited(actor_id, AuditAction.create, ResourceType.role) as target:
            if self._store.roles.find_one(name=name) is not None:
                raise ConflictError(f"A role named {name} already exists.")
            self._require_ids(self._store.permissions, permission_ids, "Permission")
            created = self._store.roles.insert(
                Role(name=name, description=description or "", permissions=permission_ids)
            )
            target["id"] = created.id
        logger.info("Created role %s (%s)", created.name, created.id)
        return created

    def get_role(self, role_id: str) -> Role:
        found = self._store.roles.find_by_id(role_id)
        if found is None:
            raise NotFoundError("Role", role_id)
        return found

    def get_role_by_name(self, name: str) -> Role | None:
        return self._store.roles.find_one(name=name)

    def get_roles_by_ids(self, ids: list[str]) -> list[Role]:
        return self._store.roles.find_many_by_ids(_unique_ids(ids))

    def list_roles(self, skip: int | None = 0, limit: int | None = None) -> Page[Role]:
        return self._list(self._store.roles, skip, limit)

    def search_roles(self, text: str, skip: int | None = 0, limit: int | None = None) -> Page[Role]:
        return self._search(self._store.roles, text, skip, limit)

    def update_role(
        self,
        role_id: str,
        name: str | None = None,
        description: str | None = None,
        permissions: list[str] | None = None,
        actor_id: str = SYSTEM_ACTOR,
    ) -> Role:
        """Update any subset of name, description and permission ids.

        Passing permissions replaces the whole list; the write is atomic for
        the role document.
        """
        fields: dict = {}
        if name is not None:
            fields["name"] = _required(name, "name")
        if description is not None:
            fields["description"] = description
        if permissions is not None:
            fields["permissions"] = _unique_ids(permissions)

        with self._audited(actor_id, AuditAction.update, ResourceType.role, role_id):
            current = self.get_role(role_id)
            if "name" in fields and fields["name"] != current.name:
                if self._store.roles.find_one(name=fields["name"]) is not None:
                    raise ConflictError(f"A role named {fields['name']} already exists.")
            if "permissions" in fields:
                self._require_ids(self._store.permissions, fields["permissions"], "Permission")
            if fields:
                self._store.roles.update(role_id, **fields)
        return self.get_role(role_id)

    def delete_role(self, role_id: str, actor_id: str = SYSTEM_ACTOR) -> None:
        """Delete a role and clear its id from every user that holds it."""
        with self._audited(actor_id, AuditAction.delete, ResourceType.role, role_id):
            if not self._store.roles.delete(role_id):
                raise NotFoundError("Role", role_id)
            cleared = self._store.users.pull("roles", role_id)
        logger.info("Deleted role %s (removed from %d users)", role_id, cleared)

    def resolve_role(self, role: Role) -> ResolvedRole:
        """Replace permission ids with the permissions that currently exist."""
        return ResolvedRole(role=role, permissions=self.get_permissions_by_ids(role.permissions))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        roles: list[str] | None = None,
        enabled: bool = True,
        actor_id: str = SYSTEM_ACTOR,
    ) -> User:
        username = _required(username, "username")
        email = _normalize_email(email)
        _required(password, "password")
        role_ids = _unique_ids(roles)

        with self._audited(actor_id, AuditAction.create, ResourceType.user) as target:
            self._ensure_unique_user(username, email)
            self._require_ids(self._store.roles, role_ids, "Role")
            created = self._store.users.insert(
                User(
                    username=username,
                    email=email,
                    password=self._hasher.hash(password),
                    first_name=(first_name or "").strip(),
                    last_name=(last_name or "").strip(),
                    roles=role_ids,
                    enabled=enabled,
                )
            )
            target["id"] = created.id
        logger.info("Created user %s (%s)", created.username, created.id)
        return created

    def register_user(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
    ) -> User:
        """Self-registration: an enabled user holding only the default role.

        If the default role does not exist the user starts with no roles.
        """
        default_role = self.get_role_by_name(self.default_role_name)
        roles = [default_role.id] if default_role is not None and default_role.id else []
        return self.create_user(
            username,
            email,
            password,
            first_name=first_name,
            last_name=last_name,
            roles=roles,
            enabled=True,
            actor_id=SYSTEM_ACTOR,
        )

    def _ensure_unique_user(self, username: str, email: str, exclude_id: str | None = None) -> None:
        by_name = self._store.users.find_one(username=username)
        if by_name is not None and by_name.id != exclude_id:
            raise ConflictError("A user with that username already exists.")
        by_email = self._store.users.find_one(email=email)
        if by_email is not None and by_email.id != exclude_id:
            raise ConflictError("A user with that email address already exists.")

    def get_user(self, user_id: str) -> User:
        found = self._store.users.find_by_id(user_id)
        if found is None:
            raise NotFoundError("User", user_id)
        return found

    def find_user(self, user_id: str) -> User | None:
        return self._store.users.find_by_id(user_id)

    def get_user_by_username(self, username: str) -> User | None:
        return self._store.users.find_one(username=username)

    def get_user_by_email(self, email: str) -> User | None:
        return self._store.users.find_one(email=(email or "").strip().lower())

    def list_users(self, skip: int | None = 0, limit: int | None = None) -> Page[User]:
        return self._list(self._store.users, skip, limit)

    def search_users(self, text: str, skip: int | None = 0, limit: int | None = None) -> Page[User]:
        return self._search(self._store.users, text, skip, limit)

    def update_user(
        self,
        user_id: str,
        *,
        username: str | None = None,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        roles: list[str] | None = None,
        enabled: bool | None = None,
        password: str | None = None,
        actor_id: str = SYSTEM_ACTOR,
    ) -> User:
        """Update profile fields, role membership and enabled state.

        The stored password hash is replaced only when `password` is passed.
        """
        fields: dict = {}
        if username is not None:
            fields["username"] = _required(username, "username")
        if email is not None:
            fields["email"] = _normalize_email(email)
        if first_name is not None:
            fields["first_name"] = first_name.strip()
        if last_name is not None:
            fields["last_name"] = last_name.strip()
        if roles is not None:
            fields["roles"] = _unique_ids(roles)
        if enabled is not None:
            fields["enabled"] = enabled
        if password is not None:
            _required(password, "password")
            fields["password"] = self._hasher.hash(password)

        with self._audited(actor_id, AuditAction.update, ResourceType.user, user_id):
            current = self.get_user(user_id)
            self._ensure_unique_user(
                fields.get("username", current.username),
                fields.get("email", current.email),
                exclude_id=user_id,
            )
            if "roles" in fields:
                self._require_ids(self._store.roles, fields["roles"], "Role")
            if fields:
                self._store.users.update(user_id, **fields)
        return self.get_user(user_id)

    def update_password(
        self, user_id: str, old_password: str, new_password: str, actor_id: str | None = None
    ) -> None:
        """Self-service password change. The current password must be supplied."""
        _required(new_password, "password")
        user = self.get_user(user_id)
        if not self._hasher.verify(old_password or "", user.password):
            raise ValidationError("The current password is incorrect.")
        self.update_user(user_id, password=new_password, actor_id=actor_id or user_id)

    def admin_update_password(self, user_id: str, new_password: str, actor_id: str = SYSTEM_ACTOR) -> None:
        """Set a user's password without knowing the old one."""
        self.update_user(user_id, password=new_password, actor_id=actor_id)

    def delete_user(self, user_id: str, actor_id: str = SYSTEM_ACTOR) -> None:
        with self._audited(actor_id, AuditAction.delete, ResourceType.user, user_id):
            if not self._store.users.delete(user_id):
                raise NotFoundError("User", user_id)
        logger.info("Deleted user %s", user_id)

    def delete_self(self, principal: Principal) -> None:
        """Delete the principal's own account.

        The caller authorizes this with CAN_DELETE_SELF, which is distinct from
        the general CAN_DELETE_USER grant.
        """
        self.delete_user(principal.id, actor_id=principal.id)

    def resolve_user(self, user: User) -> list[ResolvedRole]:
        """Resolve the user's role ids, and each role's permission ids, as of now."""
        return [self.resolve_role(role) for role in self.get_roles_by_ids(user.roles)]
