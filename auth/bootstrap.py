"""
auth/bootstrap.py -- Idempotent first-run seeding.

Creates, when missing:
  - the built-in permissions (CRUD on permissions, roles and users, audit
    read, and the two self-service grants)
  - the ADMIN role holding every built-in permission
  - the default role (DEFAULT_ROLE_NAME) holding the self-service grants,
    handed to every self-registered user
  - the default user (DEFAULT_USER_*) with the ADMIN role, when
    GENERATE_DEFAULT_USER is set

Existing records are found by name / email and left untouched, so running this
on every startup is safe and never resets an operator's edits.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from auth.directory import IdentityDirectory
from auth.models import Permission, Role
from core.config import Settings

logger = logging.getLogger("gatehouse.bootstrap")

ADMIN_ROLE = "ADMIN"

SELF_PERMISSIONS: dict[str, str] = {
    "CAN_UPDATE_SELF": "The ability to update your own account",
    "CAN_DELETE_SELF": "The ability to delete your own account",
}

BUILTIN_PERMISSIONS: dict[str, str] = {
    "CAN_CREATE_PERMISSION": "The ability to create permissions",
    "CAN_READ_PERMISSION": "The ability to read permissions",
    "CAN_UPDATE_PERMISSION": "The ability to update permissions",
    "CAN_DELETE_PERMISSION": "The ability to delete permissions",
    "CAN_CREATE_ROLE": "The ability to create roles",
    "CAN_READ_ROLE": "The ability to read roles",
    "CAN_UPDATE_ROLE": "The ability to update roles",
    "CAN_DELETE_ROLE": "The ability to delete roles",
    "CAN_CREATE_USER": "The ability to create users",
    "CAN_READ_USER": "The ability to read users",
    "CAN_UPDATE_USER": "The ability to update users",
    "CAN_DELETE_USER": "The ability to delete users",
    "CAN_READ_AUDIT": "The ability to read audit entries",
    **SELF_PERMISSIONS,
}


def _find_or_create_permission(directory: IdentityDirectory, name: str, description: str) -> Permission:
    existing = directory.get_permission_by_name(name)
    if existing is not None:
        return existing
    return directory.create_permission(name, description)


def _find_or_create_role(
    directory: IdentityDirectory, name: str, description: str, permission_ids: list[str]
) -> Role:
    existing = directory.get_role_by_name(name)
    if existing is not None:
        return existing
    return directory.create_role(name, description, permissions=permission_ids)


def initialize(directory: IdentityDirectory, settings: Settings) -> None:
    """Seed permissions, roles and (optionally) the default user."""
    permissions = {
        name: _find_or_create_permission(directory, name, description)
        for name, description in BUILTIN_PERMISSIONS.items()
    }

    admin = _find_or_create_role(
        directory,
        ADMIN_ROLE,
        "The administrator role",
        [p.id for p in permissions.values() if p.id],
    )
    _find_or_create_role(
        directory,
        settings.default_role_name,
        "The default role for self-registered users",
        [permissions[name].id for name in SELF_PERMISSIONS if permissions[name].id],
    )

    if not settings.generate_default_user:
        return
    if not settings.default_user_password:
        logger.warning("GENERATE_DEFAULT_USER is set but DEFAULT_USER_PASSWORD is empty -- skipping default user")
        return
    if directory.get_user_by_email(settings.default_user_email) is not None:
        return
    if directory.get_user_by_username(settings.default_user_username) is not None:
        return

    user = directory.create_user(
        settings.default_user_username,
        settings.default_user_email,
        settings.default_user_password,
        roles=[admin.id] if admin.id else [],
        enabled=settings.default_user_enabled,
    )
    logger.info("Created default user %s", user.username)
