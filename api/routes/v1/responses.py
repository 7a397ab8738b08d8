"""
api/routes/v1/responses.py -- Shared domain-to-response mapping for v1 routers.

Responses expand ids at read time: a user's role ids become roles, and each
role's permission ids become the permissions that still exist.
"""

from __future__ import annotations

from fastapi import Request

from api.models import RoleResponse, UserResponse
from auth.directory import IdentityDirectory
from auth.models import Role, User


def get_directory(request: Request) -> IdentityDirectory:
    return request.app.state.directory


def user_response(directory: IdentityDirectory, user: User) -> UserResponse:
    return UserResponse.from_user(user, directory.resolve_user(user))


def role_response(directory: IdentityDirectory, role: Role) -> RoleResponse:
    return RoleResponse.from_resolved(directory.resolve_role(role))
