"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  POST   /api/v1/users                -- create (CAN_CREATE_USER)
  GET    /api/v1/users                -- list, or search with ?text= (CAN_READ_USER)
  GET    /api/v1/users/{id}           -- fetch one (CAN_READ_USER)
  PUT    /api/v1/users/{id}           -- update profile, roles, enabled (CAN_UPDATE_USER)
  PUT    /api/v1/users/{id}/password  -- set password without the old one (CAN_UPDATE_USER)
  DELETE /api/v1/users/{id}           -- delete (CAN_DELETE_USER)

Security:
  [M4] PUT /users/{id} blocks self-disable; an operator cannot lock themselves out.
  Responses never carry the password hash (UserResponse has no field for it).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request, Response

from api.models import AdminPasswordChange, UserCreate, UserPage, UserResponse, UserUpdate
from api.routes.v1.responses import get_directory, user_response
from auth.dependencies import authorize_request
from core.errors import ValidationError

router = APIRouter()


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate) -> UserResponse:
    """Create a user with any roles. Unlike /auth/register, the caller picks the roles."""
    principal = authorize_request(request, "CAN_CREATE_USER")
    directory = get_directory(request)
    created = directory.create_user(
        body.username,
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        roles=body.roles,
        enabled=body.enabled,
        actor_id=principal.id,
    )
    return user_response(directory, created)


@router.get("/users", response_model=UserPage)
def list_users(
    request: Request,
    text: Optional[str] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> UserPage:
    """List users, or search id, username, email and names when text is given."""
    authorize_request(request, "CAN_READ_USER")
    directory = get_directory(request)
    if text is not None:
        page = directory.search_users(text, skip, limit)
    else:
        page = directory.list_users(skip, limit)
    return UserPage(
        items=[user_response(directory, u) for u in page.items],
        total=page.total,
        skip=page.skip,
        limit=page.limit,
    )


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: str) -> UserResponse:
    authorize_request(request, "CAN_READ_USER")
    directory = get_directory(request)
    return user_response(directory, directory.get_user(user_id))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(request: Request, user_id: str, body: UserUpdate) -> UserResponse:
    """Partial update. The stored password is never touched here."""
    principal = authorize_request(request, "CAN_UPDATE_USER")
    if body.enabled is False and user_id == principal.id:  # [M4]
        raise ValidationError("You cannot disable your own account.")
    directory = get_directory(request)
    updated = directory.update_user(
        user_id,
        username=body.username,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        roles=body.roles,
        enabled=body.enabled,
        actor_id=principal.id,
    )
    return user_response(directory, updated)


@router.put("/users/{user_id}/password", status_code=204)
def set_user_password(request: Request, user_id: str, body: AdminPasswordChange) -> Response:
    principal = authorize_request(request, "CAN_UPDATE_USER")
    get_directory(request).admin_update_password(user_id, body.password, actor_id=principal.id)
    return Response(status_code=204)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: str) -> Response:
    principal = authorize_request(request, "CAN_DELETE_USER")
    get_directory(request).delete_user(user_id, actor_id=principal.id)
    return Response(status_code=204)
