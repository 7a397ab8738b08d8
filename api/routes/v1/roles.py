"""
api/routes/v1/roles.py -- Role management REST endpoints.

Routes:
  POST   /api/v1/roles         -- create (CAN_CREATE_ROLE)
  GET    /api/v1/roles         -- list, or search with ?text= (CAN_READ_ROLE)
  GET    /api/v1/roles/{id}    -- fetch one (CAN_READ_ROLE)
  PUT    /api/v1/roles/{id}    -- update name, description or permissions (CAN_UPDATE_ROLE)
  DELETE /api/v1/roles/{id}    -- delete and remove from every user (CAN_DELETE_ROLE)

Role responses expand permission ids into the permissions that still exist.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request, Response

from api.models import RoleCreate, RolePage, RoleResponse, RoleUpdate
from api.routes.v1.responses import get_directory, role_response
from auth.dependencies import authorize_request

router = APIRouter()


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: RoleCreate) -> RoleResponse:
    principal = authorize_request(request, "CAN_CREATE_ROLE")
    directory = get_directory(request)
    created = directory.create_role(
        body.name,
        body.description,
        permissions=body.permissions,
        actor_id=principal.id,
    )
    return role_response(directory, created)


@router.get("/roles", response_model=RolePage)
def list_roles(
    request: Request,
    text: Optional[str] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> RolePage:
    authorize_request(request, "CAN_READ_ROLE")
    directory = get_directory(request)
    if text is not None:
        page = directory.search_roles(text, skip, limit)
    else:
        page = directory.list_roles(skip, limit)
    return RolePage(
        items=[role_response(directory, r) for r in page.items],
        total=page.total,
        skip=page.skip,
        limit=page.limit,
    )


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: str) -> RoleResponse:
    authorize_request(request, "CAN_READ_ROLE")
    directory = get_directory(request)
    return role_response(directory, directory.get_role(role_id))


@router.put("/roles/{role_id}", response_model=RoleResponse)
def update_role(request: Request, role_id: str, body: RoleUpdate) -> RoleResponse:
    """Partial update. A permissions list, when given, replaces the role's whole list."""
    principal = authorize_request(request, "CAN_UPDATE_ROLE")
    directory = get_directory(request)
    updated = directory.update_role(
        role_id,
        name=body.name,
        description=body.description,
        permissions=body.permissions,
        actor_id=principal.id,
    )
    return role_response(directory, updated)


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(request: Request, role_id: str) -> Response:
    principal = authorize_request(request, "CAN_DELETE_ROLE")
    get_directory(request).delete_role(role_id, actor_id=principal.id)
    return Response(status_code=204)
