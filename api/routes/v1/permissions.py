"""
api/routes/v1/permissions.py -- Permission management REST endpoints.

Routes:
  POST   /api/v1/permissions         -- create (CAN_CREATE_PERMISSION)
  GET    /api/v1/permissions         -- list, or search with ?text= (CAN_READ_PERMISSION)
  GET    /api/v1/permissions/{id}    -- fetch one (CAN_READ_PERMISSION)
  PUT    /api/v1/permissions/{id}    -- update description (CAN_UPDATE_PERMISSION)
  DELETE /api/v1/permissions/{id}    -- delete; roles keep the dangling id (CAN_DELETE_PERMISSION)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request, Response

from api.models import PermissionCreate, PermissionPage, PermissionResponse, PermissionUpdate
from api.routes.v1.responses import get_directory
from auth.dependencies import authorize_request

router = APIRouter()


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
def create_permission(request: Request, body: PermissionCreate) -> PermissionResponse:
    principal = authorize_request(request, "CAN_CREATE_PERMISSION")
    created = get_directory(request).create_permission(body.name, body.description, actor_id=principal.id)
    return PermissionResponse.from_permission(created)


@router.get("/permissions", response_model=PermissionPage)
def list_permissions(
    request: Request,
    text: Optional[str] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> PermissionPage:
    """List permissions in insertion order, or search names and ids when text is given."""
    authorize_request(request, "CAN_READ_PERMISSION")
    directory = get_directory(request)
    if text is not None:
        page = directory.search_permissions(text, skip, limit)
    else:
        page = directory.list_permissions(skip, limit)
    return PermissionPage(
        items=[PermissionResponse.from_permission(p) for p in page.items],
        total=page.total,
        skip=page.skip,
        limit=page.limit,
    )


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
def get_permission(request: Request, permission_id: str) -> PermissionResponse:
    authorize_request(request, "CAN_READ_PERMISSION")
    return PermissionResponse.from_permission(get_directory(request).get_permission(permission_id))


@router.put("/permissions/{permission_id}", response_model=PermissionResponse)
def update_permission(request: Request, permission_id: str, body: PermissionUpdate) -> PermissionResponse:
    principal = authorize_request(request, "CAN_UPDATE_PERMISSION")
    updated = get_directory(request).update_permission(permission_id, body.description, actor_id=principal.id)
    return PermissionResponse.from_permission(updated)


@router.delete("/permissions/{permission_id}", status_code=204)
def delete_permission(request: Request, permission_id: str) -> Response:
    principal = authorize_request(request, "CAN_DELETE_PERMISSION")
    get_directory(request).delete_permission(permission_id, actor_id=principal.id)
    return Response(status_code=204)
