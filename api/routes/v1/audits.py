"""
api/routes/v1/audits.py -- Read-only access to the audit trail.

Routes:
  GET /api/v1/audits        -- list, or search with ?text= (CAN_READ_AUDIT)
  GET /api/v1/audits/{id}   -- fetch one (CAN_READ_AUDIT)

Expired entries are invisible here even before the purge task removes them.
When AUDIT_ENABLED is off both routes simply see an empty trail.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request

from api.models import AuditPage, AuditResponse
from auth.audit import AuditTrail
from auth.dependencies import authorize_request
from core.errors import NotFoundError

router = APIRouter()


@router.get("/audits", response_model=AuditPage)
def list_audits(
    request: Request,
    text: Optional[str] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> AuditPage:
    authorize_request(request, "CAN_READ_AUDIT")
    audit: AuditTrail = request.app.state.audit
    if text is not None:
        page = audit.search_paged(text, skip, limit)
    else:
        page = audit.list_paged(skip, limit)
    return AuditPage(
        items=[AuditResponse.from_entry(e) for e in page.items],
        total=page.total,
        skip=page.skip,
        limit=page.limit,
    )


@router.get("/audits/{entry_id}", response_model=AuditResponse)
def get_audit(request: Request, entry_id: str) -> AuditResponse:
    authorize_request(request, "CAN_READ_AUDIT")
    audit: AuditTrail = request.app.state.audit
    entry = audit.get(entry_id)
    if entry is None:
        raise NotFoundError("Audit entry", entry_id)
    return AuditResponse.from_entry(entry)
