"""
api/routes/v1/audit.py -- Read access to the authentication audit trail.

Routes:
  GET /api/v1/audit?limit=N&actor=ID   -- newest entries first (VIEW_AUDIT_LOGS)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse
from auth.audit import AuditLog
from auth.dependencies import require_permissions
from auth.models import AuthContext
from auth.permissions import Permission

router = APIRouter()


@router.get("/audit", response_model=list[AuditEntryResponse])
def list_audit_entries(
    request: Request,
    limit: int = Query(default=100, ge=1, le=500),
    actor: Optional[str] = Query(default=None, max_length=36),
    identity: AuthContext = Depends(require_permissions(Permission.VIEW_AUDIT_LOGS)),
) -> list[AuditEntryResponse]:
    audit_log: AuditLog = request.app.state.audit_log
    return [AuditEntryResponse.from_entry(e) for e in audit_log.recent(limit=limit, actor=actor)]
