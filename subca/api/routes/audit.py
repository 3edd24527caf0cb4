"""Audit log API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from subca.api.dependencies import get_audit_service, get_identity
from subca.models.audit import AuditAction, AuditLogResponse
from subca.models.auth import Identity
from subca.services.audit_service import AuditService

router = APIRouter(prefix="/api/audit", tags=["Audit"])


@router.get("", response_model=AuditLogResponse)
def list_audit_logs(
    action: Optional[AuditAction] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    identity: Identity = Depends(get_identity),
    audit_service: AuditService = Depends(get_audit_service),
):
    """List audit rows, newest first."""
    logs = audit_service.list_logs(identity, action=action, limit=limit)
    return AuditLogResponse(total=len(logs), logs=logs, action=action)
