"""Audit trail models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .ca import utcnow


class AuditAction(str, Enum):
    """Auditable actions. One row per successful mutating operation."""

    CA_INITIALIZED = "CA_INITIALIZED"
    CA_ACTIVATED = "CA_ACTIVATED"
    CA_EXPIRED = "CA_EXPIRED"
    CA_REVOKED = "CA_REVOKED"
    CA_DELETED = "CA_DELETED"
    OCSP_SIGNER_CREATED = "OCSP_SIGNER_CREATED"
    CERTIFICATE_ISSUED = "CERTIFICATE_ISSUED"
    CERTIFICATE_RENEWED = "CERTIFICATE_RENEWED"
    CERTIFICATE_REVOKED = "CERTIFICATE_REVOKED"
    CRL_GENERATED = "CRL_GENERATED"


class AuditLog(BaseModel):
    """Persisted audit row."""

    id: str
    action: AuditAction
    user_id: str
    username: str
    description: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class AuditLogResponse(BaseModel):
    """Response model for audit queries."""

    success: bool = True
    total: int
    logs: list[AuditLog]
    action: Optional[AuditAction] = None
