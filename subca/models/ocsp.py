"""OCSP responder models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .crl import RevocationReason


class OCSPStatus(str, Enum):
    """Certificate status as reported by the responder."""

    GOOD = "good"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


class OCSPResult(BaseModel):
    """Status decision plus the signed BasicOCSPResponse."""

    status: OCSPStatus
    serial_number: str
    ca_id: Optional[str] = None
    revocation_time: Optional[datetime] = None
    revocation_reason: Optional[RevocationReason] = None
    this_update: datetime
    next_update: datetime
    nonce: Optional[bytes] = None
    der: bytes


class OCSPStatusResponse(BaseModel):
    """JSON view of an OCSP decision (the DER stays on the /ocsp endpoint)."""

    success: bool = True
    status: OCSPStatus
    serial_number: str
    revocation_time: Optional[datetime] = None
    revocation_reason: Optional[RevocationReason] = None
    this_update: datetime
    next_update: datetime

    @classmethod
    def from_result(cls, result: OCSPResult) -> "OCSPStatusResponse":
        """Drop the binary parts of a result."""
        return cls(**result.model_dump(exclude={"ca_id", "nonce", "der"}))
