"""Revocation and CRL data models."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Literal, Optional

from cryptography import x509
from pydantic import BaseModel, Field

from subca.errors import InvalidReasonError

from .ca import utcnow


class RevocationReason(str, Enum):
    """RFC 5280 CRL Reason Codes accepted by the revocation endpoint."""

    UNSPECIFIED = "UNSPECIFIED"  # 0
    KEY_COMPROMISE = "KEY_COMPROMISE"  # 1
    CA_COMPROMISE = "CA_COMPROMISE"  # 2
    AFFILIATION_CHANGED = "AFFILIATION_CHANGED"  # 3
    SUPERSEDED = "SUPERSEDED"  # 4
    CESSATION_OF_OPERATION = "CESSATION_OF_OPERATION"  # 5
    CERTIFICATE_HOLD = "CERTIFICATE_HOLD"  # 6

    @classmethod
    def parse(cls, value: Any) -> "RevocationReason":
        """
        Parse a reason from an enum member or its name.

        Args:
            value: RevocationReason or string (case-insensitive)

        Returns:
            The matching reason

        Raises:
            InvalidReasonError: If value is not an enumerated reason
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise InvalidReasonError(value)

    @property
    def flag(self) -> x509.ReasonFlags:
        """The cryptography ReasonFlags member for this reason."""
        return REASON_FLAGS[self]


REASON_FLAGS = {
    RevocationReason.UNSPECIFIED: x509.ReasonFlags.unspecified,
    RevocationReason.KEY_COMPROMISE: x509.ReasonFlags.key_compromise,
    RevocationReason.CA_COMPROMISE: x509.ReasonFlags.ca_compromise,
    RevocationReason.AFFILIATION_CHANGED: x509.ReasonFlags.affiliation_changed,
    RevocationReason.SUPERSEDED: x509.ReasonFlags.superseded,
    RevocationReason.CESSATION_OF_OPERATION: x509.ReasonFlags.cessation_of_operation,
    RevocationReason.CERTIFICATE_HOLD: x509.ReasonFlags.certificate_hold,
}


class CertificateRevocation(BaseModel):
    """Revocation record. One per certificate, immutable."""

    id: str
    certificate_id: str
    ca_id: str
    serial_number: str
    reason: RevocationReason
    revoked_at: datetime
    revoked_by: str


class CRLEntry(BaseModel):
    """Entry in a generated CRL."""

    serial_number: str  # Hex String
    revocation_date: datetime
    reason: RevocationReason


class CRLRecord(BaseModel):
    """Persisted CRL generation (full or delta)."""

    id: str
    ca_id: str
    number: int
    is_delta: bool = False
    base_number: Optional[int] = None
    this_update: datetime
    next_update: datetime
    entries: List[CRLEntry] = Field(default_factory=list)
    crl_pem: str
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class RevokeRequest(BaseModel):
    """Request model for revoking a certificate."""

    certificate_id: str
    reason: Any = RevocationReason.UNSPECIFIED.value


class CRLGenerateRequest(BaseModel):
    """Request model for CRL generation."""

    ca_id: Optional[str] = None
    type: Literal["full", "delta"] = "full"


class RevocationResponse(BaseModel):
    """API envelope for a successful revocation."""

    success: bool = True
    revocation: CertificateRevocation


class CRLResponse(BaseModel):
    """Response model for CRL operations."""

    success: bool = True
    ca_id: str
    crl_number: int
    type: Literal["full", "delta"]
    base_crl_number: Optional[int] = None
    this_update: datetime
    next_update: datetime
    revoked_count: int
    crl: str

    @classmethod
    def from_record(cls, record: CRLRecord) -> "CRLResponse":
        """Build a response from a CRL record."""
        return cls(
            ca_id=record.ca_id,
            crl_number=record.number,
            type="delta" if record.is_delta else "full",
            base_crl_number=record.base_number,
            this_update=record.this_update,
            next_update=record.next_update,
            revoked_count=len(record.entries),
            crl=record.crl_pem,
        )
