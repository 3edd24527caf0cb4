"""Certificate data models."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .ca import ECDSACurve, KeyAlgorithm, utcnow


class CertificateType(str, Enum):
    """Certificate profiles. Drives keyUsage/extendedKeyUsage selection."""

    SERVER = "SERVER"
    CLIENT = "CLIENT"
    CA = "CA"


class CertificateStatus(str, Enum):
    """Certificate states. EXPIRED is derived at read time."""

    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class ExportFormat(str, Enum):
    """Certificate export encodings."""

    PEM = "pem"
    DER = "der"
    PKCS12 = "p12"


class Certificate(BaseModel):
    """Persisted certificate record."""

    id: str
    ca_id: str
    serial_number: str  # Hex String
    common_name: str
    subject_alt_names: List[str] = Field(default_factory=list)
    certificate_type: CertificateType
    key_algorithm: KeyAlgorithm
    key_size: Optional[int] = None
    curve: Optional[ECDSACurve] = None
    public_key_pem: str
    certificate_pem: str
    fingerprint_sha256: str
    valid_from: datetime
    valid_to: datetime
    status: CertificateStatus = CertificateStatus.ACTIVE
    issued_by: str
    created_at: datetime = Field(default_factory=utcnow)
    renewed_from: Optional[str] = None
    superseded_by: Optional[str] = None

    def effective_status(self, now: Optional[datetime] = None) -> CertificateStatus:
        """Status with expiry applied. Revocation always wins."""
        if self.status == CertificateStatus.REVOKED:
            return CertificateStatus.REVOKED
        now = now or utcnow()
        if self.valid_to <= now:
            return CertificateStatus.EXPIRED
        return self.status


class IssueCertificateRequest(BaseModel):
    """Certificate issuance request.

    Types are deliberately loose: the issuer validates every field itself and
    reports the first violation as a ValidationError.
    """

    common_name: str = ""
    subject_alt_names: List[str] = Field(default_factory=list)
    certificate_type: str = CertificateType.SERVER.value
    key_algorithm: str = KeyAlgorithm.RSA.value
    key_size: Optional[Any] = None
    curve: Optional[str] = None
    validity_days: Any = None
    ca_id: Optional[str] = None
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None
    csr_pem: Optional[str] = None
    key_password: Optional[str] = None

    class Config:
        """Pydantic config."""

        json_schema_extra = {
            "example": {
                "common_name": "a.example.com",
                "subject_alt_names": ["a.example.com", "*.a.example.com", "192.168.1.10"],
                "certificate_type": "SERVER",
                "key_algorithm": "RSA",
                "key_size": 2048,
                "validity_days": 365,
            }
        }


class RenewCertificateRequest(BaseModel):
    """Request model for renewing a certificate."""

    validity_days: Optional[int] = None
    rekey: bool = False
    key_password: Optional[str] = None


class ValidateCertificateRequest(BaseModel):
    """Request model for validating a certificate."""

    certificate_pem: str
    certificate_type: Optional[CertificateType] = None
    check_revocation: bool = False
    ca_id: Optional[str] = None


class CertificateResponse(BaseModel):
    """Response model for a certificate record."""

    id: str
    ca_id: str
    serial_number: str
    common_name: str
    subject_alt_names: List[str]
    certificate_type: CertificateType
    key_algorithm: KeyAlgorithm
    key_size: Optional[int] = None
    curve: Optional[ECDSACurve] = None
    fingerprint_sha256: str
    valid_from: datetime
    valid_to: datetime
    status: CertificateStatus
    issued_by: str
    created_at: datetime
    renewed_from: Optional[str] = None
    superseded_by: Optional[str] = None

    @classmethod
    def from_certificate(cls, cert: Certificate) -> "CertificateResponse":
        """Build a response with the read-time status applied."""
        data = cert.model_dump(exclude={"public_key_pem", "certificate_pem", "status"})
        return cls(status=cert.effective_status(), **data)


class IssuedCertificate(BaseModel):
    """Result of issuance or renewal."""

    certificate: Certificate
    certificate_pem: str
    chain_pem: str = ""
    private_key_pem: Optional[str] = None


class IssueResponse(BaseModel):
    """API envelope for a successful issuance."""

    success: bool = True
    certificate: CertificateResponse
    certificate_pem: str
    chain_pem: str = ""
    private_key_pem: Optional[str] = None

    @classmethod
    def from_issued(cls, issued: IssuedCertificate) -> "IssueResponse":
        """Wrap an issuance result for the API."""
        return cls(
            certificate=CertificateResponse.from_certificate(issued.certificate),
            certificate_pem=issued.certificate_pem,
            chain_pem=issued.chain_pem,
            private_key_pem=issued.private_key_pem,
        )


class IssueParameters(BaseModel):
    """Issuance request after input validation and normalization."""

    common_name: str
    subject_alt_names: List[str] = Field(default_factory=list)
    certificate_type: CertificateType
    key_algorithm: KeyAlgorithm
    key_size: Optional[int] = None
    curve: Optional[ECDSACurve] = None
    validity_days: int
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None
    csr_pem: Optional[str] = None
