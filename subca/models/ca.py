"""CA data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .validation import ParseResult


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class KeyAlgorithm(str, Enum):
    """Supported key algorithms."""

    RSA = "RSA"
    ECDSA = "ECDSA"
    ED25519 = "Ed25519"


class ECDSACurve(str, Enum):
    """Supported ECDSA curves."""

    P256 = "P-256"
    P384 = "P-384"
    P521 = "P-521"


# Allowed RSA modulus sizes
RSA_KEY_SIZES = (2048, 3072, 4096)


class CAStatus(str, Enum):
    """CA lifecycle states."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class Subject(BaseModel):
    """Certificate subject information."""

    common_name: str = Field(..., min_length=1)
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    state: Optional[str] = None
    locality: Optional[str] = None

    class Config:
        """Pydantic config."""

        json_schema_extra = {
            "example": {
                "common_name": "Example Issuing CA",
                "organization": "ACME Corp",
                "organizational_unit": "IT Security",
                "country": "DE",
                "state": "Hessen",
                "locality": "Frankfurt",
            }
        }


class CAConfig(BaseModel):
    """Persisted CA record.

    The private key only ever exists here in encrypted form.
    """

    id: str
    name: str
    subject: Subject
    subject_dn: str
    key_algorithm: KeyAlgorithm
    key_size: Optional[int] = None
    curve: Optional[ECDSACurve] = None
    encrypted_private_key: str
    certificate_pem: Optional[str] = None
    certificate_chain_pem: Optional[str] = None
    status: CAStatus = CAStatus.PENDING
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    crl_number: int = 0
    crl_distribution_point: Optional[str] = None
    ocsp_url: Optional[str] = None
    enforce_unique_common_name: bool = True
    ocsp_signer_certificate_pem: Optional[str] = None
    ocsp_signer_encrypted_key: Optional[str] = None
    # Every OCSP signer serial this CA has signed, current and replaced
    ocsp_signer_serials: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None

    def remaining_days(self, now: Optional[datetime] = None) -> int:
        """Whole days left in the CA's validity window (0 if unknown or past)."""
        if self.valid_to is None:
            return 0
        now = now or utcnow()
        return max((self.valid_to - now).days, 0)


class CAInitRequest(BaseModel):
    """Request model for initializing a subordinate CA."""

    name: str = Field(..., min_length=1)
    subject: Subject
    key_algorithm: KeyAlgorithm = KeyAlgorithm.ECDSA
    key_size: Optional[int] = None
    curve: Optional[ECDSACurve] = None
    crl_distribution_point: Optional[str] = None
    ocsp_url: Optional[str] = None
    enforce_unique_common_name: Optional[bool] = None

    class Config:
        """Pydantic config."""

        json_schema_extra = {
            "example": {
                "name": "issuing-ca",
                "subject": {"common_name": "Example Issuing CA", "organization": "ACME Corp"},
                "key_algorithm": "ECDSA",
                "curve": "P-384",
                "crl_distribution_point": "http://pki.example.com/crl/issuing-ca.crl",
                "ocsp_url": "http://pki.example.com/ocsp",
            }
        }


class CAActivateRequest(BaseModel):
    """Request model for activating a CA with its signed certificate."""

    certificate_pem: str
    certificate_chain_pem: Optional[str] = None


class CAResponse(BaseModel):
    """Response model for CA operations. Never exposes key material."""

    id: str
    name: str
    subject: Subject
    subject_dn: str
    key_algorithm: KeyAlgorithm
    key_size: Optional[int] = None
    curve: Optional[ECDSACurve] = None
    status: CAStatus
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    crl_number: int
    crl_distribution_point: Optional[str] = None
    ocsp_url: Optional[str] = None
    enforce_unique_common_name: bool
    has_certificate: bool
    has_certificate_chain: bool
    has_ocsp_signer: bool
    created_at: datetime

    @classmethod
    def from_config(cls, ca: CAConfig) -> "CAResponse":
        """Build a response from a persisted CA record."""
        return cls(
            id=ca.id,
            name=ca.name,
            subject=ca.subject,
            subject_dn=ca.subject_dn,
            key_algorithm=ca.key_algorithm,
            key_size=ca.key_size,
            curve=ca.curve,
            status=ca.status,
            valid_from=ca.valid_from,
            valid_to=ca.valid_to,
            crl_number=ca.crl_number,
            crl_distribution_point=ca.crl_distribution_point,
            ocsp_url=ca.ocsp_url,
            enforce_unique_common_name=ca.enforce_unique_common_name,
            has_certificate=bool(ca.certificate_pem),
            has_certificate_chain=bool(ca.certificate_chain_pem),
            has_ocsp_signer=bool(ca.ocsp_signer_certificate_pem),
            created_at=ca.created_at,
        )


class CADetailsResponse(CAResponse):
    """CA response enriched with parsed certificate and chain information."""

    certificate_info: ParseResult[dict]
    chain_info: ParseResult[list]
