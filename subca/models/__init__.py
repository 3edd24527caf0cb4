"""Data models for SubCA."""

from .audit import AuditAction, AuditLog
from .auth import Capability, Identity, Role
from .ca import CAConfig, CAStatus, ECDSACurve, KeyAlgorithm, Subject
from .certificate import Certificate, CertificateStatus, CertificateType, IssueCertificateRequest
from .config import AppConfig
from .crl import CertificateRevocation, CRLRecord, RevocationReason
from .ocsp import OCSPResult, OCSPStatus
from .validation import ParseResult, ValidationResult, ViolationCode

__all__ = [
    "AuditAction",
    "AuditLog",
    "Capability",
    "Identity",
    "Role",
    "KeyAlgorithm",
    "ECDSACurve",
    "Subject",
    "CAConfig",
    "CAStatus",
    "Certificate",
    "CertificateStatus",
    "CertificateType",
    "IssueCertificateRequest",
    "AppConfig",
    "CertificateRevocation",
    "CRLRecord",
    "RevocationReason",
    "OCSPResult",
    "OCSPStatus",
    "ParseResult",
    "ValidationResult",
    "ViolationCode",
]
