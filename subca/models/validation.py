"""Certificate validation models."""

from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ViolationCode(str, Enum):
    """Reasons a certificate fails validation."""

    PARSE_ERROR = "PARSE_ERROR"
    ISSUER_NOT_FOUND = "ISSUER_NOT_FOUND"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    CHAIN_INCOMPLETE = "CHAIN_INCOMPLETE"
    NOT_YET_VALID = "NOT_YET_VALID"
    EXPIRED = "EXPIRED"
    NOT_A_CA = "NOT_A_CA"
    PATH_LENGTH_EXCEEDED = "PATH_LENGTH_EXCEEDED"
    KEY_USAGE_MISMATCH = "KEY_USAGE_MISMATCH"
    EXTENDED_KEY_USAGE_MISMATCH = "EXTENDED_KEY_USAGE_MISMATCH"
    REVOKED = "REVOKED"
    UNKNOWN_CERTIFICATE = "UNKNOWN_CERTIFICATE"


class Violation(BaseModel):
    """A single validation failure."""

    code: ViolationCode
    message: str
    subject: Optional[str] = None


class ValidationResult(BaseModel):
    """All violations found for a certificate and its chain."""

    valid: bool
    subject: Optional[str] = None
    serial_number: Optional[str] = None
    chain: List[str] = []
    violations: List[Violation] = []

    def has(self, code: ViolationCode) -> bool:
        """Whether a violation with the given code was reported."""
        return any(v.code == code for v in self.violations)


class ParseResult(BaseModel, Generic[T]):
    """Outcome of a best-effort parse: either a value or an error message."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any) -> "ParseResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "ParseResult":
        return cls(ok=False, error=error)
