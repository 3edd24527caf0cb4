"""Error taxonomy for the PKI core.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer maps it to. Input, authorization and existence errors are raised before
any write; signing and persistence errors abort the whole unit of work.
"""

from typing import Any, Dict, Optional


class PKIError(Exception):
    """Base class for all PKI core errors."""

    code = "PKI_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the API error envelope."""
        body: Dict[str, Any] = {"success": False, "code": self.code, "error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(PKIError):
    """Bad input. Carries the offending field when known."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class InvalidReasonError(ValidationError):
    """Revocation reason is not one of the enumerated codes."""

    code = "INVALID_REASON"

    def __init__(self, reason: Any):
        super().__init__(f"Invalid reason: {reason!r}", field="reason")
        self.reason = reason


class AlreadyRevokedError(PKIError):
    """Certificate is already in the terminal REVOKED state."""

    code = "ALREADY_REVOKED"
    http_status = 400


class AuthenticationError(PKIError):
    """No caller identity could be resolved."""

    code = "AUTHENTICATION_REQUIRED"
    http_status = 401


class AuthorizationError(PKIError):
    """Caller lacks the capability required by the operation."""

    code = "AUTHORIZATION_ERROR"
    http_status = 403


class NotFoundError(PKIError):
    """Unknown certificate, CA or CRL."""

    code = "NOT_FOUND"
    http_status = 404


class ConflictError(PKIError):
    """Uniqueness or state conflict (duplicate common name, second ACTIVE CA)."""

    code = "CONFLICT"
    http_status = 409


class CAUnavailableError(PKIError):
    """Issuing CA is not ACTIVE."""

    code = "CA_UNAVAILABLE"
    http_status = 409


class NoBaseCRLError(PKIError):
    """Delta CRL requested before any full CRL exists."""

    code = "NO_BASE_CRL"
    http_status = 409


class SerialCollisionError(PKIError):
    """Serial number already taken. Retried internally before surfacing."""

    code = "SERIAL_COLLISION"
    http_status = 500


class CryptoError(PKIError):
    """Key generation, decryption or signing failure."""

    code = "CRYPTO_ERROR"
    http_status = 500


class PersistenceError(PKIError):
    """Transaction could not be committed; nothing was written."""

    code = "PERSISTENCE_ERROR"
    http_status = 500


class IntegrityError(PKIError):
    """Stored records contradict each other."""

    code = "INTEGRITY_ERROR"
    http_status = 500
