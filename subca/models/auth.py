"""Identity and permission models."""

from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Caller roles, in descending order of privilege."""

    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    VIEWER = "VIEWER"


class Capability(str, Enum):
    """Operation-level permissions."""

    CERTIFICATE_READ = "certificate:read"
    CERTIFICATE_ISSUE = "certificate:issue"
    CERTIFICATE_RENEW = "certificate:renew"
    CERTIFICATE_REVOKE = "certificate:revoke"
    CA_READ = "ca:read"
    CA_MANAGE = "ca:manage"
    CA_DELETE = "ca:delete"
    CRL_READ = "crl:read"
    CRL_MANAGE = "crl:manage"
    AUDIT_READ = "audit:read"


_VIEWER = frozenset(
    {
        Capability.CERTIFICATE_READ,
        Capability.CA_READ,
        Capability.CRL_READ,
        Capability.AUDIT_READ,
    }
)
_OPERATOR = _VIEWER | {
    Capability.CERTIFICATE_ISSUE,
    Capability.CERTIFICATE_RENEW,
    Capability.CERTIFICATE_REVOKE,
    Capability.CRL_MANAGE,
}
_ADMIN = _OPERATOR | {Capability.CA_MANAGE, Capability.CA_DELETE}

ROLE_CAPABILITIES = {
    Role.VIEWER: _VIEWER,
    Role.OPERATOR: _OPERATOR,
    Role.ADMIN: _ADMIN,
}


class Identity(BaseModel):
    """Authenticated caller."""

    user_id: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    role: Role = Role.VIEWER

    @property
    def permissions(self) -> frozenset:
        """Capabilities granted by the caller's role."""
        return ROLE_CAPABILITIES[self.role]


# Identity used for maintenance actions the engine performs on its own
SYSTEM_IDENTITY = Identity(user_id="system", username="system", role=Role.ADMIN)
