"""Certificate API endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from subca.api.dependencies import (
    get_cert_issuer,
    get_identity,
    get_revocation_manager,
    get_validator,
    require,
)
from subca.models.auth import Capability, Identity
from subca.models.certificate import (
    CertificateResponse,
    CertificateStatus,
    IssueCertificateRequest,
    IssueResponse,
    RenewCertificateRequest,
    ValidateCertificateRequest,
)
from subca.models.crl import RevocationResponse, RevokeRequest
from subca.models.validation import ValidationResult
from subca.services.cert_service import CertificateIssuer
from subca.services.crl_service import RevocationManager
from subca.services.validator_service import CertificateValidator

router = APIRouter(prefix="/api/certificates", tags=["Certificates"])


@router.post("/issue", response_model=IssueResponse, status_code=201)
def issue_certificate(
    request: IssueCertificateRequest,
    identity: Identity = Depends(get_identity),
    issuer: CertificateIssuer = Depends(get_cert_issuer),
):
    """
    Issue a certificate from the ACTIVE CA (or the CA named by ``ca_id``).

    The response carries the generated private key only when the server
    generated it; supply ``csr_pem`` to keep the key on the client.
    """
    return IssueResponse.from_issued(issuer.issue(request, identity))


@router.post("/revoke", response_model=RevocationResponse)
def revoke_certificate(
    request: RevokeRequest,
    identity: Identity = Depends(get_identity),
    manager: RevocationManager = Depends(get_revocation_manager),
):
    """
    Revoke a certificate.

    Returns 404 for an unknown certificate and 400 for an invalid reason or a
    certificate that is already revoked.
    """
    return RevocationResponse(revocation=manager.revoke(request.certificate_id, request.reason, identity))


@router.post("/validate", response_model=ValidationResult)
def validate_certificate(
    request: ValidateCertificateRequest,
    identity: Identity = Depends(require(Capability.CERTIFICATE_READ)),
    validator: CertificateValidator = Depends(get_validator),
):
    """Validate a certificate against the stored CA chains and report every violation."""
    return validator.validate(
        request.certificate_pem,
        certificate_type=request.certificate_type,
        check_revocation=request.check_revocation,
        ca_id=request.ca_id,
    )


@router.post("/{cert_id}/renew", response_model=IssueResponse, status_code=201)
def renew_certificate(
    cert_id: str,
    request: Optional[RenewCertificateRequest] = Body(default=None),
    identity: Identity = Depends(get_identity),
    issuer: CertificateIssuer = Depends(get_cert_issuer),
):
    """Renew a certificate, superseding the old one."""
    request = request or RenewCertificateRequest()
    issued = issuer.renew(
        cert_id,
        identity,
        validity_days=request.validity_days,
        rekey=request.rekey,
        key_password=request.key_password,
    )
    return IssueResponse.from_issued(issued)


@router.get("", response_model=List[CertificateResponse])
def list_certificates(
    ca_id: Optional[str] = Query(default=None),
    status: Optional[CertificateStatus] = Query(default=None),
    identity: Identity = Depends(require(Capability.CERTIFICATE_READ)),
    issuer: CertificateIssuer = Depends(get_cert_issuer),
):
    """List certificates, newest first."""
    return [CertificateResponse.from_certificate(c) for c in issuer.list_certificates(ca_id=ca_id, status=status)]


@router.get("/{cert_id}", response_model=CertificateResponse)
def get_certificate(
    cert_id: str,
    identity: Identity = Depends(require(Capability.CERTIFICATE_READ)),
    issuer: CertificateIssuer = Depends(get_cert_issuer),
):
    """Get certificate details by ID."""
    return CertificateResponse.from_certificate(issuer.get_certificate(cert_id))
