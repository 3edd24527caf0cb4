"""CA API endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from subca.api.dependencies import get_ca_service, get_identity, require
from subca.models.auth import Capability, Identity
from subca.models.ca import CAActivateRequest, CADetailsResponse, CAInitRequest, CAResponse
from subca.services.ca_service import CAService

router = APIRouter(prefix="/api/ca", tags=["CA"])


@router.post("/init", response_model=CAResponse, status_code=201)
def init_ca(
    request: CAInitRequest,
    identity: Identity = Depends(get_identity),
    ca_service: CAService = Depends(get_ca_service),
):
    """
    Initialize a subordinate CA.

    Generates and encrypts the CA key. The CA stays PENDING until its signed
    certificate is installed through the activate endpoint.
    """
    return CAResponse.from_config(ca_service.init_ca(request, identity))


@router.get("", response_model=List[CAResponse])
def list_cas(
    identity: Identity = Depends(require(Capability.CA_READ)),
    ca_service: CAService = Depends(get_ca_service),
):
    """List all CAs."""
    return [CAResponse.from_config(ca) for ca in ca_service.list_cas()]


@router.post("/refresh-status", response_model=List[CAResponse])
def refresh_status(
    identity: Identity = Depends(get_identity),
    ca_service: CAService = Depends(get_ca_service),
):
    """Expire ACTIVE CAs whose certificate validity has ended."""
    return [CAResponse.from_config(ca) for ca in ca_service.refresh_status(identity)]


@router.get("/{ca_id}", response_model=CADetailsResponse)
def get_ca(
    ca_id: str,
    identity: Identity = Depends(require(Capability.CA_READ)),
    ca_service: CAService = Depends(get_ca_service),
):
    """Get CA details including the parsed certificate and chain."""
    return ca_service.get_ca_details(ca_id)


@router.get("/{ca_id}/csr", response_class=PlainTextResponse)
def get_csr(
    ca_id: str,
    identity: Identity = Depends(get_identity),
    ca_service: CAService = Depends(get_ca_service),
):
    """Generate a PEM CSR for the CA key, for signing by the parent CA."""
    return PlainTextResponse(ca_service.generate_csr(ca_id, identity), media_type="application/x-pem-file")


@router.post("/{ca_id}/activate", response_model=CAResponse)
def activate_ca(
    ca_id: str,
    request: CAActivateRequest,
    identity: Identity = Depends(get_identity),
    ca_service: CAService = Depends(get_ca_service),
):
    """Install the signed CA certificate and chain, making the CA ACTIVE."""
    ca = ca_service.activate(ca_id, request.certificate_pem, request.certificate_chain_pem, identity)
    return CAResponse.from_config(ca)


@router.post("/{ca_id}/ocsp-signer", response_model=CAResponse, status_code=201)
def create_ocsp_signer(
    ca_id: str,
    validity_days: Optional[int] = Query(default=None, ge=1),
    identity: Identity = Depends(get_identity),
    ca_service: CAService = Depends(get_ca_service),
):
    """Issue a delegated OCSP responder certificate for the CA."""
    return CAResponse.from_config(ca_service.create_ocsp_signer(ca_id, identity, validity_days))


@router.post("/{ca_id}/mark-revoked", response_model=CAResponse)
def mark_revoked(
    ca_id: str,
    reason: Optional[str] = Query(default=None),
    identity: Identity = Depends(get_identity),
    ca_service: CAService = Depends(get_ca_service),
):
    """Record that the parent CA revoked this CA."""
    return CAResponse.from_config(ca_service.mark_revoked(ca_id, identity, reason))


@router.delete("/{ca_id}", status_code=204)
def delete_ca(
    ca_id: str,
    identity: Identity = Depends(get_identity),
    ca_service: CAService = Depends(get_ca_service),
):
    """Delete a CA with all its certificates, revocations and CRLs. ADMIN only."""
    ca_service.delete_ca(ca_id, identity)
