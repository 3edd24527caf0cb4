"""CRL API endpoints."""

from typing import List, Literal

from fastapi import APIRouter, Depends, Query

from subca.api.dependencies import get_identity, get_revocation_manager, require
from subca.errors import CAUnavailableError
from subca.models.auth import Capability, Identity
from subca.models.crl import CertificateRevocation, CRLGenerateRequest, CRLResponse
from subca.services.crl_service import RevocationManager

router = APIRouter(prefix="/api/crl", tags=["CRL"])


@router.post("/generate", response_model=CRLResponse, status_code=201)
def generate_crl(
    request: CRLGenerateRequest,
    identity: Identity = Depends(get_identity),
    manager: RevocationManager = Depends(get_revocation_manager),
):
    """
    Generate a full or delta CRL.

    Without ``ca_id`` the ACTIVE CA is used. A delta CRL needs an existing
    full CRL as its base.
    """
    ca_id = request.ca_id
    if not ca_id:
        active = manager.store.get_active_ca()
        if active is None:
            raise CAUnavailableError("No ACTIVE CA")
        ca_id = active.id

    if request.type == "delta":
        record = manager.generate_delta_crl(ca_id, identity)
    else:
        record = manager.generate_crl(ca_id, identity)
    return CRLResponse.from_record(record)


@router.get("/{ca_id}", response_model=CRLResponse)
def get_latest_crl(
    ca_id: str,
    type: Literal["full", "delta"] = Query(default="full"),
    identity: Identity = Depends(require(Capability.CRL_READ)),
    manager: RevocationManager = Depends(get_revocation_manager),
):
    """Get the latest full or delta CRL of a CA."""
    return CRLResponse.from_record(manager.get_latest_crl(ca_id, delta=type == "delta"))


@router.get("/{ca_id}/history", response_model=List[CRLResponse])
def list_crls(
    ca_id: str,
    identity: Identity = Depends(require(Capability.CRL_READ)),
    manager: RevocationManager = Depends(get_revocation_manager),
):
    """List every CRL generated for a CA, by number."""
    return [CRLResponse.from_record(record) for record in manager.list_crls(ca_id)]


@router.get("/{ca_id}/revocations", response_model=List[CertificateRevocation])
def list_revocations(
    ca_id: str,
    identity: Identity = Depends(require(Capability.CRL_READ)),
    manager: RevocationManager = Depends(get_revocation_manager),
):
    """List all revocations recorded for a CA."""
    return manager.list_revocations(ca_id)
