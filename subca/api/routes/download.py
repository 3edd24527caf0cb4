"""Download API endpoints."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from subca.api.dependencies import get_ca_service, get_cert_issuer, get_revocation_manager, require
from subca.errors import NotFoundError, ValidationError
from subca.models.auth import Capability, Identity
from subca.models.certificate import ExportFormat
from subca.services.ca_service import CAService
from subca.services.cert_service import CertificateIssuer, ca_chain_pem
from subca.services.crl_service import RevocationManager
from subca.services.parser_service import CertificateParser
from subca.utils.validators import sanitize_name

router = APIRouter(prefix="/download", tags=["Downloads"])


def _attachment(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/ca/{ca_id}/cert")
def download_ca_cert(
    ca_id: str,
    format: ExportFormat = Query(default=ExportFormat.PEM),
    ca_service: CAService = Depends(get_ca_service),
):
    """Download the CA certificate (PEM or DER)."""
    ca = ca_service.get_ca(ca_id)
    if not ca.certificate_pem:
        raise NotFoundError(f"CA {ca_id} has no certificate yet")
    base = sanitize_name(ca.name)
    if format == ExportFormat.DER:
        cert = CertificateParser.load_certificate(ca.certificate_pem)
        return _attachment(CertificateParser.to_der(cert), "application/pkix-cert", f"{base}.der")
    if format == ExportFormat.PEM:
        return _attachment(ca.certificate_pem.encode("ascii"), "application/x-pem-file", f"{base}.crt")
    raise ValidationError("CA certificates are available as pem or der", field="format")


@router.get("/ca/{ca_id}/chain")
def download_ca_chain(ca_id: str, ca_service: CAService = Depends(get_ca_service)):
    """Download the CA certificate followed by its chain (PEM)."""
    ca = ca_service.get_ca(ca_id)
    if not ca.certificate_pem:
        raise NotFoundError(f"CA {ca_id} has no certificate yet")
    return _attachment(ca_chain_pem(ca).encode("ascii"), "application/x-pem-file", f"{sanitize_name(ca.name)}-chain.pem")


@router.get("/cert/{cert_id}")
def download_cert(
    cert_id: str,
    format: ExportFormat = Query(default=ExportFormat.PEM),
    identity: Identity = Depends(require(Capability.CERTIFICATE_READ)),
    issuer: CertificateIssuer = Depends(get_cert_issuer),
):
    """Download an issued certificate as PEM, DER or PKCS#12 (with CA chain, no key)."""
    return _attachment(*issuer.export_certificate(cert_id, format))


@router.get("/crl/{ca_id}")
def download_crl(
    ca_id: str,
    format: ExportFormat = Query(default=ExportFormat.DER),
    delta: bool = Query(default=False),
    manager: RevocationManager = Depends(get_revocation_manager),
):
    """Download the latest CRL. DER by default, as served from a CRL distribution point."""
    if format == ExportFormat.PKCS12:
        raise ValidationError("CRLs are available as pem or der", field="format")
    return _attachment(*manager.export_crl(ca_id, format, delta=delta))
