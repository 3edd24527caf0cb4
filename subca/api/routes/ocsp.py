"""OCSP endpoints (RFC 6960 over HTTP, appendix A)."""

import base64
import binascii
import logging
from typing import Optional
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Query, Request, Response

from subca.api.dependencies import get_ocsp_responder, require
from subca.models.auth import Capability, Identity
from subca.models.ocsp import OCSPStatusResponse
from subca.services.ocsp_service import OCSPResponder

logger = logging.getLogger("subca")

OCSP_RESPONSE_TYPE = "application/ocsp-response"

router = APIRouter(tags=["OCSP"])


@router.post("/ocsp")
async def ocsp_post(request: Request, responder: OCSPResponder = Depends(get_ocsp_responder)):
    """Answer a DER OCSPRequest sent as the request body."""
    der = await request.body()
    return Response(content=responder.handle_request(der), media_type=OCSP_RESPONSE_TYPE)


@router.get("/ocsp/{encoded:path}")
def ocsp_get(encoded: str, responder: OCSPResponder = Depends(get_ocsp_responder)):
    """Answer a base64, URL-encoded DER OCSPRequest carried in the path."""
    try:
        der = base64.b64decode(unquote(encoded), validate=True)
    except (binascii.Error, ValueError):
        logger.warning("OCSP GET request with invalid base64")
        der = b""
    return Response(content=responder.handle_request(der), media_type=OCSP_RESPONSE_TYPE)


@router.get("/api/ocsp/{serial_number}", response_model=OCSPStatusResponse)
def ocsp_status(
    serial_number: str,
    ca_id: Optional[str] = Query(default=None),
    identity: Identity = Depends(require(Capability.CERTIFICATE_READ)),
    responder: OCSPResponder = Depends(get_ocsp_responder),
):
    """JSON view of the responder's decision for a serial."""
    return OCSPStatusResponse.from_result(responder.respond(serial_number, ca_id=ca_id))
