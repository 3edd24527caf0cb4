"""RFC 6960 OCSP responder."""

import logging
from datetime import datetime, timedelta
from typing import Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509 import ocsp

from subca.errors import CAUnavailableError, CryptoError, IntegrityError, NotFoundError, PKIError, ValidationError
from subca.models.ca import CAConfig, CAStatus, utcnow
from subca.models.certificate import CertificateStatus
from subca.models.config import OCSPSettings
from subca.models.crl import RevocationReason
from subca.models.ocsp import OCSPResult, OCSPStatus
from subca.services.crypto_service import CryptoService
from subca.services.parser_service import CertificateParser
from subca.services.serial_allocator import format_serial

logger = logging.getLogger("subca")

# RFC 8954 2.1
MAX_NONCE_LENGTH = 32

_CERT_STATUS = {
    OCSPStatus.GOOD: ocsp.OCSPCertStatus.GOOD,
    OCSPStatus.REVOKED: ocsp.OCSPCertStatus.REVOKED,
    OCSPStatus.UNKNOWN: ocsp.OCSPCertStatus.UNKNOWN,
}


def public_key_bits(public_key) -> bytes:
    """Contents of the subjectPublicKey BIT STRING, as hashed into an OCSP CertID."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return public_key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.PKCS1)
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return public_key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return public_key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
    raise CryptoError(f"Unsupported issuer key type: {type(public_key).__name__}")


def issuer_hashes(ca_cert: x509.Certificate, algorithm: hashes.HashAlgorithm) -> tuple[bytes, bytes]:
    """(issuerNameHash, issuerKeyHash) for a CA certificate."""
    name_hash = hashes.Hash(algorithm)
    name_hash.update(ca_cert.subject.public_bytes())
    key_hash = hashes.Hash(algorithm)
    key_hash.update(public_key_bits(ca_cert.public_key()))
    return name_hash.finalize(), key_hash.finalize()


def normalize_serial(serial_number: Union[int, str]) -> str:
    """Accept an int or a hex string (optionally colon-separated) and return canonical hex."""
    if isinstance(serial_number, int) and not isinstance(serial_number, bool):
        value = serial_number
    else:
        try:
            value = int(str(serial_number).replace(":", "").strip(), 16)
        except ValueError:
            raise ValidationError(f"Invalid serial number: {serial_number!r}", field="serial_number") from None
    if value <= 0:
        raise ValidationError(f"Invalid serial number: {serial_number!r}", field="serial_number")
    return format_serial(value)


class OCSPResponder:
    """Answers certificate status queries from committed store state."""

    def __init__(self, store, crypto: CryptoService, settings: Optional[OCSPSettings] = None):
        """
        Initialize OCSP responder.

        Args:
            store: Entity store (read only)
            crypto: Key protection and signing
            settings: OCSP settings
        """
        self.store = store
        self.crypto = crypto
        self.settings = settings or OCSPSettings()

    def respond(
        self,
        serial_number: Union[int, str],
        nonce: Optional[bytes] = None,
        ca_id: Optional[str] = None,
    ) -> OCSPResult:
        """
        Look up a serial and produce a signed status response.

        Args:
            serial_number: Serial as int or hex string
            nonce: Client nonce to echo
            ca_id: Issuing CA (defaults to the ACTIVE CA)

        Returns:
            Status decision plus the DER OCSPResponse

        Raises:
            NotFoundError: Unknown ca_id
            CAUnavailableError: No CA with a certificate to answer for
            CryptoError: Signing failed
        """
        ca = self._resolve_ca(ca_id)
        return self._respond(ca, normalize_serial(serial_number), nonce, hashes.SHA1())

    def handle_request(self, der: bytes) -> bytes:
        """
        Answer a DER-encoded OCSPRequest.

        Protocol failures are reported as unsuccessful OCSP responses rather
        than exceptions.

        Args:
            der: DER OCSPRequest

        Returns:
            DER OCSPResponse
        """
        try:
            request = ocsp.load_der_ocsp_request(der)
        except ValueError as e:
            logger.warning(f"Malformed OCSP request: {e}")
            return self._unsuccessful(ocsp.OCSPResponseStatus.MALFORMED_REQUEST)

        nonce = None
        try:
            nonce = request.extensions.get_extension_for_class(x509.OCSPNonce).value.nonce
        except x509.ExtensionNotFound:
            pass
        if nonce is not None and not 0 < len(nonce) <= MAX_NONCE_LENGTH:
            logger.warning(f"OCSP nonce of {len(nonce)} bytes rejected")
            return self._unsuccessful(ocsp.OCSPResponseStatus.MALFORMED_REQUEST)

        ca = self._match_issuer(request)
        if ca is None:
            logger.info("OCSP request for a foreign issuer")
            return self._unsuccessful(ocsp.OCSPResponseStatus.UNAUTHORIZED)

        try:
            result = self._respond(ca, format_serial(request.serial_number), nonce, request.hash_algorithm)
        except PKIError as e:
            logger.error(f"OCSP response generation failed: {e}")
            return self._unsuccessful(ocsp.OCSPResponseStatus.INTERNAL_ERROR)
        return result.der

    # -- internals -----------------------------------------------------------

    def _resolve_ca(self, ca_id: Optional[str]) -> CAConfig:
        if ca_id:
            ca = self.store.get_ca(ca_id)
            if ca is None:
                raise NotFoundError(f"CA not found: {ca_id}")
        else:
            ca = self.store.get_active_ca()
            if ca is None:
                raise CAUnavailableError("No ACTIVE CA to answer OCSP requests")
        if not ca.certificate_pem or ca.status == CAStatus.PENDING:
            raise CAUnavailableError(f"CA {ca.id} has no certificate yet")
        return ca

    def _match_issuer(self, request: ocsp.OCSPRequest) -> Optional[CAConfig]:
        for ca in self.store.list_cas():
            if not ca.certificate_pem or ca.status == CAStatus.PENDING:
                continue
            ca_cert = CertificateParser.load_certificate(ca.certificate_pem)
            name_hash, key_hash = issuer_hashes(ca_cert, request.hash_algorithm)
            if name_hash == request.issuer_name_hash and key_hash == request.issuer_key_hash:
                return ca
        return None

    def _respond(self, ca: CAConfig, serial: str, nonce: Optional[bytes], algorithm) -> OCSPResult:
        ca_cert = CertificateParser.load_certificate(ca.certificate_pem)
        now = utcnow().replace(microsecond=0)
        next_update = now + timedelta(seconds=self.settings.response_validity_seconds)

        status = OCSPStatus.UNKNOWN
        revocation_time: Optional[datetime] = None
        reason: Optional[RevocationReason] = None

        cert = self.store.get_certificate_by_serial(ca.id, serial)
        if cert is not None:
            revocation = self.store.get_revocation(cert.id)
            if revocation is not None:
                status = OCSPStatus.REVOKED
                revocation_time = revocation.revoked_at
                reason = revocation.reason
            elif cert.status == CertificateStatus.REVOKED:
                raise IntegrityError(f"Certificate {cert.id} is REVOKED but has no revocation record")
            else:
                status = OCSPStatus.GOOD

        name_hash, key_hash = issuer_hashes(ca_cert, algorithm)
        builder = ocsp.OCSPResponseBuilder().add_response_by_hash(
            issuer_name_hash=name_hash,
            issuer_key_hash=key_hash,
            serial_number=int(serial, 16),
            algorithm=algorithm,
            cert_status=_CERT_STATUS[status],
            this_update=now,
            next_update=next_update,
            revocation_time=revocation_time.replace(microsecond=0) if revocation_time else None,
            revocation_reason=reason.flag if reason and reason != RevocationReason.UNSPECIFIED else None,
        )
        if nonce is not None:
            builder = builder.add_extension(x509.OCSPNonce(nonce), critical=False)

        signer_cert = self._delegated_signer(ca, now)
        if signer_cert is not None:
            builder = builder.responder_id(ocsp.OCSPResponderEncoding.HASH, signer_cert).certificates([signer_cert])
            encrypted_key = ca.ocsp_signer_encrypted_key
        else:
            builder = builder.responder_id(ocsp.OCSPResponderEncoding.HASH, ca_cert)
            encrypted_key = ca.encrypted_private_key

        with self.crypto.decrypted_key(encrypted_key) as key:
            response = self.crypto.sign(builder, key)

        logger.debug(f"OCSP {status.value} for serial {serial} (CA {ca.id})")
        return OCSPResult(
            status=status,
            serial_number=serial,
            ca_id=ca.id,
            revocation_time=revocation_time,
            revocation_reason=reason,
            this_update=now,
            next_update=next_update,
            nonce=nonce,
            der=response.public_bytes(serialization.Encoding.DER),
        )

    @staticmethod
    def _delegated_signer(ca: CAConfig, now: datetime) -> Optional[x509.Certificate]:
        """The CA's delegated OCSP signer certificate, if configured and currently valid."""
        if not ca.ocsp_signer_certificate_pem or not ca.ocsp_signer_encrypted_key:
            return None
        signer = CertificateParser.load_certificate(ca.ocsp_signer_certificate_pem)
        if not signer.not_valid_before_utc <= now < signer.not_valid_after_utc:
            logger.warning(f"Delegated OCSP signer for CA {ca.id} is outside its validity; using CA key")
            return None
        return signer

    @staticmethod
    def _unsuccessful(status: ocsp.OCSPResponseStatus) -> bytes:
        return ocsp.OCSPResponseBuilder.build_unsuccessful(status).public_bytes(serialization.Encoding.DER)
