"""CA lifecycle management service."""

import logging
from datetime import timedelta
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from subca.errors import (
    AlreadyRevokedError,
    CAUnavailableError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from subca.models.audit import AuditAction
from subca.models.auth import SYSTEM_IDENTITY, Capability, Identity
from subca.models.ca import (
    CADetailsResponse,
    CAConfig,
    CAInitRequest,
    CAResponse,
    CAStatus,
    ECDSACurve,
    KeyAlgorithm,
    utcnow,
)
from subca.models.certificate import CertificateType
from subca.models.config import AppConfig
from subca.models.validation import ParseResult
from subca.services.audit_service import AuditService
from subca.services.auth_service import require_capability
from subca.services.cert_service import authority_key_identifier
from subca.services.crypto_service import CryptoService, public_keys_match
from subca.services.parser_service import CertificateParser
from subca.services.serial_allocator import SerialAllocator, format_serial
from subca.services.validator_service import CertificateValidator
from subca.utils.validators import sanitize_name, validate_common_name, validate_country_code

logger = logging.getLogger("subca")


class CAService:
    """Service for subordinate CA lifecycle operations."""

    def __init__(
        self,
        store,
        crypto: CryptoService,
        audit: AuditService,
        validator: CertificateValidator,
        settings: Optional[AppConfig] = None,
        serials: Optional[SerialAllocator] = None,
    ):
        """
        Initialize CA service.

        Args:
            store: Entity store
            crypto: Key protection and signing
            audit: Audit recorder
            validator: Chain validator used on activation
            settings: Application configuration
            serials: Serial allocator for OCSP signer certificates
        """
        self.store = store
        self.crypto = crypto
        self.audit = audit
        self.validator = validator
        self.settings = settings or AppConfig()
        self.serials = serials or SerialAllocator(store, self.settings.issuance.serial_max_attempts)

    def init_ca(self, request: CAInitRequest, actor: Identity) -> CAConfig:
        """
        Create a PENDING CA with a freshly generated, encrypted key.

        Args:
            request: CA initialization request
            actor: Caller identity

        Returns:
            The stored CA record

        Raises:
            AuthorizationError: Caller lacks ca:manage
            ValidationError: Invalid name, subject or key parameters
            ConflictError: A CA with the same ID already exists
        """
        require_capability(actor.permissions, Capability.CA_MANAGE)
        ca_id = sanitize_name(request.name)
        if not ca_id:
            raise ValidationError("CA name must contain at least one letter or digit", field="name")
        validate_common_name(request.subject.common_name, self.settings.issuance.max_common_name_length)
        if request.subject.country:
            validate_country_code(request.subject.country)
        if self.store.get_ca(ca_id) is not None:
            raise ConflictError(f"CA already exists: {ca_id}")

        private_key = self.crypto.generate_private_key(request.key_algorithm, request.key_size, request.curve)
        encrypted_key = self.crypto.encrypt_private_key(private_key)
        del private_key

        subject_name = CertificateParser.build_name(**request.subject.model_dump())
        enforce_unique = request.enforce_unique_common_name
        if enforce_unique is None:
            enforce_unique = self.settings.issuance.enforce_unique_common_name

        ca = CAConfig(
            id=ca_id,
            name=request.name,
            subject=request.subject,
            subject_dn=subject_name.rfc4514_string(),
            key_algorithm=request.key_algorithm,
            key_size=(request.key_size or 2048) if request.key_algorithm == KeyAlgorithm.RSA else None,
            curve=(request.curve or ECDSACurve.P256) if request.key_algorithm == KeyAlgorithm.ECDSA else None,
            encrypted_private_key=encrypted_key,
            status=CAStatus.PENDING,
            crl_distribution_point=request.crl_distribution_point,
            ocsp_url=request.ocsp_url,
            enforce_unique_common_name=enforce_unique,
            created_by=actor.user_id,
        )

        with self.store.unit_of_work() as uow:
            uow.add(ca)
            self.audit.record(
                uow,
                AuditAction.CA_INITIALIZED,
                actor,
                f"Initialized CA {ca.name}",
                {"ca_id": ca.id, "subject": ca.subject_dn, "key_algorithm": ca.key_algorithm.value},
            )

        logger.info(f"Initialized CA '{ca.name}' ({ca.id}) with {ca.key_algorithm.value} key")
        return ca

    def generate_csr(self, ca_id: str, actor: Identity) -> str:
        """
        Build a PEM CSR for the CA key, to be signed by the parent CA.

        Raises:
            NotFoundError: Unknown CA
            CAUnavailableError: CA is revoked
        """
        require_capability(actor.permissions, Capability.CA_MANAGE)
        ca = self.get_ca(ca_id)
        if ca.status == CAStatus.REVOKED:
            raise CAUnavailableError(f"CA {ca_id} is REVOKED")

        builder = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(CertificateParser.build_name(**ca.subject.model_dump()))
            .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
        )
        with self.crypto.decrypted_key(ca.encrypted_private_key) as key:
            csr = self.crypto.sign(builder, key)

        logger.info(f"Generated CSR for CA {ca_id}")
        return csr.public_bytes(serialization.Encoding.PEM).decode("ascii")

    def activate(
        self,
        ca_id: str,
        certificate_pem: str,
        chain_pem: Optional[str],
        actor: Identity,
    ) -> CAConfig:
        """
        Install the signed CA certificate and make the CA ACTIVE.

        Args:
            ca_id: CA to activate
            certificate_pem: Certificate issued by the parent CA
            chain_pem: Parent chain up to and including the self-signed root
            actor: Caller identity

        Returns:
            The activated CA record

        Raises:
            NotFoundError: Unknown CA
            ConflictError: CA is not PENDING, or another CA is already ACTIVE
            ValidationError: Certificate does not match the CA or does not chain to a root
        """
        require_capability(actor.permissions, Capability.CA_MANAGE)
        ca = self.get_ca(ca_id)
        if ca.status != CAStatus.PENDING:
            raise ConflictError(f"CA {ca_id} is {ca.status.value}; only PENDING CAs can be activated")

        cert = CertificateParser.load_certificate(certificate_pem)
        ca_public_key = self.crypto.with_decrypted_key(ca.encrypted_private_key, lambda key: key.public_key())
        if not public_keys_match(cert.public_key(), ca_public_key):
            raise ValidationError("Certificate public key does not match the CA key", field="certificate_pem")
        if cert.subject != CertificateParser.build_name(**ca.subject.model_dump()):
            raise ValidationError(
                f"Certificate subject {cert.subject.rfc4514_string()} does not match {ca.subject_dn}",
                field="certificate_pem",
            )
        if not CertificateParser.is_ca(cert):
            raise ValidationError("Certificate is not a CA certificate", field="certificate_pem")

        result = self.validator.validate(
            certificate_pem, certificate_type=CertificateType.CA, ca_id=ca.id, chain_pem=chain_pem
        )
        if not result.valid:
            error = ValidationError(
                "Certificate chain does not validate: " + ", ".join(v.code.value for v in result.violations),
                field="certificate_chain_pem",
            )
            error.details["violations"] = [v.model_dump(mode="json") for v in result.violations]
            raise error

        active = self.store.get_active_ca()
        if active is not None:
            raise ConflictError(f"CA {active.id} is already ACTIVE")

        chain = [CertificateParser.to_pem(c) for c in CertificateParser.load_chain(chain_pem) if c != cert]
        with self.store.unit_of_work() as uow:
            current = uow.get_ca(ca_id)
            if current is None:
                raise NotFoundError(f"CA not found: {ca_id}")
            if current.status != CAStatus.PENDING:
                raise ConflictError(f"CA {ca_id} is {current.status.value}; only PENDING CAs can be activated")
            current.certificate_pem = CertificateParser.to_pem(cert)
            current.certificate_chain_pem = "".join(chain) or None
            current.valid_from = cert.not_valid_before_utc
            current.valid_to = cert.not_valid_after_utc
            current.status = CAStatus.ACTIVE
            uow.update(current)
            self.audit.record(
                uow,
                AuditAction.CA_ACTIVATED,
                actor,
                f"Activated CA {current.name}",
                {
                    "ca_id": ca_id,
                    "serial_number": format_serial(cert.serial_number),
                    "valid_to": current.valid_to.isoformat(),
                    "chain": result.chain,
                },
            )

        logger.info(f"Activated CA {ca_id} (valid until {current.valid_to.isoformat()})")
        return current

    # -- reads ---------------------------------------------------------------

    def get_ca(self, ca_id: str) -> CAConfig:
        """
        Get CA by ID.

        Raises:
            NotFoundError: If CA doesn't exist
        """
        ca = self.store.get_ca(ca_id)
        if ca is None:
            raise NotFoundError(f"CA not found: {ca_id}")
        return ca

    def list_cas(self) -> List[CAConfig]:
        return self.store.list_cas()

    def get_ca_details(self, ca_id: str) -> CADetailsResponse:
        """CA record plus parsed certificate and chain, each reported as parsed or failed."""
        ca = self.get_ca(ca_id)

        if not ca.certificate_pem:
            certificate_info = ParseResult[dict].failure("CA has no certificate yet")
        else:
            try:
                certificate_info = ParseResult[dict].success(CertificateParser.parse_certificate_pem(ca.certificate_pem))
            except ValidationError as e:
                logger.warning(f"Stored certificate of CA {ca_id} does not parse: {e}")
                certificate_info = ParseResult[dict].failure(e.message)

        try:
            chain = [CertificateParser.describe(c) for c in CertificateParser.load_chain(ca.certificate_chain_pem)]
            chain_info = ParseResult[list].success(chain)
        except ValidationError as e:
            logger.warning(f"Stored chain of CA {ca_id} does not parse: {e}")
            chain_info = ParseResult[list].failure(e.message)

        return CADetailsResponse(
            **CAResponse.from_config(ca).model_dump(),
            certificate_info=certificate_info,
            chain_info=chain_info,
        )

    # -- lifecycle -----------------------------------------------------------

    def delete_ca(self, ca_id: str, actor: Identity) -> None:
        """
        Delete a CA together with its certificates, revocations and CRLs.

        Raises:
            AuthorizationError: Caller lacks ca:delete (ADMIN only)
            NotFoundError: Unknown CA
        """
        require_capability(actor.permissions, Capability.CA_DELETE)
        with self.store.unit_of_work() as uow:
            ca = uow.get_ca(ca_id)
            if ca is None:
                raise NotFoundError(f"CA not found: {ca_id}")
            certificates = uow.list_certificates(ca_id=ca_id)
            revocations = uow.list_revocations(ca_id)
            crls = uow.list_crls(ca_id)
            for cert in certificates:
                uow.delete("certificates", cert.id)
            for revocation in revocations:
                uow.delete("revocations", revocation.id)
            for crl in crls:
                uow.delete("crls", crl.id)
            uow.delete("cas", ca_id)
            self.audit.record(
                uow,
                AuditAction.CA_DELETED,
                actor,
                f"Deleted CA {ca.name}",
                {
                    "ca_id": ca_id,
                    "certificates": len(certificates),
                    "revocations": len(revocations),
                    "crls": len(crls),
                },
            )

        logger.info(f"Deleted CA {ca_id} with {len(certificates)} certificates")

    def refresh_status(self, actor: Identity = SYSTEM_IDENTITY) -> List[CAConfig]:
        """
        Move ACTIVE CAs past their validity end to EXPIRED.

        Returns:
            The CAs that changed status
        """
        require_capability(actor.permissions, Capability.CA_MANAGE)
        expired = []
        now = utcnow()
        for ca in self.store.list_cas():
            if ca.status != CAStatus.ACTIVE or ca.valid_to is None or ca.valid_to > now:
                continue
            with self.store.unit_of_work() as uow:
                current = uow.get_ca(ca.id)
                if current is None or current.status != CAStatus.ACTIVE:
                    continue
                current.status = CAStatus.EXPIRED
                uow.update(current)
                self.audit.record(
                    uow,
                    AuditAction.CA_EXPIRED,
                    actor,
                    f"CA {current.name} expired",
                    {"ca_id": current.id, "valid_to": current.valid_to.isoformat()},
                )
            logger.warning(f"CA {ca.id} expired at {ca.valid_to.isoformat()}")
            expired.append(current)
        return expired

    def mark_revoked(self, ca_id: str, actor: Identity, reason: Optional[str] = None) -> CAConfig:
        """
        Record that the parent CA revoked this CA. Issuance stops immediately.

        Raises:
            NotFoundError: Unknown CA
            AlreadyRevokedError: CA is already REVOKED
        """
        require_capability(actor.permissions, Capability.CA_MANAGE)
        with self.store.unit_of_work() as uow:
            ca = uow.get_ca(ca_id)
            if ca is None:
                raise NotFoundError(f"CA not found: {ca_id}")
            if ca.status == CAStatus.REVOKED:
                raise AlreadyRevokedError(f"CA already revoked: {ca_id}")
            previous = ca.status
            ca.status = CAStatus.REVOKED
            uow.update(ca)
            self.audit.record(
                uow,
                AuditAction.CA_REVOKED,
                actor,
                f"CA {ca.name} marked revoked",
                {"ca_id": ca_id, "previous_status": previous.value, "reason": reason},
            )

        logger.warning(f"CA {ca_id} marked REVOKED (was {previous.value})")
        return ca

    def create_ocsp_signer(self, ca_id: str, actor: Identity, validity_days: Optional[int] = None) -> CAConfig:
        """
        Issue a delegated OCSP responder certificate for the CA.

        The certificate carries EKU OCSPSigning and id-pkix-ocsp-nocheck; its
        key is stored encrypted next to the CA key and replaces any previous
        signer.

        Raises:
            NotFoundError: Unknown CA
            CAUnavailableError: CA is not ACTIVE
            ValidationError: Validity outside the CA's remaining window
        """
        require_capability(actor.permissions, Capability.CA_MANAGE)
        ca = self.get_ca(ca_id)
        if ca.status != CAStatus.ACTIVE or not ca.certificate_pem:
            raise CAUnavailableError(f"CA {ca_id} is {ca.status.value}, not ACTIVE")

        validity_days = validity_days or self.settings.ocsp.signer_validity_days
        if validity_days <= 0:
            raise ValidationError("Validity days must be a positive integer", field="validity_days")
        now = utcnow().replace(microsecond=0)
        not_after = now + timedelta(days=validity_days)
        if ca.valid_to and not_after > ca.valid_to:
            not_after = ca.valid_to.replace(microsecond=0)

        ca_cert = CertificateParser.load_certificate(ca.certificate_pem)
        signer_key = self.crypto.generate_private_key(ca.key_algorithm, ca.key_size, ca.curve)
        public_key = signer_key.public_key()
        encrypted_key = self.crypto.encrypt_private_key(signer_key)
        del signer_key

        name_parts = [x509.NameAttribute(NameOID.COMMON_NAME, f"{ca.subject.common_name} OCSP Responder")]
        if ca.subject.organization:
            name_parts.insert(0, x509.NameAttribute(NameOID.ORGANIZATION_NAME, ca.subject.organization))

        serial = self.serials.next_serial(ca.id)
        try:
            builder = (
                x509.CertificateBuilder()
                .subject_name(x509.Name(name_parts))
                .issuer_name(ca_cert.subject)
                .public_key(public_key)
                .serial_number(serial)
                .not_valid_before(now)
                .not_valid_after(not_after)
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=False,
                        crl_sign=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.OCSP_SIGNING]), critical=False)
                .add_extension(x509.OCSPNoCheck(), critical=False)
                .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
                .add_extension(authority_key_identifier(ca_cert), critical=False)
            )
            with self.crypto.decrypted_key(ca.encrypted_private_key) as ca_key:
                signer_cert = self.crypto.sign(builder, ca_key)

            with self.store.unit_of_work() as uow:
                current = uow.get_ca(ca_id)
                if current is None or current.status != CAStatus.ACTIVE:
                    raise CAUnavailableError(f"CA {ca_id} is no longer ACTIVE")
                current.ocsp_signer_certificate_pem = CertificateParser.to_pem(signer_cert)
                current.ocsp_signer_encrypted_key = encrypted_key
                current.ocsp_signer_serials.append(format_serial(serial))
                uow.update(current)
                self.audit.record(
                    uow,
                    AuditAction.OCSP_SIGNER_CREATED,
                    actor,
                    f"Created OCSP signer for CA {current.name}",
                    {
                        "ca_id": ca_id,
                        "serial_number": format_serial(serial),
                        "valid_to": signer_cert.not_valid_after_utc.isoformat(),
                    },
                )
        finally:
            self.serials.release(ca.id, serial)

        logger.info(f"Created OCSP signer for CA {ca_id} (serial {format_serial(serial)})")
        return current
