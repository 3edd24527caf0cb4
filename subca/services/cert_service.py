"""Certificate issuance, renewal and export."""

import ipaddress
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtendedKeyUsageOID

from subca.errors import (
    AlreadyRevokedError,
    CAUnavailableError,
    ConflictError,
    NotFoundError,
    SerialCollisionError,
    ValidationError,
)
from subca.models.audit import AuditAction
from subca.models.auth import Capability, Identity
from subca.models.ca import CAConfig, CAStatus, KeyAlgorithm, utcnow
from subca.models.certificate import (
    Certificate,
    CertificateStatus,
    CertificateType,
    ExportFormat,
    IssueCertificateRequest,
    IssuedCertificate,
    IssueParameters,
)
from subca.models.config import IssuanceSettings
from subca.models.notification import NotificationEvent
from subca.services.audit_service import AuditService
from subca.services.auth_service import require_capability
from subca.services.crypto_service import (
    CryptoService,
    certificate_fingerprint,
    describe_public_key,
    public_key_pem,
)
from subca.services.parser_service import CertificateParser
from subca.services.serial_allocator import SerialAllocator, format_serial
from subca.utils.validators import is_ip_address, sanitize_name, validate_issue_request

logger = logging.getLogger("subca")

EXTENDED_KEY_USAGES = {
    CertificateType.SERVER: [ExtendedKeyUsageOID.SERVER_AUTH],
    CertificateType.CLIENT: [ExtendedKeyUsageOID.CLIENT_AUTH],
    CertificateType.CA: [],
}


def authority_key_identifier(ca_cert: x509.Certificate) -> x509.AuthorityKeyIdentifier:
    """AKI for objects signed by ``ca_cert``, taken from its SKI when present."""
    try:
        ski = ca_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
        return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski)
    except x509.ExtensionNotFound:
        return x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_cert.public_key())


def key_usage_for(certificate_type: CertificateType, algorithm: KeyAlgorithm) -> x509.KeyUsage:
    """keyUsage bits for a certificate profile."""
    is_ca = certificate_type == CertificateType.CA
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=not is_ca and algorithm == KeyAlgorithm.RSA,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=is_ca,
        crl_sign=is_ca,
        encipher_only=False,
        decipher_only=False,
    )


def general_names(sans: List[str]) -> List[x509.GeneralName]:
    """SAN strings to DNSName/IPAddress entries, preserving order."""
    names: List[x509.GeneralName] = []
    for san in sans:
        if is_ip_address(san):
            names.append(x509.IPAddress(ipaddress.ip_address(san)))
        else:
            names.append(x509.DNSName(san))
    return names


def ca_chain_pem(ca: CAConfig) -> str:
    """The CA certificate followed by its own chain."""
    parts = [ca.certificate_pem or "", ca.certificate_chain_pem or ""]
    return "\n".join(p.strip() for p in parts if p and p.strip()) + "\n"


class CertificateIssuer:
    """Issues and renews end-entity and subordinate CA certificates."""

    def __init__(
        self,
        store,
        crypto: CryptoService,
        serials: SerialAllocator,
        audit: AuditService,
        notifier=None,
        settings: Optional[IssuanceSettings] = None,
    ):
        """
        Initialize certificate issuer.

        Args:
            store: Entity store
            crypto: Key protection and signing
            serials: Serial number allocator
            audit: Audit recorder
            notifier: Optional NotificationService for post-commit events
            settings: Issuance settings
        """
        self.store = store
        self.crypto = crypto
        self.serials = serials
        self.audit = audit
        self.notifier = notifier
        self.settings = settings or IssuanceSettings()

    # -- issuance ------------------------------------------------------------

    def issue(self, request: IssueCertificateRequest, actor: Identity) -> IssuedCertificate:
        """
        Issue a certificate from the ACTIVE CA.

        Args:
            request: Issuance request
            actor: Caller identity

        Returns:
            The persisted certificate with its PEM, chain and (when generated)
            private key

        Raises:
            AuthorizationError: Caller lacks certificate:issue
            ValidationError: First invalid input found
            NotFoundError: Unknown ca_id
            CAUnavailableError: CA not ACTIVE or outside its validity window
            ConflictError: Common name already in use under uniqueness policy
            CryptoError: Key decryption or signing failed
            PersistenceError: Commit failed
        """
        require_capability(actor.permissions, Capability.CERTIFICATE_ISSUE)
        params = validate_issue_request(
            request, self.settings.max_common_name_length, self.settings.default_validity_days
        )
        csr = CertificateParser.load_csr(params.csr_pem) if params.csr_pem else None

        ca = self._resolve_ca(request.ca_id)
        ca_cert = CertificateParser.load_certificate(ca.certificate_pem)
        now = utcnow().replace(microsecond=0)
        not_after = self._check_validity_window(ca, params.validity_days, now)

        if params.certificate_type == CertificateType.CA and CertificateParser.path_length(ca_cert) == 0:
            raise ValidationError("Issuing CA has path length 0 and cannot issue CA certificates", field="certificate_type")

        if ca.enforce_unique_common_name:
            existing = self.store.find_active_by_common_name(ca.id, params.common_name)
            if existing:
                raise ConflictError(f"An active certificate for '{params.common_name}' already exists: {existing[0].id}")

        private_key = None
        if csr is not None:
            public_key = csr.public_key()
        else:
            private_key = self.crypto.generate_private_key(params.key_algorithm, params.key_size, params.curve)
            public_key = private_key.public_key()

        subject = CertificateParser.build_name(
            params.common_name,
            params.organization,
            params.organizational_unit,
            params.country,
            params.state,
            params.locality,
        )

        def stage(uow, cert: x509.Certificate, record: Certificate) -> None:
            uow.add(record)
            self.audit.record(
                uow,
                AuditAction.CERTIFICATE_ISSUED,
                actor,
                f"Issued {record.certificate_type.value} certificate for {record.common_name}",
                {"certificate_id": record.id, "ca_id": ca.id, "serial_number": record.serial_number},
            )

        cert, record = self._issue_with_retry(
            ca, ca_cert, subject, public_key, params, now, not_after, actor, stage, AuditAction.CERTIFICATE_ISSUED
        )

        logger.info(f"Issued certificate {record.id} for {record.common_name} (serial {record.serial_number})")
        return IssuedCertificate(
            certificate=record,
            certificate_pem=record.certificate_pem,
            chain_pem=ca_chain_pem(ca),
            private_key_pem=self._private_key_pem(private_key, request.key_password),
        )

    def renew(
        self,
        certificate_id: str,
        actor: Identity,
        validity_days: Optional[int] = None,
        rekey: bool = False,
        key_password: Optional[str] = None,
    ) -> IssuedCertificate:
        """
        Re-issue a certificate with the same subject, SANs and profile.

        The old certificate stays valid but is marked superseded.

        Args:
            certificate_id: Certificate to renew
            actor: Caller identity
            validity_days: New validity (defaults to the original span)
            rekey: Generate a fresh key pair instead of re-certifying the old key
            key_password: Encrypts the returned key when ``rekey`` is set

        Raises:
            NotFoundError: Unknown certificate
            AlreadyRevokedError: Certificate is revoked
            ConflictError: Certificate was already renewed
        """
        require_capability(actor.permissions, Capability.CERTIFICATE_RENEW)
        old = self.store.get_certificate(certificate_id)
        if old is None:
            raise NotFoundError(f"Certificate not found: {certificate_id}")
        self._check_renewable(old)

        if validity_days is None:
            validity_days = max((old.valid_to - old.valid_from).days, 1)
        if isinstance(validity_days, bool) or not isinstance(validity_days, int) or validity_days <= 0:
            raise ValidationError("Validity days must be a positive integer", field="validity_days")

        ca = self._resolve_ca(old.ca_id)
        ca_cert = CertificateParser.load_certificate(ca.certificate_pem)
        now = utcnow().replace(microsecond=0)
        not_after = self._check_validity_window(ca, validity_days, now)

        private_key = None
        if rekey:
            private_key = self.crypto.generate_private_key(old.key_algorithm, old.key_size, old.curve)
            public_key = private_key.public_key()
        else:
            public_key = serialization.load_pem_public_key(old.public_key_pem.encode("ascii"))

        params = IssueParameters(
            common_name=old.common_name,
            subject_alt_names=old.subject_alt_names,
            certificate_type=old.certificate_type,
            key_algorithm=old.key_algorithm,
            key_size=old.key_size,
            curve=old.curve,
            validity_days=validity_days,
        )
        subject = CertificateParser.load_certificate(old.certificate_pem).subject

        def stage(uow, cert: x509.Certificate, record: Certificate) -> None:
            current = uow.get_certificate(old.id)
            if current is None:
                raise NotFoundError(f"Certificate not found: {old.id}")
            self._check_renewable(current)
            current.superseded_by = record.id
            record.renewed_from = old.id
            uow.update(current)
            uow.add(record)
            self.audit.record(
                uow,
                AuditAction.CERTIFICATE_RENEWED,
                actor,
                f"Renewed certificate for {record.common_name}",
                {
                    "certificate_id": record.id,
                    "renewed_from": old.id,
                    "ca_id": ca.id,
                    "serial_number": record.serial_number,
                    "rekey": rekey,
                },
            )

        cert, record = self._issue_with_retry(
            ca, ca_cert, subject, public_key, params, now, not_after, actor, stage, AuditAction.CERTIFICATE_RENEWED
        )

        logger.info(f"Renewed certificate {old.id} as {record.id}")
        return IssuedCertificate(
            certificate=record,
            certificate_pem=record.certificate_pem,
            chain_pem=ca_chain_pem(ca),
            private_key_pem=self._private_key_pem(private_key, key_password),
        )

    # -- reads ---------------------------------------------------------------

    def get_certificate(self, certificate_id: str) -> Certificate:
        """
        Get certificate by ID.

        Raises:
            NotFoundError: If certificate doesn't exist
        """
        cert = self.store.get_certificate(certificate_id)
        if cert is None:
            raise NotFoundError(f"Certificate not found: {certificate_id}")
        return cert

    def list_certificates(
        self, ca_id: Optional[str] = None, status: Optional[CertificateStatus] = None
    ) -> List[Certificate]:
        """List certificates, newest first, optionally filtered by CA and status."""
        return self.store.list_certificates(ca_id=ca_id, status=status)

    def export_certificate(self, certificate_id: str, fmt: ExportFormat) -> Tuple[bytes, str, str]:
        """
        Export a certificate.

        Args:
            certificate_id: Certificate ID
            fmt: PEM, DER, or PKCS#12 (certificate plus CA chain, no key)

        Returns:
            Tuple of (content, media_type, filename)
        """
        record = self.get_certificate(certificate_id)
        cert = CertificateParser.load_certificate(record.certificate_pem)
        base = sanitize_name(record.common_name)

        if fmt == ExportFormat.PEM:
            return record.certificate_pem.encode("ascii"), "application/x-pem-file", f"{base}.crt"
        if fmt == ExportFormat.DER:
            return CertificateParser.to_der(cert), "application/pkix-cert", f"{base}.der"

        ca = self.store.get_ca(record.ca_id)
        chain = CertificateParser.load_chain(ca_chain_pem(ca)) if ca and ca.certificate_pem else []
        content = pkcs12.serialize_key_and_certificates(
            name=record.common_name.encode("utf-8"),
            key=None,
            cert=cert,
            cas=chain or None,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return content, "application/x-pkcs12", f"{base}.p12"

    # -- internals -----------------------------------------------------------

    def _resolve_ca(self, ca_id: Optional[str]) -> CAConfig:
        if ca_id:
            ca = self.store.get_ca(ca_id)
            if ca is None:
                raise NotFoundError(f"CA not found: {ca_id}")
        else:
            ca = self.store.get_active_ca()
            if ca is None:
                raise CAUnavailableError("No ACTIVE CA available for issuance")
        if ca.status != CAStatus.ACTIVE or not ca.certificate_pem:
            raise CAUnavailableError(f"CA {ca.id} is {ca.status.value}, not ACTIVE")
        return ca

    @staticmethod
    def _check_validity_window(ca: CAConfig, validity_days: int, now: datetime) -> datetime:
        if ca.valid_from and now < ca.valid_from:
            raise CAUnavailableError(f"CA {ca.id} is not yet valid")
        if ca.valid_to and now >= ca.valid_to:
            raise CAUnavailableError(f"CA {ca.id} has expired")
        not_after = now + timedelta(days=validity_days)
        if ca.valid_to and not_after > ca.valid_to:
            raise ValidationError(
                f"Validity of {validity_days} days exceeds the CA's remaining {ca.remaining_days(now)} days",
                field="validity_days",
            )
        return not_after

    @staticmethod
    def _check_renewable(cert: Certificate) -> None:
        if cert.status == CertificateStatus.REVOKED:
            raise AlreadyRevokedError(f"Certificate is revoked and cannot be renewed: {cert.id}")
        if cert.superseded_by:
            raise ConflictError(f"Certificate {cert.id} was already renewed as {cert.superseded_by}")

    def _issue_with_retry(self, ca, ca_cert, subject, public_key, params, now, not_after, actor, stage, action):
        """Sign and commit, drawing a new serial whenever the commit reports a collision."""
        for attempt in range(1, self.settings.serial_max_attempts + 1):
            serial = self.serials.next_serial(ca.id)
            try:
                cert = self._sign(ca, ca_cert, subject, public_key, params, serial, now, not_after)
                record = self._to_record(ca, cert, public_key, params, actor)
                with self.store.unit_of_work() as uow:
                    current = uow.get_ca(ca.id)
                    if current is None or current.status != CAStatus.ACTIVE:
                        raise CAUnavailableError(f"CA {ca.id} is no longer ACTIVE")
                    stage(uow, cert, record)
                    self._notify_after_commit(uow, action, ca, record, actor)
                return cert, record
            except SerialCollisionError:
                logger.warning(f"Serial collision on commit for CA {ca.id} (attempt {attempt})")
            finally:
                self.serials.release(ca.id, serial)
        raise SerialCollisionError(f"Gave up after {self.settings.serial_max_attempts} serial collisions")

    def _sign(self, ca, ca_cert, subject, public_key, params, serial, now, not_after) -> x509.Certificate:
        is_ca = params.certificate_type == CertificateType.CA
        algorithm, _, _ = describe_public_key(public_key)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(ca_cert.subject)
            .public_key(public_key)
            .serial_number(serial)
            .not_valid_before(now)
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=is_ca, path_length=0 if is_ca else None), critical=True)
            .add_extension(key_usage_for(params.certificate_type, algorithm), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
            .add_extension(authority_key_identifier(ca_cert), critical=False)
        )
        ekus = EXTENDED_KEY_USAGES[params.certificate_type]
        if ekus:
            builder = builder.add_extension(x509.ExtendedKeyUsage(ekus), critical=False)
        if params.subject_alt_names:
            builder = builder.add_extension(
                x509.SubjectAlternativeName(general_names(params.subject_alt_names)), critical=False
            )
        if ca.crl_distribution_point:
            builder = builder.add_extension(
                x509.CRLDistributionPoints(
                    [
                        x509.DistributionPoint(
                            full_name=[x509.UniformResourceIdentifier(ca.crl_distribution_point)],
                            relative_name=None,
                            reasons=None,
                            crl_issuer=None,
                        )
                    ]
                ),
                critical=False,
            )
        if ca.ocsp_url:
            builder = builder.add_extension(
                x509.AuthorityInformationAccess(
                    [
                        x509.AccessDescription(
                            AuthorityInformationAccessOID.OCSP, x509.UniformResourceIdentifier(ca.ocsp_url)
                        )
                    ]
                ),
                critical=False,
            )

        with self.crypto.decrypted_key(ca.encrypted_private_key) as ca_key:
            return self.crypto.sign(builder, ca_key)

    @staticmethod
    def _to_record(ca, cert: x509.Certificate, public_key, params: IssueParameters, actor: Identity) -> Certificate:
        algorithm, key_size, curve = describe_public_key(public_key)
        return Certificate(
            id=str(uuid.uuid4()),
            ca_id=ca.id,
            serial_number=format_serial(cert.serial_number),
            common_name=params.common_name,
            subject_alt_names=params.subject_alt_names,
            certificate_type=params.certificate_type,
            key_algorithm=algorithm,
            key_size=key_size,
            curve=curve,
            public_key_pem=public_key_pem(public_key),
            certificate_pem=CertificateParser.to_pem(cert),
            fingerprint_sha256=certificate_fingerprint(cert),
            valid_from=cert.not_valid_before_utc,
            valid_to=cert.not_valid_after_utc,
            status=CertificateStatus.ACTIVE,
            issued_by=actor.user_id,
        )

    def _notify_after_commit(self, uow, action: AuditAction, ca: CAConfig, record: Certificate, actor: Identity):
        if self.notifier is None:
            return
        verb = "issued" if action == AuditAction.CERTIFICATE_ISSUED else "renewed"
        event = NotificationEvent(
            event=action.value,
            ca_id=ca.id,
            entity_id=record.id,
            actor=actor.username,
            summary=f"Certificate {verb} for {record.common_name}",
            data={
                "serial_number": record.serial_number,
                "common_name": record.common_name,
                "valid_to": record.valid_to.isoformat(),
            },
        )
        uow.after_commit(lambda: self.notifier.publish(event))

    @staticmethod
    def _private_key_pem(private_key, password: Optional[str]) -> Optional[str]:
        if private_key is None:
            return None
        encryption = (
            serialization.BestAvailableEncryption(password.encode("utf-8"))
            if password
            else serialization.NoEncryption()
        )
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        ).decode("ascii")
