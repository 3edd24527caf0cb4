"""Certificate revocation and CRL generation."""

import logging
import uuid
from datetime import timedelta
from typing import Any, List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from subca.errors import (
    AlreadyRevokedError,
    CAUnavailableError,
    NoBaseCRLError,
    NotFoundError,
)
from subca.models.audit import AuditAction
from subca.models.auth import Capability, Identity
from subca.models.ca import CAStatus, utcnow
from subca.models.certificate import CertificateStatus, ExportFormat
from subca.models.config import CRLSettings
from subca.models.crl import CertificateRevocation, CRLEntry, CRLRecord, RevocationReason
from subca.models.notification import NotificationEvent
from subca.services.audit_service import AuditService
from subca.services.auth_service import require_capability
from subca.services.cert_service import authority_key_identifier
from subca.services.crypto_service import CryptoService
from subca.services.parser_service import CertificateParser
from subca.utils.validators import sanitize_name

logger = logging.getLogger("subca")


class RevocationManager:
    """Records revocations and produces signed full and delta CRLs."""

    def __init__(
        self,
        store,
        crypto: CryptoService,
        audit: AuditService,
        notifier=None,
        settings: Optional[CRLSettings] = None,
    ):
        """
        Initialize revocation manager.

        Args:
            store: Entity store
            crypto: Key protection and signing
            audit: Audit recorder
            notifier: Optional NotificationService for post-commit events
            settings: CRL settings
        """
        self.store = store
        self.crypto = crypto
        self.audit = audit
        self.notifier = notifier
        self.settings = settings or CRLSettings()

    def revoke(self, certificate_id: str, reason: Any, actor: Identity) -> CertificateRevocation:
        """
        Revoke a certificate. Revocation is terminal.

        Args:
            certificate_id: Certificate to revoke
            reason: RevocationReason or its name
            actor: Caller identity

        Returns:
            The revocation record

        Raises:
            AuthorizationError: Caller lacks certificate:revoke
            InvalidReasonError: Reason is not an enumerated code
            NotFoundError: Unknown certificate
            AlreadyRevokedError: Certificate already revoked
        """
        require_capability(actor.permissions, Capability.CERTIFICATE_REVOKE)
        reason = RevocationReason.parse(reason)

        with self.store.unit_of_work() as uow:
            cert = uow.get_certificate(certificate_id)
            if cert is None:
                raise NotFoundError(f"Certificate not found: {certificate_id}")
            if cert.status == CertificateStatus.REVOKED or uow.get_revocation(cert.id) is not None:
                raise AlreadyRevokedError(f"Certificate already revoked: {certificate_id}")

            revocation = CertificateRevocation(
                id=str(uuid.uuid4()),
                certificate_id=cert.id,
                ca_id=cert.ca_id,
                serial_number=cert.serial_number,
                reason=reason,
                revoked_at=utcnow(),
                revoked_by=actor.user_id,
            )
            cert.status = CertificateStatus.REVOKED
            uow.update(cert)
            uow.add(revocation)
            self.audit.record(
                uow,
                AuditAction.CERTIFICATE_REVOKED,
                actor,
                f"Revoked certificate {cert.common_name} ({reason.value})",
                {
                    "certificate_id": cert.id,
                    "ca_id": cert.ca_id,
                    "serial_number": cert.serial_number,
                    "reason": reason.value,
                },
            )
            self._notify_after_commit(
                uow,
                AuditAction.CERTIFICATE_REVOKED,
                cert.ca_id,
                cert.id,
                actor,
                f"Certificate revoked: {cert.common_name}",
                {"serial_number": cert.serial_number, "reason": reason.value},
            )

        logger.info(f"Revoked certificate {certificate_id} (serial {revocation.serial_number}, {reason.value})")
        return revocation

    def generate_crl(self, ca_id: str, actor: Identity) -> CRLRecord:
        """
        Generate a full CRL listing every unexpired revoked certificate of the CA.

        Raises:
            NotFoundError: Unknown CA
            CAUnavailableError: CA is not ACTIVE
        """
        return self._generate(ca_id, actor, delta=False)

    def generate_delta_crl(self, ca_id: str, actor: Identity) -> CRLRecord:
        """
        Generate a delta CRL against the latest full CRL.

        Raises:
            NoBaseCRLError: No full CRL has been generated yet
        """
        return self._generate(ca_id, actor, delta=True)

    def _generate(self, ca_id: str, actor: Identity, delta: bool) -> CRLRecord:
        require_capability(actor.permissions, Capability.CRL_MANAGE)

        # CRL number allocation and signing happen under the writer lock
        with self.store.unit_of_work() as uow:
            ca = uow.get_ca(ca_id)
            if ca is None:
                raise NotFoundError(f"CA not found: {ca_id}")
            if ca.status != CAStatus.ACTIVE or not ca.certificate_pem:
                raise CAUnavailableError(f"CA {ca_id} is {ca.status.value}, not ACTIVE")

            base = None
            if delta:
                base = uow.get_latest_crl(ca.id, delta=False)
                if base is None:
                    raise NoBaseCRLError(f"No full CRL exists for CA {ca_id}; generate one first")

            now = utcnow()
            revocations = self._collect(uow, ca.id, now, since=base.this_update if base else None)
            number = ca.crl_number + 1
            next_update = now + timedelta(hours=self.settings.next_update_hours)

            ca_cert = CertificateParser.load_certificate(ca.certificate_pem)
            builder = (
                x509.CertificateRevocationListBuilder()
                .issuer_name(ca_cert.subject)
                .last_update(now.replace(microsecond=0))
                .next_update(next_update.replace(microsecond=0))
                .add_extension(x509.CRLNumber(number), critical=False)
                .add_extension(authority_key_identifier(ca_cert), critical=False)
            )
            if base is not None:
                builder = builder.add_extension(x509.DeltaCRLIndicator(base.number), critical=True)
            for revocation in revocations:
                builder = builder.add_revoked_certificate(self._revoked_entry(revocation))

            with self.crypto.decrypted_key(ca.encrypted_private_key) as ca_key:
                crl = self.crypto.sign(builder, ca_key)

            record = CRLRecord(
                id=str(uuid.uuid4()),
                ca_id=ca.id,
                number=number,
                is_delta=delta,
                base_number=base.number if base else None,
                this_update=now,
                next_update=next_update,
                entries=[
                    CRLEntry(serial_number=r.serial_number, revocation_date=r.revoked_at, reason=r.reason)
                    for r in revocations
                ],
                crl_pem=crl.public_bytes(serialization.Encoding.PEM).decode("ascii"),
                created_by=actor.user_id,
            )
            ca.crl_number = number
            uow.update(ca)
            uow.add(record)

            kind = "delta CRL" if delta else "CRL"
            metadata = {"ca_id": ca.id, "crl_number": number, "delta": delta, "revoked_count": len(revocations)}
            if base is not None:
                metadata["base_crl_number"] = base.number
            self.audit.record(uow, AuditAction.CRL_GENERATED, actor, f"Generated {kind} #{number} for {ca.name}", metadata)
            self._notify_after_commit(
                uow,
                AuditAction.CRL_GENERATED,
                ca.id,
                record.id,
                actor,
                f"{kind} #{number} generated for {ca.name}",
                metadata,
            )

        logger.info(f"Generated {kind} #{number} for CA {ca_id} with {len(revocations)} entries")
        return record

    @staticmethod
    def _collect(uow, ca_id: str, now, since=None) -> List[CertificateRevocation]:
        """Revocations of the CA whose certificate has not expired, optionally only those after ``since``."""
        selected = []
        for revocation in uow.list_revocations(ca_id):
            cert = uow.get_certificate(revocation.certificate_id)
            if cert is not None and cert.valid_to <= now:
                continue
            if since is not None and revocation.revoked_at <= since:
                continue
            selected.append(revocation)
        return selected

    @staticmethod
    def _revoked_entry(revocation: CertificateRevocation) -> x509.RevokedCertificate:
        builder = (
            x509.RevokedCertificateBuilder()
            .serial_number(int(revocation.serial_number, 16))
            .revocation_date(revocation.revoked_at.replace(microsecond=0))
        )
        # RFC 5280 5.3.1: omit reasonCode rather than encode unspecified
        if revocation.reason != RevocationReason.UNSPECIFIED:
            builder = builder.add_extension(x509.CRLReason(revocation.reason.flag), critical=False)
        return builder.build()

    def _notify_after_commit(self, uow, action, ca_id, entity_id, actor, summary, data) -> None:
        if self.notifier is None:
            return
        event = NotificationEvent(
            event=action.value,
            ca_id=ca_id,
            entity_id=entity_id,
            actor=actor.username,
            summary=summary,
            data=data,
        )
        uow.after_commit(lambda: self.notifier.publish(event))

    # -- reads ---------------------------------------------------------------

    def list_revocations(self, ca_id: str) -> List[CertificateRevocation]:
        """All revocations recorded for a CA, oldest first."""
        return self.store.list_revocations(ca_id)

    def list_crls(self, ca_id: str) -> List[CRLRecord]:
        """All generated CRLs for a CA, by number."""
        return self.store.list_crls(ca_id)

    def get_latest_crl(self, ca_id: str, delta: bool = False) -> CRLRecord:
        """
        Latest full (or delta) CRL of a CA.

        Raises:
            NotFoundError: If none has been generated
        """
        record = self.store.get_latest_crl(ca_id, delta=delta)
        if record is None:
            kind = "delta CRL" if delta else "CRL"
            raise NotFoundError(f"No {kind} generated for CA {ca_id}")
        return record

    def export_crl(self, ca_id: str, fmt: ExportFormat, delta: bool = False) -> Tuple[bytes, str, str]:
        """
        Export the latest CRL as PEM or DER.

        Returns:
            Tuple of (content, media_type, filename)
        """
        record = self.get_latest_crl(ca_id, delta=delta)
        ca = self.store.get_ca(ca_id)
        base = sanitize_name(ca.name if ca else ca_id) + ("-delta" if delta else "")
        if fmt == ExportFormat.DER:
            crl = x509.load_pem_x509_crl(record.crl_pem.encode("ascii"))
            return crl.public_bytes(serialization.Encoding.DER), "application/pkix-crl", f"{base}.crl"
        return record.crl_pem.encode("ascii"), "application/x-pem-file", f"{base}.crl.pem"
