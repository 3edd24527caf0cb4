"""Typed read queries shared by the store and open units of work."""

from typing import List, Optional

from pydantic import BaseModel

from subca.models.audit import AuditAction, AuditLog
from subca.models.ca import CAConfig, CAStatus
from subca.models.certificate import Certificate, CertificateStatus
from subca.models.crl import CertificateRevocation, CRLRecord

# Collection name per entity type; also the directory name on disk
COLLECTIONS = {
    CAConfig: "cas",
    Certificate: "certificates",
    CertificateRevocation: "revocations",
    CRLRecord: "crls",
    AuditLog: "audit_logs",
}
MODELS = {name: model for model, name in COLLECTIONS.items()}


def collection_for(entity: BaseModel) -> str:
    """Collection name an entity is stored in."""
    try:
        return COLLECTIONS[type(entity)]
    except KeyError:
        raise TypeError(f"Not a persistable entity: {type(entity).__name__}") from None


class StoreReader:
    """Query helpers built on two primitives: ``_get`` and ``_all``."""

    def _get(self, collection: str, entity_id: str) -> Optional[BaseModel]:
        raise NotImplementedError

    def _all(self, collection: str) -> List[BaseModel]:
        raise NotImplementedError

    # CAs

    def get_ca(self, ca_id: str) -> Optional[CAConfig]:
        return self._get("cas", ca_id)

    def list_cas(self) -> List[CAConfig]:
        return sorted(self._all("cas"), key=lambda ca: ca.created_at)

    def get_active_ca(self) -> Optional[CAConfig]:
        active = [ca for ca in self._all("cas") if ca.status == CAStatus.ACTIVE]
        return active[0] if active else None

    # Certificates

    def get_certificate(self, cert_id: str) -> Optional[Certificate]:
        return self._get("certificates", cert_id)

    def get_certificate_by_serial(self, ca_id: Optional[str], serial_number: str) -> Optional[Certificate]:
        serial = serial_number.upper()
        for cert in self._all("certificates"):
            if cert.serial_number == serial and (ca_id is None or cert.ca_id == ca_id):
                return cert
        return None

    def serial_exists(self, ca_id: str, serial_number: str) -> bool:
        """Whether the CA has signed this serial, for a certificate or an OCSP signer."""
        if self.get_certificate_by_serial(ca_id, serial_number) is not None:
            return True
        ca = self.get_ca(ca_id)
        return ca is not None and serial_number.upper() in ca.ocsp_signer_serials

    def list_certificates(
        self, ca_id: Optional[str] = None, status: Optional[CertificateStatus] = None
    ) -> List[Certificate]:
        """
        List certificates, newest first.

        Args:
            ca_id: Restrict to one CA
            status: Filter on the read-time status (EXPIRED is derived)

        Returns:
            Matching certificates
        """
        certs = [c for c in self._all("certificates") if ca_id is None or c.ca_id == ca_id]
        if status is not None:
            certs = [c for c in certs if c.effective_status() == status]
        return sorted(certs, key=lambda c: c.created_at, reverse=True)

    def find_active_by_common_name(self, ca_id: str, common_name: str) -> List[Certificate]:
        """ACTIVE, unexpired, non-superseded certificates of a CA with this CN."""
        wanted = common_name.strip().lower()
        return [
            c
            for c in self._all("certificates")
            if c.ca_id == ca_id
            and c.common_name.strip().lower() == wanted
            and c.superseded_by is None
            and c.effective_status() == CertificateStatus.ACTIVE
        ]

    # Revocations

    def get_revocation(self, certificate_id: str) -> Optional[CertificateRevocation]:
        for revocation in self._all("revocations"):
            if revocation.certificate_id == certificate_id:
                return revocation
        return None

    def list_revocations(self, ca_id: str) -> List[CertificateRevocation]:
        revocations = [r for r in self._all("revocations") if r.ca_id == ca_id]
        return sorted(revocations, key=lambda r: r.revoked_at)

    # CRLs

    def list_crls(self, ca_id: str, delta: Optional[bool] = None) -> List[CRLRecord]:
        crls = [c for c in self._all("crls") if c.ca_id == ca_id and (delta is None or c.is_delta == delta)]
        return sorted(crls, key=lambda c: c.number)

    def get_latest_crl(self, ca_id: str, delta: bool = False) -> Optional[CRLRecord]:
        crls = self.list_crls(ca_id, delta=delta)
        return crls[-1] if crls else None

    # Audit

    def list_audit_logs(self, action: Optional[AuditAction] = None, limit: Optional[int] = None) -> List[AuditLog]:
        logs = [a for a in self._all("audit_logs") if action is None or a.action == action]
        logs.sort(key=lambda a: a.timestamp, reverse=True)
        return logs[:limit] if limit else logs
