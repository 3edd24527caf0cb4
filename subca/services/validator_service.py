"""Certificate chain and constraint validation.

Unlike request validation during issuance, which stops at the first bad field,
the validator walks the whole chain and reports every violation it finds.
"""

import logging
from typing import List, Optional

from cryptography import x509

from subca.errors import ValidationError
from subca.models.ca import CAStatus, utcnow
from subca.models.certificate import CertificateType
from subca.models.validation import ValidationResult, Violation, ViolationCode
from subca.services.parser_service import EKU_NAMES, CertificateParser
from subca.services.serial_allocator import format_serial

logger = logging.getLogger("subca")

# Longest chain walked before giving up
MAX_CHAIN_DEPTH = 10

REQUIRED_EKU = {
    CertificateType.SERVER: x509.ExtendedKeyUsageOID.SERVER_AUTH,
    CertificateType.CLIENT: x509.ExtendedKeyUsageOID.CLIENT_AUTH,
}


def _is_self_signed(cert: x509.Certificate) -> bool:
    return cert.subject == cert.issuer and CertificateParser.verify_signature(cert, cert) is None


class CertificateValidator:
    """Validates certificates against the chains of the CAs in the store."""

    def __init__(self, store):
        self.store = store

    def validate(
        self,
        certificate_pem: str,
        certificate_type: Optional[CertificateType] = None,
        check_revocation: bool = False,
        ca_id: Optional[str] = None,
        chain_pem: Optional[str] = None,
    ) -> ValidationResult:
        """
        Validate a certificate and its issuer chain.

        Args:
            certificate_pem: Certificate to validate
            certificate_type: Expected profile; checks keyUsage/extendedKeyUsage when given
            check_revocation: Look the certificate up in the store's revocation records
            ca_id: Restrict trust to this CA's chain (defaults to every CA with a certificate)
            chain_pem: Extra certificates to build the chain from; self-signed ones are trusted

        Returns:
            ValidationResult listing every violation found
        """
        violations: List[Violation] = []

        def report(code: ViolationCode, message: str, cert: Optional[x509.Certificate] = None) -> None:
            violations.append(
                Violation(code=code, message=message, subject=cert.subject.rfc4514_string() if cert else None)
            )

        try:
            leaf = CertificateParser.load_certificate(certificate_pem)
        except ValidationError as e:
            report(ViolationCode.PARSE_ERROR, e.message)
            return ValidationResult(valid=False, violations=violations)

        pool, roots = self._trust_material(ca_id, chain_pem, report)
        chain = self._build_chain(leaf, pool, roots, report)

        now = utcnow()
        for cert in chain:
            if now < cert.not_valid_before_utc:
                report(ViolationCode.NOT_YET_VALID, f"Not valid before {cert.not_valid_before_utc.isoformat()}", cert)
            if now >= cert.not_valid_after_utc:
                report(ViolationCode.EXPIRED, f"Expired at {cert.not_valid_after_utc.isoformat()}", cert)

        self._check_issuers(chain, report)
        if certificate_type is not None:
            self._check_profile(leaf, certificate_type, report)
        if check_revocation:
            self._check_revocation(leaf, report)

        result = ValidationResult(
            valid=not violations,
            subject=leaf.subject.rfc4514_string(),
            serial_number=format_serial(leaf.serial_number),
            chain=[cert.subject.rfc4514_string() for cert in chain],
            violations=violations,
        )
        logger.debug(f"Validated {result.subject}: {len(violations)} violation(s)")
        return result

    def _trust_material(self, ca_id, chain_pem, report):
        """Candidate issuers and trusted roots from the store and any supplied chain."""
        pool: List[x509.Certificate] = []
        bundles = []
        for ca in self.store.list_cas():
            if ca_id and ca.id != ca_id:
                continue
            if ca.certificate_pem and ca.status != CAStatus.PENDING:
                bundles.append(ca.certificate_pem)
                bundles.append(ca.certificate_chain_pem)
        for bundle in bundles:
            pool.extend(CertificateParser.load_chain(bundle))

        supplied: List[x509.Certificate] = []
        for pem in CertificateParser.split_pem_bundle(chain_pem or ""):
            try:
                supplied.append(CertificateParser.load_certificate(pem))
            except ValidationError as e:
                report(ViolationCode.PARSE_ERROR, f"Chain certificate: {e.message}")
        pool.extend(supplied)

        roots = [cert for cert in pool if _is_self_signed(cert)]
        return pool, roots

    @staticmethod
    def _build_chain(leaf, pool, roots, report) -> List[x509.Certificate]:
        """Walk issuer links from the leaf towards a self-signed root, leaf first."""
        chain = [leaf]
        current = leaf
        while not _is_self_signed(current):
            if len(chain) > MAX_CHAIN_DEPTH:
                report(ViolationCode.CHAIN_INCOMPLETE, f"Chain longer than {MAX_CHAIN_DEPTH} certificates", current)
                return chain
            candidates = [c for c in pool if c.subject == current.issuer and c != current]
            if not candidates:
                report(ViolationCode.ISSUER_NOT_FOUND, f"Issuer not found: {current.issuer.rfc4514_string()}", current)
                report(ViolationCode.CHAIN_INCOMPLETE, "Root not reached", current)
                return chain
            issuer = next(
                (c for c in candidates if CertificateParser.verify_signature(current, c) is None),
                None,
            )
            if issuer is None:
                issuer = candidates[0]
                error = CertificateParser.verify_signature(current, issuer)
                report(ViolationCode.SIGNATURE_INVALID, f"Not signed by {issuer.subject.rfc4514_string()}: {error}", current)
            if issuer in chain:
                report(ViolationCode.CHAIN_INCOMPLETE, "Issuer loop detected", current)
                return chain
            chain.append(issuer)
            current = issuer

        if current not in roots:
            report(ViolationCode.CHAIN_INCOMPLETE, "Chain ends at a root that is not the configured root", current)
        return chain

    @staticmethod
    def _check_issuers(chain, report) -> None:
        for index, issuer in enumerate(chain[1:], start=1):
            if not CertificateParser.is_ca(issuer):
                report(ViolationCode.NOT_A_CA, "Issuer is not a CA certificate", issuer)
            usages = CertificateParser.extract_key_usage(issuer)
            if usages and "keyCertSign" not in usages:
                report(ViolationCode.KEY_USAGE_MISMATCH, "Issuer keyUsage lacks keyCertSign", issuer)
            # Intermediates below this issuer, excluding the leaf
            path_length = CertificateParser.path_length(issuer)
            if path_length is not None and index - 1 > path_length:
                report(
                    ViolationCode.PATH_LENGTH_EXCEEDED,
                    f"pathLenConstraint {path_length} exceeded by {index - 1} intermediate(s)",
                    issuer,
                )

    @staticmethod
    def _check_profile(leaf, certificate_type: CertificateType, report) -> None:
        usages = CertificateParser.extract_key_usage(leaf)
        if certificate_type == CertificateType.CA:
            if not CertificateParser.is_ca(leaf):
                report(ViolationCode.NOT_A_CA, "basicConstraints CA flag is not set", leaf)
            if "keyCertSign" not in usages:
                report(ViolationCode.KEY_USAGE_MISMATCH, "keyUsage lacks keyCertSign", leaf)
            return

        if CertificateParser.is_ca(leaf):
            report(ViolationCode.KEY_USAGE_MISMATCH, "End-entity certificate is marked as a CA", leaf)
        if "digitalSignature" not in usages:
            report(ViolationCode.KEY_USAGE_MISMATCH, "keyUsage lacks digitalSignature", leaf)
        if "keyCertSign" in usages:
            report(ViolationCode.KEY_USAGE_MISMATCH, "End-entity keyUsage includes keyCertSign", leaf)

        try:
            ekus = list(leaf.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value)
        except x509.ExtensionNotFound:
            ekus = []
        required = REQUIRED_EKU[certificate_type]
        if required not in ekus:
            report(
                ViolationCode.EXTENDED_KEY_USAGE_MISMATCH,
                f"extendedKeyUsage lacks {EKU_NAMES[required]}",
                leaf,
            )

    def _check_revocation(self, leaf, report) -> None:
        serial = format_serial(leaf.serial_number)
        for ca in self.store.list_cas():
            if not ca.certificate_pem:
                continue
            ca_cert = CertificateParser.load_certificate(ca.certificate_pem)
            if ca_cert.subject != leaf.issuer:
                continue
            record = self.store.get_certificate_by_serial(ca.id, serial)
            if record is None:
                continue
            revocation = self.store.get_revocation(record.id)
            if revocation is not None:
                report(
                    ViolationCode.REVOKED,
                    f"Revoked at {revocation.revoked_at.isoformat()} ({revocation.reason.value})",
                    leaf,
                )
            return
        report(ViolationCode.UNKNOWN_CERTIFICATE, f"Serial {serial} was not issued by a CA in this store", leaf)
