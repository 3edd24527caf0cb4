"""Certificate parsing service."""

import logging
import re
from typing import Any, Dict, List, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.x509.oid import NameOID

from subca.errors import ValidationError

from .crypto_service import certificate_fingerprint

logger = logging.getLogger("subca")

PEM_CERT_PATTERN = r"-----BEGIN CERTIFICATE-----(?:.|\n)+?-----END CERTIFICATE-----"

# cryptography KeyUsage attributes to OpenSSL-style names
KEY_USAGE_NAMES = [
    ("digital_signature", "digitalSignature"),
    ("content_commitment", "nonRepudiation"),
    ("key_encipherment", "keyEncipherment"),
    ("data_encipherment", "dataEncipherment"),
    ("key_agreement", "keyAgreement"),
    ("key_cert_sign", "keyCertSign"),
    ("crl_sign", "cRLSign"),
]

EKU_NAMES = {
    x509.ExtendedKeyUsageOID.SERVER_AUTH: "serverAuth",
    x509.ExtendedKeyUsageOID.CLIENT_AUTH: "clientAuth",
    x509.ExtendedKeyUsageOID.CODE_SIGNING: "codeSigning",
    x509.ExtendedKeyUsageOID.EMAIL_PROTECTION: "emailProtection",
    x509.ExtendedKeyUsageOID.TIME_STAMPING: "timeStamping",
    x509.ExtendedKeyUsageOID.OCSP_SIGNING: "OCSPSigning",
}


class CertificateParser:
    """Service for parsing X.509 certificates."""

    @staticmethod
    def split_pem_bundle(pem_bundle: str) -> List[str]:
        """
        Split a string containing multiple PEM certificates into a list.

        Args:
            pem_bundle: A string containing one or more PEM-encoded certificates.

        Returns:
            A list of individual PEM certificate strings.
        """
        return re.findall(PEM_CERT_PATTERN, pem_bundle or "")

    @staticmethod
    def load_certificate(cert_pem: str) -> x509.Certificate:
        """
        Load a single PEM certificate.

        Raises:
            ValidationError: If the PEM cannot be parsed
        """
        try:
            return x509.load_pem_x509_certificate(cert_pem.encode("utf-8"))
        except (ValueError, TypeError, AttributeError) as e:
            raise ValidationError(f"Failed to parse certificate: {e}", field="certificate_pem") from e

    @staticmethod
    def load_chain(pem_bundle: Optional[str]) -> List[x509.Certificate]:
        """Load every certificate of a PEM bundle, in bundle order."""
        return [CertificateParser.load_certificate(pem) for pem in CertificateParser.split_pem_bundle(pem_bundle or "")]

    @staticmethod
    def load_csr(csr_pem: str) -> x509.CertificateSigningRequest:
        """
        Load a PEM CSR and check its self-signature.

        Raises:
            ValidationError: If the CSR is malformed or its signature is invalid
        """
        try:
            csr = x509.load_pem_x509_csr(csr_pem.encode("utf-8"))
        except (ValueError, TypeError, AttributeError) as e:
            raise ValidationError(f"Malformed CSR: {e}", field="csr_pem") from e
        if not csr.is_signature_valid:
            raise ValidationError("CSR signature is invalid", field="csr_pem")
        return csr

    @staticmethod
    def parse_certificate_pem(cert_pem: str) -> Dict[str, Any]:
        """
        Parse X.509 Certificate from PEM content.

        Args:
            cert_pem: PEM-encoded certificate content

        Returns:
            Dictionary with parsed certificate data

        Raises:
            ValidationError: If certificate cannot be parsed
        """
        cert = CertificateParser.load_certificate(cert_pem)
        return CertificateParser.describe(cert)

    @staticmethod
    def describe(cert: x509.Certificate) -> Dict[str, Any]:
        """Summarize a loaded certificate as plain data."""
        key_info = CertificateParser.extract_key_info(cert.public_key())
        return {
            "subject": CertificateParser.extract_subject(cert.subject),
            "subject_dn": cert.subject.rfc4514_string(),
            "issuer": CertificateParser.extract_subject(cert.issuer),
            "issuer_dn": cert.issuer.rfc4514_string(),
            "not_before": cert.not_valid_before_utc.isoformat(),
            "not_after": cert.not_valid_after_utc.isoformat(),
            "serial_number": format(cert.serial_number, "X"),
            "public_key_algorithm": key_info["algorithm"],
            "public_key_size": key_info["key_size"],
            "public_key_curve": key_info["curve"],
            "fingerprint_sha256": certificate_fingerprint(cert),
            "sans": CertificateParser.extract_sans(cert),
            "is_ca": CertificateParser.is_ca(cert),
            "path_length": CertificateParser.path_length(cert),
            "key_usage": CertificateParser.extract_key_usage(cert),
            "extended_key_usage": CertificateParser.extract_extended_key_usage(cert),
        }

    @staticmethod
    def extract_subject(name: x509.Name) -> Dict[str, Optional[str]]:
        """
        Extract Subject/Issuer DN.

        Args:
            name: X.509 Name object

        Returns:
            Dictionary with subject fields
        """

        def get_attribute(oid):
            attrs = name.get_attributes_for_oid(oid)
            return attrs[0].value if attrs else None

        return {
            "common_name": get_attribute(NameOID.COMMON_NAME),
            "organization": get_attribute(NameOID.ORGANIZATION_NAME),
            "organizational_unit": get_attribute(NameOID.ORGANIZATIONAL_UNIT_NAME),
            "country": get_attribute(NameOID.COUNTRY_NAME),
            "state": get_attribute(NameOID.STATE_OR_PROVINCE_NAME),
            "locality": get_attribute(NameOID.LOCALITY_NAME),
        }

    @staticmethod
    def build_name(
        common_name: str,
        organization: Optional[str] = None,
        organizational_unit: Optional[str] = None,
        country: Optional[str] = None,
        state: Optional[str] = None,
        locality: Optional[str] = None,
    ) -> x509.Name:
        """Build an X.509 Name from subject fields, skipping empty ones."""
        parts = [
            (NameOID.COUNTRY_NAME, country),
            (NameOID.STATE_OR_PROVINCE_NAME, state),
            (NameOID.LOCALITY_NAME, locality),
            (NameOID.ORGANIZATION_NAME, organization),
            (NameOID.ORGANIZATIONAL_UNIT_NAME, organizational_unit),
            (NameOID.COMMON_NAME, common_name),
        ]
        return x509.Name([x509.NameAttribute(oid, value) for oid, value in parts if value])

    @staticmethod
    def extract_key_info(public_key) -> Dict[str, Any]:
        """
        Extract public key information.

        Args:
            public_key: Public key object

        Returns:
            Dictionary with key information
        """
        if isinstance(public_key, rsa.RSAPublicKey):
            return {"algorithm": "RSA", "key_size": public_key.key_size, "curve": None}
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            curve_map = {
                "secp256r1": "P-256",
                "secp384r1": "P-384",
                "secp521r1": "P-521",
            }
            return {
                "algorithm": "ECDSA",
                "key_size": None,
                "curve": curve_map.get(public_key.curve.name, public_key.curve.name),
            }
        elif isinstance(public_key, ed25519.Ed25519PublicKey):
            return {"algorithm": "Ed25519", "key_size": None, "curve": None}
        return {"algorithm": "Unknown", "key_size": None, "curve": None}

    @staticmethod
    def extract_sans(cert: x509.Certificate) -> List[str]:
        """
        Extract Subject Alternative Names as strings.

        Args:
            cert: Certificate object

        Returns:
            List of SANs (DNS names and IP addresses)
        """
        try:
            san_ext = cert.extensions.get_extension_for_oid(x509.ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        except x509.ExtensionNotFound:
            return []
        return [str(name.value) for name in san_ext.value]

    @staticmethod
    def is_ca(cert: x509.Certificate) -> bool:
        """Check if certificate has CA:TRUE in Basic Constraints."""
        try:
            bc = cert.extensions.get_extension_for_oid(x509.ExtensionOID.BASIC_CONSTRAINTS)
            return bc.value.ca
        except x509.ExtensionNotFound:
            return False

    @staticmethod
    def path_length(cert: x509.Certificate) -> Optional[int]:
        """pathLenConstraint of a CA certificate, None when unconstrained or absent."""
        try:
            bc = cert.extensions.get_extension_for_oid(x509.ExtensionOID.BASIC_CONSTRAINTS)
            return bc.value.path_length
        except x509.ExtensionNotFound:
            return None

    @staticmethod
    def extract_key_usage(cert: x509.Certificate) -> List[str]:
        """
        Extract Key Usage extension values.

        Args:
            cert: Certificate object

        Returns:
            List of Key Usage strings (e.g., ["digitalSignature", "keyEncipherment"])
        """
        try:
            ku = cert.extensions.get_extension_for_oid(x509.ExtensionOID.KEY_USAGE).value
        except x509.ExtensionNotFound:
            return []
        usage_list = [name for attr, name in KEY_USAGE_NAMES if getattr(ku, attr)]
        # encipher_only/decipher_only are only defined with key_agreement
        if ku.key_agreement:
            if ku.encipher_only:
                usage_list.append("encipherOnly")
            if ku.decipher_only:
                usage_list.append("decipherOnly")
        return usage_list

    @staticmethod
    def extract_extended_key_usage(cert: x509.Certificate) -> List[str]:
        """
        Extract Extended Key Usage extension values.

        Args:
            cert: Certificate object

        Returns:
            List of Extended Key Usage strings (e.g., ["serverAuth", "clientAuth"])
        """
        try:
            eku_ext = cert.extensions.get_extension_for_oid(x509.ExtensionOID.EXTENDED_KEY_USAGE)
        except x509.ExtensionNotFound:
            return []
        return [EKU_NAMES.get(oid, oid.dotted_string) for oid in eku_ext.value]

    @staticmethod
    def verify_signature(cert: x509.Certificate, issuer_cert: x509.Certificate) -> Optional[str]:
        """
        Check that ``cert`` was signed by ``issuer_cert``'s key.

        Returns:
            None if the signature verifies, otherwise an error message
        """
        issuer_public_key = issuer_cert.public_key()
        try:
            if isinstance(issuer_public_key, rsa.RSAPublicKey):
                issuer_public_key.verify(
                    cert.signature,
                    cert.tbs_certificate_bytes,
                    padding.PKCS1v15(),
                    cert.signature_hash_algorithm,
                )
            elif isinstance(issuer_public_key, ec.EllipticCurvePublicKey):
                issuer_public_key.verify(
                    cert.signature,
                    cert.tbs_certificate_bytes,
                    ec.ECDSA(cert.signature_hash_algorithm),
                )
            elif isinstance(issuer_public_key, ed25519.Ed25519PublicKey):
                issuer_public_key.verify(cert.signature, cert.tbs_certificate_bytes)
            else:
                return "Unsupported key type for signature verification"
        except InvalidSignature:
            return "signature verification failed"
        except (ValueError, TypeError) as e:
            return f"signature verification failed: {e}"
        return None

    @staticmethod
    def to_pem(cert: x509.Certificate) -> str:
        return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")

    @staticmethod
    def to_der(cert: x509.Certificate) -> bytes:
        return cert.public_bytes(serialization.Encoding.DER)
