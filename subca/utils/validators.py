"""Input validation utilities."""

import ipaddress
import re
from typing import Any, Optional

from subca.errors import ValidationError
from subca.models.ca import RSA_KEY_SIZES, ECDSACurve, KeyAlgorithm
from subca.models.certificate import CertificateType, IssueCertificateRequest, IssueParameters

MAX_COMMON_NAME_LENGTH = 64

# Optional single leading wildcard label, then LDH labels, alphabetic TLD
DOMAIN_PATTERN = re.compile(r"^(\*\.)?([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,63}$")
HOSTNAME_PATTERN = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def sanitize_name(name: str) -> str:
    """
    Sanitize name for use in file names.

    Converts to lowercase, replaces spaces with hyphens,
    removes non-alphanumeric characters (except hyphens and dots).

    Args:
        name: Name to sanitize

    Returns:
        Sanitized name

    Example:
        >>> sanitize_name("My Issuing CA")
        'my-issuing-ca'
    """
    sanitized = name.lower().replace(" ", "-").replace("*", "wildcard")
    sanitized = re.sub(r"[^a-z0-9.-]", "", sanitized)
    sanitized = re.sub(r"-+", "-", sanitized)
    return sanitized.strip("-.") or "certificate"


def validate_common_name(cn: Any, max_length: int = MAX_COMMON_NAME_LENGTH) -> str:
    """
    Validate common name format.

    Args:
        cn: Common name to validate
        max_length: Upper bound (RFC 5280 ub-common-name is 64)

    Returns:
        Stripped common name

    Raises:
        ValidationError: If common name is invalid
    """
    if not isinstance(cn, str) or not cn.strip():
        raise ValidationError("Common name cannot be empty", field="common_name")

    cn = cn.strip()
    if len(cn) > max_length:
        raise ValidationError(f"Common name too long (max {max_length} characters)", field="common_name")
    return cn


def validate_country_code(country: str) -> None:
    """
    Validate ISO 3166-1 alpha-2 country code.

    Raises:
        ValidationError: If country code is invalid
    """
    if not re.match(r"^[A-Z]{2}$", country):
        raise ValidationError("Country code must be 2 uppercase letters (ISO 3166-1 alpha-2)", field="country")


def validate_domain(domain: str) -> None:
    """
    Validate domain name format. Wildcards are allowed in the leftmost label only.

    Raises:
        ValidationError: If domain is invalid
    """
    if len(domain) > 253 or not (DOMAIN_PATTERN.match(domain) or HOSTNAME_PATTERN.match(domain)):
        raise ValidationError(f"Invalid domain format: {domain}", field="subject_alt_names")


def is_ip_address(value: str) -> bool:
    """Whether a SAN entry is an IPv4/IPv6 literal."""
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def validate_san(value: Any) -> str:
    """
    Validate one SAN entry: DNS name, wildcard DNS name or IP address.

    Returns:
        Stripped entry

    Raises:
        ValidationError: If the entry is none of the accepted forms
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Subject alternative names cannot be empty", field="subject_alt_names")
    value = value.strip()
    if is_ip_address(value):
        return value
    validate_domain(value)
    return value


def _validate_key(algorithm: Any, key_size: Any, curve: Any):
    try:
        algorithm = KeyAlgorithm(algorithm)
    except ValueError:
        raise ValidationError(f"Unsupported key algorithm: {algorithm}", field="key_algorithm") from None

    if algorithm == KeyAlgorithm.RSA:
        key_size = 2048 if key_size is None else key_size
        if isinstance(key_size, bool) or not isinstance(key_size, int) or key_size not in RSA_KEY_SIZES:
            allowed = ", ".join(str(s) for s in RSA_KEY_SIZES)
            raise ValidationError(f"RSA key size must be one of {allowed}", field="key_size")
        return algorithm, key_size, None

    if algorithm == KeyAlgorithm.ECDSA:
        try:
            curve = ECDSACurve(curve or ECDSACurve.P256)
        except ValueError:
            allowed = ", ".join(c.value for c in ECDSACurve)
            raise ValidationError(f"ECDSA curve must be one of {allowed}", field="curve") from None
        return algorithm, None, curve

    return algorithm, None, None


def validate_issue_request(
    request: IssueCertificateRequest,
    max_common_name_length: int = MAX_COMMON_NAME_LENGTH,
    default_validity_days: int = 365,
) -> IssueParameters:
    """
    Validate an issuance request, failing on the first violation.

    Checks run in a fixed order: common name, SANs, key parameters,
    validity, certificate type, country, CSR presence.

    Args:
        request: Raw issuance request
        max_common_name_length: Upper bound for the common name
        default_validity_days: Validity used when the request names none

    Returns:
        Normalized issuance parameters

    Raises:
        ValidationError: First violation found
    """
    common_name = validate_common_name(request.common_name, max_common_name_length)
    sans = [validate_san(san) for san in request.subject_alt_names]

    algorithm, key_size, curve = _validate_key(request.key_algorithm, request.key_size, request.curve)

    validity_days = default_validity_days if request.validity_days is None else request.validity_days
    if isinstance(validity_days, bool) or not isinstance(validity_days, int) or validity_days <= 0:
        raise ValidationError("Validity days must be a positive integer", field="validity_days")

    try:
        certificate_type = CertificateType(str(request.certificate_type).upper())
    except ValueError:
        raise ValidationError(f"Unknown certificate type: {request.certificate_type}", field="certificate_type") from None

    if request.country:
        validate_country_code(request.country)

    csr_pem: Optional[str] = request.csr_pem
    if csr_pem is not None and "BEGIN CERTIFICATE REQUEST" not in csr_pem:
        raise ValidationError("Malformed CSR: PEM header missing", field="csr_pem")

    return IssueParameters(
        common_name=common_name,
        subject_alt_names=list(dict.fromkeys(sans)),
        certificate_type=certificate_type,
        key_algorithm=algorithm,
        key_size=key_size,
        curve=curve,
        validity_days=validity_days,
        organization=request.organization,
        organizational_unit=request.organizational_unit,
        country=request.country,
        state=request.state,
        locality=request.locality,
        csr_pem=csr_pem,
    )
