"""Private key protection, generation and signing."""

import base64
import logging
import os
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar, Union

from cryptography import x509
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from subca.errors import CryptoError, ValidationError
from subca.models.ca import RSA_KEY_SIZES, ECDSACurve, KeyAlgorithm

logger = logging.getLogger("subca")

T = TypeVar("T")

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey]

ENV_SECRET = "SUBCA_KEY_SECRET"

# Ciphertext layout: version(1) | salt(16) | nonce(12) | AES-GCM ciphertext+tag
_VERSION = 1
_SALT_LEN = 16
_NONCE_LEN = 12

CURVES = {
    ECDSACurve.P256: ec.SECP256R1,
    ECDSACurve.P384: ec.SECP384R1,
    ECDSACurve.P521: ec.SECP521R1,
}


class CryptoService:
    """
    Encrypts CA private keys at rest and scopes their decrypted use.

    Keys are wrapped with AES-256-GCM under a key derived by scrypt from an
    externally supplied secret. A decrypted key only exists inside
    :meth:`decrypted_key`; the plaintext buffer is zeroed on every exit path.
    """

    def __init__(self, secret: Optional[str] = None):
        """
        Initialize crypto service.

        Args:
            secret: Key encryption secret. The SUBCA_KEY_SECRET environment
                variable is used when none is given.

        Raises:
            CryptoError: If no secret is available
        """
        secret = secret or os.environ.get(ENV_SECRET)
        if not secret:
            raise CryptoError(f"No key encryption secret configured (set {ENV_SECRET})")
        self._secret = secret.encode("utf-8")

    def _derive(self, salt: bytes) -> bytes:
        return Scrypt(salt=salt, length=32, n=2**14, r=8, p=1).derive(self._secret)

    def encrypt_key(self, plaintext: bytes) -> str:
        """
        Encrypt serialized key material.

        Args:
            plaintext: PKCS#8 DER private key

        Returns:
            Base64 ciphertext safe to persist
        """
        salt = os.urandom(_SALT_LEN)
        nonce = os.urandom(_NONCE_LEN)
        try:
            ciphertext = AESGCM(self._derive(salt)).encrypt(nonce, bytes(plaintext), None)
        except (ValueError, TypeError, OverflowError) as e:
            raise CryptoError(f"Key encryption failed: {e}") from e
        return base64.b64encode(bytes([_VERSION]) + salt + nonce + ciphertext).decode("ascii")

    def encrypt_private_key(self, private_key: PrivateKey) -> str:
        """Serialize a private key to PKCS#8 DER and encrypt it."""
        buffer = bytearray(
            private_key.private_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        try:
            return self.encrypt_key(buffer)
        finally:
            _zero(buffer)

    @contextmanager
    def decrypted_key(self, ciphertext: str) -> Iterator[PrivateKey]:
        """
        Decrypt a stored key for the duration of a ``with`` block.

        Args:
            ciphertext: Value produced by :meth:`encrypt_private_key`

        Yields:
            The loaded private key

        Raises:
            CryptoError: If the ciphertext is malformed or the secret is wrong
        """
        buffer = bytearray()
        try:
            try:
                raw = base64.b64decode(ciphertext, validate=True)
                if len(raw) <= 1 + _SALT_LEN + _NONCE_LEN or raw[0] != _VERSION:
                    raise CryptoError("Unsupported encrypted key format")
                salt = raw[1 : 1 + _SALT_LEN]
                nonce = raw[1 + _SALT_LEN : 1 + _SALT_LEN + _NONCE_LEN]
                buffer = bytearray(AESGCM(self._derive(salt)).decrypt(nonce, raw[1 + _SALT_LEN + _NONCE_LEN :], None))
                key = serialization.load_der_private_key(bytes(buffer), password=None)
            except CryptoError:
                raise
            except InvalidTag as e:
                raise CryptoError("Key decryption failed: wrong secret or corrupted key") from e
            except (ValueError, TypeError) as e:
                raise CryptoError(f"Key decryption failed: {e}") from e
            yield key
        finally:
            _zero(buffer)

    def with_decrypted_key(self, ciphertext: str, fn: Callable[[PrivateKey], T]) -> T:
        """Run ``fn`` with the decrypted key and return its result."""
        with self.decrypted_key(ciphertext) as key:
            return fn(key)

    @staticmethod
    def generate_private_key(
        algorithm: KeyAlgorithm,
        key_size: Optional[int] = None,
        curve: Optional[ECDSACurve] = None,
    ) -> PrivateKey:
        """
        Generate a new private key.

        Args:
            algorithm: Key algorithm
            key_size: RSA modulus size (default 2048)
            curve: ECDSA curve (default P-256)

        Returns:
            Generated private key

        Raises:
            ValidationError: If size or curve is not supported
        """
        algorithm = KeyAlgorithm(algorithm)
        if algorithm == KeyAlgorithm.RSA:
            key_size = key_size or 2048
            if key_size not in RSA_KEY_SIZES:
                raise ValidationError(f"Unsupported RSA key size: {key_size}", field="key_size")
            return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        if algorithm == KeyAlgorithm.ECDSA:
            curve = ECDSACurve(curve or ECDSACurve.P256)
            return ec.generate_private_key(CURVES[curve]())
        return ed25519.Ed25519PrivateKey.generate()

    @staticmethod
    def signature_hash(private_key: PrivateKey) -> Optional[hashes.HashAlgorithm]:
        """Digest to sign with. Ed25519 signs without a separate hash."""
        if isinstance(private_key, ed25519.Ed25519PrivateKey):
            return None
        return hashes.SHA256()

    def sign(self, builder, private_key: PrivateKey):
        """
        Sign a certificate, CSR or CRL builder.

        Args:
            builder: x509 CertificateBuilder, CertificateSigningRequestBuilder
                or CertificateRevocationListBuilder
            private_key: Signing key

        Returns:
            The signed object

        Raises:
            CryptoError: If signing fails
        """
        try:
            return builder.sign(private_key, self.signature_hash(private_key))
        except (ValueError, TypeError) as e:
            raise CryptoError(f"Signing failed: {e}") from e


def describe_public_key(public_key) -> tuple:
    """Return (KeyAlgorithm, key_size, curve) for a public key."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return KeyAlgorithm.RSA, public_key.key_size, None
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        for curve, curve_cls in CURVES.items():
            if isinstance(public_key.curve, curve_cls):
                return KeyAlgorithm.ECDSA, None, curve
        raise ValidationError(f"Unsupported EC curve: {public_key.curve.name}")
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return KeyAlgorithm.ED25519, None, None
    raise ValidationError(f"Unsupported public key type: {type(public_key).__name__}")


def public_key_pem(public_key) -> str:
    """SubjectPublicKeyInfo PEM of a public key."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def public_keys_match(a, b) -> bool:
    """Compare two public keys by their SubjectPublicKeyInfo encoding."""
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    return a.public_bytes(serialization.Encoding.DER, fmt) == b.public_bytes(serialization.Encoding.DER, fmt)


def certificate_fingerprint(cert: x509.Certificate) -> str:
    """Colon-separated SHA-256 fingerprint."""
    return cert.fingerprint(hashes.SHA256()).hex(":").upper()


def _zero(buffer: bytearray) -> None:
    for i in range(len(buffer)):
        buffer[i] = 0
