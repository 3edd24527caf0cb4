"""Tests for key protection and signing."""

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from subca.api.dependencies import CONFIG_ENV, get_config
from subca.errors import CryptoError, ValidationError
from subca.models.ca import ECDSACurve, KeyAlgorithm
from subca.services.crypto_service import (
    ENV_SECRET,
    CryptoService,
    describe_public_key,
    public_keys_match,
)


@pytest.fixture
def crypto_service(monkeypatch):
    monkeypatch.delenv(ENV_SECRET, raising=False)
    return CryptoService("unit-test-secret")


@pytest.mark.unit
class TestCryptoService:
    """Test encryption at rest and key generation."""

    def test_missing_secret_rejected(self, monkeypatch):
        """Test that a service without any secret refuses to start."""
        monkeypatch.delenv(ENV_SECRET, raising=False)
        with pytest.raises(CryptoError):
            CryptoService(None)

    def test_explicit_secret_takes_precedence(self, monkeypatch):
        """Test that a secret passed in wins over SUBCA_KEY_SECRET."""
        monkeypatch.setenv(ENV_SECRET, "from-environment")
        key = CryptoService.generate_private_key(KeyAlgorithm.ED25519)
        ciphertext = CryptoService("explicit").encrypt_private_key(key)

        monkeypatch.delenv(ENV_SECRET)
        with CryptoService("explicit").decrypted_key(ciphertext) as loaded:
            assert public_keys_match(loaded.public_key(), key.public_key())
        with pytest.raises(CryptoError):
            with CryptoService("from-environment").decrypted_key(ciphertext):
                pass

    def test_environment_secret_fallback(self, monkeypatch):
        """Test that SUBCA_KEY_SECRET is used when no secret is given."""
        monkeypatch.setenv(ENV_SECRET, "from-environment")
        key = CryptoService.generate_private_key(KeyAlgorithm.ED25519)
        ciphertext = CryptoService().encrypt_private_key(key)

        with CryptoService("from-environment").decrypted_key(ciphertext) as loaded:
            assert public_keys_match(loaded.public_key(), key.public_key())

    def test_environment_secret_replaces_configured_secret(self, tmp_path, monkeypatch):
        """Test that config loading applies SUBCA_KEY_SECRET over the file value."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("security:\n  key_encryption_secret: from-file\n")
        monkeypatch.setenv(CONFIG_ENV, str(config_file))
        get_config.cache_clear()
        try:
            assert get_config().security.key_encryption_secret == "from-file"
            get_config.cache_clear()
            monkeypatch.setenv(ENV_SECRET, "from-environment")
            assert get_config().security.key_encryption_secret == "from-environment"
        finally:
            get_config.cache_clear()

    def test_encrypt_decrypt_key(self, crypto_service):
        """Test that an encrypted key decrypts to the same key pair."""
        key = crypto_service.generate_private_key(KeyAlgorithm.ECDSA, curve=ECDSACurve.P384)
        ciphertext = crypto_service.encrypt_private_key(key)

        assert "PRIVATE KEY" not in ciphertext
        with crypto_service.decrypted_key(ciphertext) as loaded:
            assert isinstance(loaded, ec.EllipticCurvePrivateKey)
            assert public_keys_match(loaded.public_key(), key.public_key())

    def test_ciphertexts_differ(self, crypto_service):
        """Test that each encryption uses a fresh salt and nonce."""
        key = crypto_service.generate_private_key(KeyAlgorithm.ED25519)
        assert crypto_service.encrypt_private_key(key) != crypto_service.encrypt_private_key(key)

    def test_wrong_secret(self, crypto_service):
        """Test that decrypting with another secret fails with CryptoError."""
        key = crypto_service.generate_private_key(KeyAlgorithm.ED25519)
        ciphertext = crypto_service.encrypt_private_key(key)

        with pytest.raises(CryptoError):
            with CryptoService("another-secret").decrypted_key(ciphertext):
                pass

    def test_corrupted_ciphertext(self, crypto_service):
        """Test that garbage ciphertext is reported as CryptoError."""
        with pytest.raises(CryptoError):
            crypto_service.with_decrypted_key("not-base64!!", lambda key: key)

    def test_with_decrypted_key_returns_result(self, crypto_service):
        """Test that with_decrypted_key passes the key and returns the callback result."""
        key = crypto_service.generate_private_key(KeyAlgorithm.RSA, key_size=2048)
        ciphertext = crypto_service.encrypt_private_key(key)

        size = crypto_service.with_decrypted_key(ciphertext, lambda k: k.key_size)
        assert size == 2048

    def test_generate_key_algorithms(self):
        """Test key generation for each supported algorithm."""
        assert isinstance(CryptoService.generate_private_key(KeyAlgorithm.RSA), rsa.RSAPrivateKey)
        assert isinstance(CryptoService.generate_private_key(KeyAlgorithm.ECDSA), ec.EllipticCurvePrivateKey)
        assert isinstance(CryptoService.generate_private_key(KeyAlgorithm.ED25519), ed25519.Ed25519PrivateKey)

    def test_generate_rejects_unsupported_rsa_size(self):
        """Test that RSA sizes outside the allowed set are rejected."""
        with pytest.raises(ValidationError):
            CryptoService.generate_private_key(KeyAlgorithm.RSA, key_size=1024)

    def test_describe_public_key(self):
        """Test algorithm, size and curve detection from a public key."""
        rsa_key = CryptoService.generate_private_key(KeyAlgorithm.RSA, key_size=2048)
        ec_key = CryptoService.generate_private_key(KeyAlgorithm.ECDSA, curve=ECDSACurve.P521)

        assert describe_public_key(rsa_key.public_key()) == (KeyAlgorithm.RSA, 2048, None)
        assert describe_public_key(ec_key.public_key()) == (KeyAlgorithm.ECDSA, None, ECDSACurve.P521)
