"""Pytest configuration and shared fixtures."""

from datetime import timedelta

import bcrypt
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from fastapi.testclient import TestClient

from subca.api.dependencies import Services
from subca.db.store import MemoryStore, YAMLStore
from subca.models.auth import Identity, Role
from subca.models.ca import CAInitRequest, KeyAlgorithm, Subject, utcnow
from subca.models.certificate import IssueCertificateRequest
from subca.models.config import APIToken, AppConfig, AuthSettings, PathSettings, SecuritySettings

TEST_SECRET = "test-key-encryption-secret"

ADMIN_TOKEN = "admin-token-for-tests"
OPERATOR_TOKEN = "operator-token-for-tests"
VIEWER_TOKEN = "viewer-token-for-tests"


class CollectingSink:
    """Audit sink that keeps emitted rows in memory."""

    def __init__(self):
        self.entries = []

    def emit(self, entry):
        self.entries.append(entry)


class RootCA:
    """Self-signed test root standing in for the parent of the subordinate CA."""

    def __init__(self):
        self.key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name(
            [
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Organization"),
                x509.NameAttribute(NameOID.COMMON_NAME, "Test Root CA"),
            ]
        )
        now = utcnow()
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=7300))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(self.ca_key_usage(), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(self.key.public_key()), critical=False)
            .sign(self.key, hashes.SHA256())
        )
        self.pem = self.cert.public_bytes(serialization.Encoding.PEM).decode("ascii")

    @staticmethod
    def ca_key_usage():
        return x509.KeyUsage(
            digital_signature=True,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=True,
            crl_sign=True,
            encipher_only=False,
            decipher_only=False,
        )

    def sign_csr(self, csr_pem: str, days: int = 3650, path_length=0, is_ca: bool = True, not_before=None) -> str:
        """Sign a subordinate CA CSR and return the certificate PEM."""
        csr = x509.load_pem_x509_csr(csr_pem.encode("ascii"))
        not_before = not_before or utcnow() - timedelta(minutes=5)
        builder = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(self.cert.subject)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_before + timedelta(days=days))
            .add_extension(x509.BasicConstraints(ca=is_ca, path_length=path_length if is_ca else None), critical=True)
            .add_extension(self.ca_key_usage(), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(csr.public_key()), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(self.key.public_key()), critical=False
            )
        )
        cert = builder.sign(self.key, hashes.SHA256())
        return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture(scope="session")
def root_ca():
    """Test root CA, shared by the whole session."""
    return RootCA()


@pytest.fixture
def config(tmp_path):
    """Application config with a test secret and auth disabled."""
    return AppConfig(
        paths=PathSettings(data_dir=str(tmp_path / "ca-data"), logs=str(tmp_path / "logs")),
        security=SecuritySettings(key_encryption_secret=TEST_SECRET),
        auth=AuthSettings(enabled=False),
    )


@pytest.fixture
def store():
    """Fresh in-memory store."""
    return MemoryStore()


@pytest.fixture
def yaml_store(tmp_path):
    """Fresh YAML-backed store in a temporary directory."""
    return YAMLStore(tmp_path / "yaml-store")


@pytest.fixture
def audit_sink():
    return CollectingSink()


@pytest.fixture
def services(config, store, audit_sink):
    """Fully wired services on the in-memory store."""
    wired = Services(config, store, audit_sink)
    yield wired
    wired.shutdown()


@pytest.fixture
def crypto(services):
    return services.crypto


@pytest.fixture
def ca_service(services):
    return services.ca


@pytest.fixture
def issuer(services):
    return services.issuer


@pytest.fixture
def revocations(services):
    return services.revocations


@pytest.fixture
def ocsp_responder(services):
    return services.ocsp


@pytest.fixture
def validator(services):
    return services.validator


@pytest.fixture
def admin():
    return Identity(user_id="admin-1", username="alice", role=Role.ADMIN)


@pytest.fixture
def operator():
    return Identity(user_id="operator-1", username="olga", role=Role.OPERATOR)


@pytest.fixture
def viewer():
    return Identity(user_id="viewer-1", username="victor", role=Role.VIEWER)


@pytest.fixture
def ca_init_request():
    """Initialization request for the test subordinate CA."""
    return CAInitRequest(
        name="issuing-ca",
        subject=Subject(common_name="Test Issuing CA", organization="Test Organization", country="US"),
        key_algorithm=KeyAlgorithm.ECDSA,
        crl_distribution_point="http://pki.example.com/crl/issuing-ca.crl",
        ocsp_url="http://pki.example.com/ocsp",
    )


@pytest.fixture
def pending_ca(ca_service, ca_init_request, admin):
    """Subordinate CA initialized but not yet activated."""
    return ca_service.init_ca(ca_init_request, admin)


@pytest.fixture
def active_ca(ca_service, pending_ca, root_ca, admin):
    """Subordinate CA activated with a certificate signed by the test root."""
    csr_pem = ca_service.generate_csr(pending_ca.id, admin)
    cert_pem = root_ca.sign_csr(csr_pem)
    return ca_service.activate(pending_ca.id, cert_pem, root_ca.pem, admin)


def make_issue_request(common_name="a.example.com", **overrides) -> IssueCertificateRequest:
    """Issuance request with sensible defaults."""
    fields = {
        "common_name": common_name,
        "subject_alt_names": [common_name],
        "certificate_type": "SERVER",
        "key_algorithm": "ECDSA",
        "curve": "P-256",
        "validity_days": 365,
    }
    fields.update(overrides)
    return IssueCertificateRequest(**fields)


@pytest.fixture
def issued(issuer, active_ca, operator):
    """One certificate issued from the active CA."""
    return issuer.issue(make_issue_request("issued.example.com"), operator)


def _token_entry(user_id, username, role, token):
    # Low bcrypt cost keeps the suite fast
    token_hash = bcrypt.hashpw(token.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")
    return APIToken(user_id=user_id, username=username, role=role, token_hash=token_hash)


@pytest.fixture
def client(services):
    """FastAPI test client on the in-memory services with auth disabled."""
    from main import app
    from subca.api.dependencies import get_services

    app.dependency_overrides[get_services] = lambda: services
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def client_with_auth(config, store, audit_sink):
    """FastAPI test client with bearer-token authentication enabled."""
    from main import app
    from subca.api.dependencies import get_services

    config.auth = AuthSettings(
        enabled=True,
        api_tokens=[
            _token_entry("admin-1", "alice", Role.ADMIN, ADMIN_TOKEN),
            _token_entry("operator-1", "olga", Role.OPERATOR, OPERATOR_TOKEN),
            _token_entry("viewer-1", "victor", Role.VIEWER, VIEWER_TOKEN),
        ],
    )
    wired = Services(config, store, audit_sink)
    app.dependency_overrides[get_services] = lambda: wired
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
    wired.shutdown()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Authorization headers per role, matching the tokens of ``client_with_auth``."""
    return {
        Role.ADMIN: bearer(ADMIN_TOKEN),
        Role.OPERATOR: bearer(OPERATOR_TOKEN),
        Role.VIEWER: bearer(VIEWER_TOKEN),
    }
