"""FastAPI dependencies."""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Callable, Optional

from fastapi import Depends, Header

from subca.db.store import Store, YAMLStore
from subca.models.auth import Capability, Identity
from subca.models.config import AppConfig
from subca.services.audit_service import AuditService, AuditSink
from subca.services.auth_service import IdentityProvider, require_capability
from subca.services.ca_service import CAService
from subca.services.cert_service import CertificateIssuer
from subca.services.crl_service import RevocationManager
from subca.services.crypto_service import ENV_SECRET, CryptoService
from subca.services.notification_service import NotificationService
from subca.services.ocsp_service import OCSPResponder
from subca.services.serial_allocator import SerialAllocator
from subca.services.smtp_service import SMTPService
from subca.services.validator_service import CertificateValidator
from subca.services.yaml_service import YAMLService

logger = logging.getLogger("subca")

CONFIG_ENV = "SUBCA_CONFIG"


class Services:
    """The wired service graph for one store."""

    def __init__(self, config: AppConfig, store: Store, audit_sink: Optional[AuditSink] = None):
        """
        Wire every service against ``store``.

        Args:
            config: Application configuration
            store: Entity store shared by all services
            audit_sink: Destination for committed audit rows (logging by default)
        """
        self.config = config
        self.store = store
        self.crypto = CryptoService(config.security.key_encryption_secret)
        self.identity = IdentityProvider(config.auth)
        self.audit = AuditService(store, audit_sink)
        self.serials = SerialAllocator(store, config.issuance.serial_max_attempts)
        self.smtp = SMTPService(config.smtp)
        self.notifier = NotificationService(config.notifications, self.smtp)
        self.validator = CertificateValidator(store)
        self.issuer = CertificateIssuer(store, self.crypto, self.serials, self.audit, self.notifier, config.issuance)
        self.revocations = RevocationManager(store, self.crypto, self.audit, self.notifier, config.crl)
        self.ocsp = OCSPResponder(store, self.crypto, config.ocsp)
        self.ca = CAService(store, self.crypto, self.audit, self.validator, config, self.serials)

    def shutdown(self) -> None:
        self.notifier.shutdown()


@lru_cache
def get_config() -> AppConfig:
    """
    Get application configuration.

    Reads the file named by SUBCA_CONFIG, or ``config.yaml`` in the working
    directory. A missing file yields the built-in defaults. SUBCA_KEY_SECRET,
    when set, replaces the configured key encryption secret.

    Returns:
        Application configuration
    """
    config_path = Path(os.environ.get(CONFIG_ENV, "config.yaml"))
    if config_path.exists():
        config = AppConfig(**(YAMLService.load_yaml(config_path) or {}))
    else:
        logger.warning(f"{config_path} not found, using default configuration")
        config = AppConfig()

    env_secret = os.environ.get(ENV_SECRET)
    if env_secret:
        config.security.key_encryption_secret = env_secret
    return config


@lru_cache
def get_services() -> Services:
    """
    Get the application's service graph, backed by the YAML store.

    Returns:
        Wired services
    """
    config = get_config()
    return Services(config, YAMLStore(Path(config.paths.data_dir)))


def get_cert_issuer(services: Services = Depends(get_services)) -> CertificateIssuer:
    return services.issuer


def get_revocation_manager(services: Services = Depends(get_services)) -> RevocationManager:
    return services.revocations


def get_ocsp_responder(services: Services = Depends(get_services)) -> OCSPResponder:
    return services.ocsp


def get_validator(services: Services = Depends(get_services)) -> CertificateValidator:
    return services.validator


def get_ca_service(services: Services = Depends(get_services)) -> CAService:
    return services.ca


def get_audit_service(services: Services = Depends(get_services)) -> AuditService:
    return services.audit


def get_identity(
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> Identity:
    """
    Resolve the caller from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthenticationError: Missing or unknown token while auth is enabled
    """
    token = None
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer":
            token = value.strip()
    return services.identity.resolve(token)


def require(capability: Capability) -> Callable[..., Identity]:
    """
    Dependency factory for read endpoints guarded by a capability.

    Mutating services check capabilities themselves; this covers reads that
    go straight to the store.
    """

    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        require_capability(identity.permissions, capability)
        return identity

    return dependency
