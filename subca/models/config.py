"""Application configuration models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .auth import Role


class AppSettings(BaseModel):
    """Application settings."""

    title: str = "SubCA"
    version: str = "1.0.0"
    debug: bool = False


class PathSettings(BaseModel):
    """Path settings."""

    data_dir: str = "./ca-data"
    logs: str = "./logs"


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str = "./logs/subca.log"


class APIToken(BaseModel):
    """Bearer token accepted by the API. Only the bcrypt hash is stored."""

    user_id: str
    username: str
    role: Role = Role.VIEWER
    token_hash: str


class AuthSettings(BaseModel):
    """Authentication settings."""

    enabled: bool = True
    api_tokens: list[APIToken] = []
    # Identity assumed for every request while auth is disabled
    default_user_id: str = "local-admin"
    default_username: str = "admin"
    default_role: Role = Role.ADMIN


class SecuritySettings(BaseModel):
    """Key protection settings."""

    # Replaced by the SUBCA_KEY_SECRET environment variable when loading config
    key_encryption_secret: Optional[str] = None


class IssuanceSettings(BaseModel):
    """Certificate issuance settings."""

    serial_max_attempts: int = Field(default=10, ge=1)
    enforce_unique_common_name: bool = True
    default_validity_days: int = Field(default=365, ge=1)
    max_common_name_length: int = 64


class CRLSettings(BaseModel):
    """CRL generation settings."""

    next_update_hours: int = Field(default=24, ge=1)


class OCSPSettings(BaseModel):
    """OCSP responder settings."""

    response_validity_seconds: int = Field(default=3600, ge=1)
    signer_validity_days: int = Field(default=30, ge=1)


class SMTPEncryption(str, Enum):
    """SMTP transport security."""

    NONE = "none"
    SSL = "ssl"
    STARTTLS = "starttls"


class SMTPSettings(BaseModel):
    """SMTP server settings."""

    enabled: bool = False
    host: str = "localhost"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    encryption: SMTPEncryption = SMTPEncryption.STARTTLS
    sender_email: str = "pki@localhost"
    sender_name: str = "SubCA"
    timeout_seconds: int = 30


class WebhookSettings(BaseModel):
    """Single webhook endpoint."""

    url: str
    secret: Optional[str] = None  # HMAC-SHA256 signing secret
    timeout_seconds: int = 10
    events: list[str] = []  # empty means all events


class NotificationSettings(BaseModel):
    """Post-commit event notification settings."""

    enabled: bool = False
    max_workers: int = Field(default=4, ge=1)
    events: list[str] = [
        "CERTIFICATE_ISSUED",
        "CERTIFICATE_RENEWED",
        "CERTIFICATE_REVOKED",
        "CRL_GENERATED",
    ]
    webhooks: list[WebhookSettings] = []
    recipients: list[str] = []


class AppConfig(BaseModel):
    """Main application configuration."""

    app: AppSettings = AppSettings()
    paths: PathSettings = PathSettings()
    logging: LoggingSettings = LoggingSettings()
    auth: AuthSettings = AuthSettings()
    security: SecuritySettings = SecuritySettings()
    issuance: IssuanceSettings = IssuanceSettings()
    crl: CRLSettings = CRLSettings()
    ocsp: OCSPSettings = OCSPSettings()
    notifications: NotificationSettings = NotificationSettings()
    smtp: SMTPSettings = SMTPSettings()
