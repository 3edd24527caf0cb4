"""Caller identity resolution and capability checks."""

import logging
import secrets
from typing import Iterable, Optional, Union

import bcrypt

from subca.errors import AuthenticationError, AuthorizationError
from subca.models.auth import Capability, Identity
from subca.models.config import AuthSettings

logger = logging.getLogger("subca")


def require_capability(permissions: Iterable[Union[Capability, str]], capability: Capability) -> None:
    """
    Reject the operation unless ``capability`` is in ``permissions``.

    Args:
        permissions: Caller's resolved permission set
        capability: Capability the operation needs

    Raises:
        AuthorizationError: If the capability is missing
    """
    granted = {Capability(p) for p in permissions}
    if capability not in granted:
        raise AuthorizationError(f"Missing capability: {capability.value}")


class IdentityProvider:
    """Resolves bearer tokens to identities from the configured token list."""

    def __init__(self, auth_settings: AuthSettings):
        """
        Initialize identity provider.

        Args:
            auth_settings: Authentication settings from config
        """
        self.settings = auth_settings
        if self.settings.enabled and not self.settings.api_tokens:
            logger.warning("Authentication enabled but no API tokens configured; every request will be rejected")

    @staticmethod
    def hash_token(token: str) -> str:
        """Hash an API token using bcrypt."""
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(token.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def generate_token() -> str:
        """Generate a new random API token."""
        return secrets.token_urlsafe(32)

    @property
    def is_enabled(self) -> bool:
        """Check if authentication is enabled."""
        return self.settings.enabled

    def default_identity(self) -> Identity:
        """Identity used while authentication is disabled."""
        return Identity(
            user_id=self.settings.default_user_id,
            username=self.settings.default_username,
            role=self.settings.default_role,
        )

    def resolve(self, token: Optional[str]) -> Identity:
        """
        Resolve a bearer token to an identity.

        Args:
            token: Raw bearer token, or None if the request carried none

        Returns:
            Caller identity

        Raises:
            AuthenticationError: If the token is missing or unknown
        """
        if not self.settings.enabled:
            return self.default_identity()
        if not token:
            raise AuthenticationError("Authentication required")

        candidate = token.encode("utf-8")
        for entry in self.settings.api_tokens:
            try:
                matched = bcrypt.checkpw(candidate, entry.token_hash.encode("utf-8"))
            except ValueError as e:
                logger.error(f"Invalid token hash configured for {entry.username}: {e}")
                continue
            if matched:
                return Identity(user_id=entry.user_id, username=entry.username, role=entry.role)

        logger.warning("Rejected request with unknown API token")
        raise AuthenticationError("Invalid API token")
