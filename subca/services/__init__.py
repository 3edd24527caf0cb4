"""Service layer for business logic.

Only store-independent services are re-exported here; the persistence layer
imports ``yaml_service`` through this package.
"""

from .crypto_service import CryptoService
from .parser_service import CertificateParser
from .yaml_service import YAMLService

__all__ = [
    "YAMLService",
    "CryptoService",
    "CertificateParser",
]
