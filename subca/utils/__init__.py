"""Utility modules."""

from .logger import setup_logger
from .validators import sanitize_name, validate_common_name, validate_issue_request, validate_san

__all__ = ["setup_logger", "sanitize_name", "validate_common_name", "validate_issue_request", "validate_san"]
