"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- ReloadError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    AuthorizationError,
    ConfigurationError,
    DispatchError,
    # Enums
    ErrorCategory,
    NotFoundError,
    ParseError,
    # Base classes
    ReloadError,
    ThrottlingError,
    TransportError,
    classify_exception,
    classify_http_status,
    wrap_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "ReloadError",
    "ConfigurationError",
    "NotFoundError",
    "ParseError",
    "AuthorizationError",
    "TransportError",
    "ThrottlingError",
    "DispatchError",
    # Classification utilities
    "classify_http_status",
    "classify_exception",
    "wrap_exception",
]
