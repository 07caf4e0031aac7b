"""
Core types used across modules.

Base enums shared across the core library and the reload engine.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    This enum is used throughout the reload engine to classify errors and
    determine whether a failed cycle should be retried, degraded or dropped.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., network timeouts, 429/5xx responses)
        AUTH: Authorization failures (401/403 from the cluster API,
              revoked watch permissions)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., missing resources, malformed documents, bad settings)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
