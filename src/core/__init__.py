"""
Core library: Reusable, infrastructure-agnostic components.

Shared by the reload engine and its entry points.

Modules:
    resilience  - Retry with exponential backoff and jitter
    logging     - Structured JSON logging with cycle IDs
    errors      - Error classification and exception hierarchy

Design Principles:
    - No dependencies on the cluster client or the consuming application
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
