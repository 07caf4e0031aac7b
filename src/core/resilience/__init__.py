"""
Resilience patterns module.

Provides fault tolerance primitives for talking to the cluster API.

Components:
    - RetryConfig: Exponential backoff configuration
    - @with_retry_async decorator: Retry with jitter
    - FETCH_RETRY: cluster API read policy
"""

from .retry import (
    FETCH_RETRY,
    RetryConfig,
    with_retry_async,
)

__all__ = [
    "RetryConfig",
    "with_retry_async",
    "FETCH_RETRY",
]
