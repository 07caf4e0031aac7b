"""
Retry utilities with exception-aware handling.

Uses the exception hierarchy to make retry decisions:
- Transient errors: retry with exponential backoff
- Authorization errors: fail immediately (retrying will not grant access)
- Permanent errors: fail immediately (no retry)
"""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps

from core.errors.exceptions import ReloadError, ThrottlingError, wrap_exception

logger = logging.getLogger(__name__)


def _log_retry_failure(func_name: str, error: ReloadError, config: "RetryConfig") -> None:
    """Log a non-retryable error or exhausted retries."""
    extra = {
        "operation": func_name,
        "error_type": type(error).__name__,
        "error_category": error.category.value,
        "error_message": str(error)[:200],
    }
    if not error.is_retryable:
        logger.warning("Non-retryable error for %s", func_name, extra=extra)
        return
    logger.error(
        "Max retries exhausted for %s",
        func_name,
        extra={**extra, "max_attempts": config.max_attempts},
    )


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)

    def get_delay(self, attempt: int, error: Exception | None = None) -> float:
        """
        Calculate delay with equal jitter to prevent thundering herd.

        A ThrottlingError carrying the server's Retry-After wins over the
        computed backoff (still capped at ``max_delay``).

        Args:
            attempt: 0-indexed attempt number
            error: Optional exception to check for retry_after
        """
        if isinstance(error, ThrottlingError) and error.retry_after:
            return min(error.retry_after, self.max_delay)

        base_delay = self.base_delay * (self.exponential_base**attempt)

        # Equal jitter: half fixed, half random
        jitter = random.uniform(0, base_delay / 2)
        delay = (base_delay / 2) + jitter

        return min(delay, self.max_delay)

    def should_retry(self, error: ReloadError, attempt: int) -> bool:
        if attempt >= self.max_attempts - 1:
            return False
        return error.is_retryable


# Cluster API reads: a few quick attempts, the watcher backs off beyond that
FETCH_RETRY = RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)


def with_retry_async(config: RetryConfig):
    """
    Decorator for retrying async functions with backoff.

    Exceptions that are not ReloadErrors are wrapped via wrap_exception, so
    callers only ever see the reload error taxonomy.

    Usage:
        @with_retry_async(config=FETCH_RETRY)
        async def read_config_map(name, namespace):
            ...
    """

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    wrapped = wrap_exception(e)
                    if not config.should_retry(wrapped, attempt):
                        _log_retry_failure(func.__name__, wrapped, config)
                        if wrapped is not e:
                            raise wrapped from e
                        raise

                    delay = config.get_delay(attempt, wrapped)
                    logger.warning(
                        "Retryable error for %s, will retry",
                        func.__name__,
                        extra={
                            "operation": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": config.max_attempts,
                            "error_category": wrapped.category.value,
                            "delay_seconds": round(delay, 2),
                            "error_message": str(e)[:200],
                        },
                    )
                    await asyncio.sleep(delay)
                    continue

                if attempt > 0:
                    logger.info(
                        "Retry succeeded for %s after %d attempts",
                        func.__name__,
                        attempt + 1,
                        extra={"operation": func.__name__, "total_attempts": attempt + 1},
                    )
                return result

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "with_retry_async",
    "FETCH_RETRY",
]
