"""
Unified exception hierarchy for the configuration reload engine.

Provides typed exceptions with retry classification so that a failing
resolution cycle can decide between dropping a source, backing off,
degrading a watcher, or giving up.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class ReloadError(Exception):
    """
    Base exception for all reload engine errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Startup / Settings Errors
# =============================================================================


class ConfigurationError(ReloadError):
    """Startup settings are missing or inconsistent."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Resource Errors
# =============================================================================


class NotFoundError(ReloadError):
    """Named resource does not exist. The source contributes nothing."""

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        kind: str,
        name: str,
        namespace: str,
        cause: Exception | None = None,
    ):
        super().__init__(
            f"{kind} '{name}' not found in namespace '{namespace}'",
            cause,
            {"source_kind": kind, "source_name": name, "namespace": namespace},
        )
        self.kind = kind
        self.name = name
        self.namespace = namespace


class ParseError(ReloadError):
    """Embedded document in a resource or mounted file could not be parsed."""

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        source: str,
        key: str,
        message: str,
        cause: Exception | None = None,
    ):
        super().__init__(
            f"Cannot parse '{key}' of {source}: {message}",
            cause,
            {"source": source, "key": key},
        )
        self.source = source
        self.key = key


# =============================================================================
# Cluster API Errors
# =============================================================================


class AuthorizationError(ReloadError):
    """Watch, list or get was denied by the cluster API."""

    category = ErrorCategory.AUTH


class TransportError(ReloadError):
    """Transient failure talking to the cluster API."""

    category = ErrorCategory.TRANSIENT


class ThrottlingError(TransportError):
    """Rate limited (429) - should back off."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after  # Seconds to wait if provided


# =============================================================================
# Dispatch Errors
# =============================================================================


class DispatchError(ReloadError):
    """A reload strategy action raised."""

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        strategy: str,
        cause: Exception | None = None,
    ):
        super().__init__(
            f"Reload strategy '{strategy}' failed",
            cause,
            {"strategy": strategy},
        )
        self.strategy = strategy


# =============================================================================
# Error Classification Utilities
# =============================================================================

# Markers for string-based detection (fallback for non-ReloadError exceptions)
AUTH_ERROR_MARKERS = frozenset(
    {
        "401",
        "403",
        "unauthorized",
        "forbidden",
        "authentication",
        "token expired",
        "invalid token",
    }
)

TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "429",
        "500",
        "502",
        "503",
        "504",
        "timeout",
        "timed out",
        "connection",
        "throttl",
        "too many requests",
        "temporarily unavailable",
        "service unavailable",
    }
)


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code from the cluster API into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code in (401, 403):
        return ErrorCategory.AUTH

    if status_code in (408, 429):
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT  # Client errors, won't fix with retry

    if status_code >= 500:
        return ErrorCategory.TRANSIENT  # Server errors, may recover

    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    # Already classified
    if isinstance(exc, ReloadError):
        return exc.category

    status = getattr(exc, "status", None)
    if isinstance(status, int):
        category = classify_http_status(status)
        if category != ErrorCategory.UNKNOWN:
            return category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    # Connection errors
    connection_markers = (
        "connectionerror",
        "connection refused",
        "connection reset",
        "connection aborted",
        "remotedisconnected",
        "protocolerror",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    if any(m in exc_str for m in AUTH_ERROR_MARKERS):
        return ErrorCategory.AUTH

    if any(m in exc_str for m in TRANSIENT_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT

    if "404" in exc_str or "not found" in exc_str:
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def _retry_after_seconds(exc: Exception) -> float | None:
    """Seconds from a Retry-After header on the exception (ApiException.headers)."""
    headers = getattr(exc, "headers", None)
    if not headers:
        return None
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        # HTTP-date form is not used by the API server
        return None


def wrap_exception(exc: Exception, context: dict | None = None) -> ReloadError:
    """Wrap a generic exception in appropriate ReloadError subclass."""
    if isinstance(exc, ReloadError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    exc_str = str(exc).lower()
    context = context or {}

    status = getattr(exc, "status", None)
    if isinstance(status, int):
        context["http_status"] = status

    if category == ErrorCategory.AUTH:
        return AuthorizationError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.TRANSIENT:
        if status == 429 or "429" in exc_str or "throttl" in exc_str:
            return ThrottlingError(
                str(exc),
                retry_after=_retry_after_seconds(exc),
                cause=exc,
                context=context,
            )
        return TransportError(str(exc), cause=exc, context=context)

    return ReloadError(str(exc), cause=exc, context=context)
