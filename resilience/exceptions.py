"""
Custom exception hierarchy for the resilience layer.
Provides structured error handling with user-friendly messages and proper categorization.

Exceptions raised at a capture point (HTTP transport, local store) carry an
``error_kind`` tag so the classifier never has to guess from message text.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(str, Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification."""

    EXTERNAL_SERVICE = "external_service"
    NETWORK = "network"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


class ResilienceError(Exception):
    """Base error with user-facing message, category and severity."""

    error_kind: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        user_message: Optional[str] = None,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.user_message = user_message or "An unexpected error occurred. Please try again."
        self.category = category or ErrorCategory.SYSTEM
        self.severity = severity or ErrorSeverity.MEDIUM
        self.details = details or {}
        self.error_code = error_code or type(self).__name__
        self.cause = cause

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "category": self.category.value,
            "severity": self.severity.value,
            "error_kind": self.error_kind,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


# Remote API errors
class RemoteAPIError(ResilienceError):
    """Base class for failures talking to the remote REST API."""

    error_kind = "NETWORK"

    def __init__(self, message: str, url: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("user_message", "Network connection issue. Please check your internet connection.")
        kwargs.setdefault("category", ErrorCategory.NETWORK)
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        super().__init__(message, **kwargs)
        self.url = url
        if url:
            self.details.setdefault("url", url)


class HttpStatusError(RemoteAPIError):
    """Remote API answered with a non-2xx status."""

    def __init__(self, status: int, url: str, reason: str = "", **kwargs: Any):
        kwargs.setdefault(
            "user_message",
            "Unable to fetch repository data. This might be due to network restrictions or rate limiting.",
        )
        kwargs.setdefault("category", ErrorCategory.EXTERNAL_SERVICE)
        super().__init__(f"HTTP {status}{': ' + reason if reason else ''}", url=url, **kwargs)
        self.status = status
        self.details["status"] = status


class NotFoundError(HttpStatusError):
    """Requested resource does not exist (permanent)."""

    def __init__(self, url: str, **kwargs: Any):
        super().__init__(404, url, reason="Repository not found", severity=ErrorSeverity.LOW, **kwargs)


class RateLimitedError(HttpStatusError):
    """Rate limit exceeded (403/429)."""

    def __init__(self, url: str, status: int = 403, reset_at: Optional[float] = None, **kwargs: Any):
        super().__init__(status, url, reason="API rate limit exceeded", **kwargs)
        self.reset_at = reset_at
        if reset_at is not None:
            self.details["reset_at"] = reset_at


class TransportFailure(RemoteAPIError):
    """Connection refused, DNS failure, timeout or other transport-level problem."""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs: Any):
        super().__init__(f"Failed to fetch: {message}", url=url, **kwargs)


class FetchFailedError(ResilienceError):
    """All attempts for a remote call failed and no fallback was available."""

    def __init__(self, key: str, record: Any, attempts: int, **kwargs: Any):
        kwargs.setdefault("user_message", "A background operation failed. Some features may be temporarily unavailable.")
        kwargs.setdefault("category", ErrorCategory.EXTERNAL_SERVICE)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            f"Remote call '{key}' failed "
            f"after {attempts} attempt(s): {record.message}",
            details={"key": key, "signature": record.signature, "attempts": attempts},
            **kwargs,
        )
        self.key = key
        self.record = record
        self.attempts = attempts
        self.error_kind = record.kind.value
        # set once the recovery orchestrator has applied its policy to ``record``
        self.handled = False


class InFlightLimitError(ResilienceError):
    """The bounded in-flight map is full."""

    def __init__(self, key: str, limit: int, **kwargs: Any):
        super().__init__(
            f"Too many concurrent remote calls (limit {limit}); rejected '{key}'",
            user_message="The system is temporarily overloaded. Please try again later.",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.HIGH,
            details={"key": key, "limit": limit},
            **kwargs,
        )


class LocalStoreError(ResilienceError):
    """Local key-value storage is unavailable or rejected an operation."""

    error_kind = "RUNTIME"

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message,
            user_message="Local preferences could not be saved.",
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class ConfigurationError(ResilienceError):
    """Invalid configuration for a setting."""

    def __init__(self, setting: str, **kwargs: Any):
        super().__init__(
            f"Invalid configuration for setting: {setting}",
            user_message="System configuration error. Please contact support.",
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            details={"setting": setting},
            **kwargs,
        )
