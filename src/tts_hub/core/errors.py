"""
Error Taxonomy for tts-hub.

Every failure that leaves the resilience layer is expressed as a HubError
subclass carrying a stable error code. Provider failures additionally carry
the provider id, a user-facing message and a retryable flag, so the GUI or
bulk processor can present them without inspecting transport details.

Hierarchy:
    HubError
    ├── ProviderError
    │   ├── TransientProviderError   (retryable: network blips, 429, 5xx)
    │   ├── AuthenticationError      (fatal, never retried)
    │   ├── QuotaExceededError       (fatal for the session)
    │   └── ValidationError          (caller-input fault, never retried)
    ├── PoolAcquireTimeout
    ├── PoolClosedError
    ├── UnknownProviderError
    ├── LimiterTimeout
    ├── LimiterQueueFull
    └── OperationCancelled

Example:
    >>> try:
    ...     facade.acquire_connection("azure", timeout=2.0)
    ... except PoolAcquireTimeout as exc:
    ...     print(exc.to_dict())
    {'ok': False, 'error': 'POOL_TIMEOUT', 'message': '...'}
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """Stable error codes used in exceptions, logs and OperationResults."""
    AUTH_FAILED = "AUTH_FAILED"             # 401 from a provider
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"       # 403 / quota exhausted
    BAD_REQUEST = "BAD_REQUEST"             # 400 / invalid caller input
    RATE_LIMITED = "RATE_LIMITED"           # 429
    TRANSIENT = "TRANSIENT"                 # network blip, 5xx, unmapped
    POOL_TIMEOUT = "POOL_TIMEOUT"           # no connection within deadline
    POOL_CLOSED = "POOL_CLOSED"             # pool drained
    UNKNOWN_PROVIDER = "UNKNOWN_PROVIDER"   # provider never registered
    LIMITER_TIMEOUT = "LIMITER_TIMEOUT"     # no concurrency slot in time
    QUEUE_FULL = "QUEUE_FULL"               # too many waiters
    CANCELLED = "CANCELLED"                 # cancel signal observed
    INTERNAL_ERROR = "INTERNAL_ERROR"


class HubError(Exception):
    """
    Base exception for tts-hub errors.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode.
        details: Optional dictionary with additional context.
    """

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a serialisable error payload."""
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ProviderError(HubError):
    """
    A classified failure of a provider call.

    Attributes:
        provider: Provider identifier the call was routed to.
        user_message: Message suitable for showing to the end user.
        retryable: Whether the retry invoker may try the call again.
    """

    retryable_default = False

    def __init__(
        self,
        message: str,
        code: str,
        provider: str = "",
        user_message: Optional[str] = None,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code, details)
        self.provider = provider
        self.user_message = user_message or message
        self.retryable = self.retryable_default if retryable is None else retryable

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["provider"] = self.provider
        result["user_message"] = self.user_message
        result["retryable"] = self.retryable
        return result


class TransientProviderError(ProviderError):
    """Retryable provider failure (network blip, rate limit, server error)."""

    retryable_default = True

    def __init__(self, message: str, provider: str = "", code: str = ErrorCode.TRANSIENT, **kwargs: Any):
        super().__init__(message, code, provider, **kwargs)


class AuthenticationError(ProviderError):
    """Provider rejected the credentials. Never retried."""

    def __init__(self, message: str, provider: str = "", **kwargs: Any):
        super().__init__(message, ErrorCode.AUTH_FAILED, provider, **kwargs)


class QuotaExceededError(ProviderError):
    """Provider quota exhausted for this session. Never retried."""

    def __init__(self, message: str, provider: str = "", **kwargs: Any):
        super().__init__(message, ErrorCode.QUOTA_EXCEEDED, provider, **kwargs)


class ValidationError(ProviderError):
    """Provider rejected the request as malformed. Never retried."""

    def __init__(self, message: str, provider: str = "", **kwargs: Any):
        super().__init__(message, ErrorCode.BAD_REQUEST, provider, **kwargs)


class PoolAcquireTimeout(HubError):
    """Raised when no pooled connection became available before the deadline."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.POOL_TIMEOUT, details)


class PoolClosedError(HubError):
    """Raised when acquiring from a pool that has been drained."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.POOL_CLOSED, details)


class UnknownProviderError(HubError):
    """Raised when a provider has no registered pool."""

    def __init__(self, provider: str):
        super().__init__(
            f"no connection pool registered for provider '{provider}'",
            ErrorCode.UNKNOWN_PROVIDER,
            {"provider": provider},
        )
        self.provider = provider


class LimiterTimeout(HubError):
    """Raised when a concurrency slot was not granted before the deadline."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.LIMITER_TIMEOUT, details)


class LimiterQueueFull(HubError):
    """Raised when the limiter's waiting queue is at capacity."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.QUEUE_FULL, details)


class OperationCancelled(HubError):
    """Raised when a cancel signal is observed at a suspension point."""

    def __init__(self, message: str = "operation cancelled", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.CANCELLED, details)
