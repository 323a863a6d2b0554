"""
Provider-Aware Failure Classification.

Turns whatever a provider call raised (httpx errors, timeouts, or a
ProviderError raised by the provider module itself) into an
ErrorClassification: a stable code, a message for the end user and a
retryable flag. The retry invoker decides from the flag alone.

Classification table:
    Each provider id may register its own classifier function. Providers
    without an entry use the generic classifier, which treats every failure
    as transient and retryable. "azure" and "elevenlabs" ship with HTTP
    status mappings:

        401 -> AUTH_FAILED     (not retried)
        403 -> QUOTA_EXCEEDED  (not retried)
        400 -> BAD_REQUEST     (not retried)
        429 -> RATE_LIMITED    (retried)
        anything else          -> TRANSIENT (retried)

    A ProviderError raised by provider code keeps its own code and flag
    whichever classifier is registered.

Example:
    >>> classifier = ErrorClassifier()
    >>> classifier.register("polly", my_polly_classifier)
    >>> classifier.classify(exc, "azure")
    ErrorClassification(code='RATE_LIMITED', user_message='...', retryable=True)
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type

import httpx

from tts_hub.core.errors import (
    AuthenticationError,
    ErrorCode,
    ProviderError,
    QuotaExceededError,
    TransientProviderError,
    ValidationError,
)


@dataclass(frozen=True)
class ErrorClassification:
    """Outcome of classifying one failure."""
    code: str
    user_message: str
    retryable: bool

    def to_exception(self, provider: str, cause: BaseException) -> ProviderError:
        """Build the taxonomy exception that carries this classification."""
        exc_type = _EXCEPTION_FOR_CODE.get(self.code)
        message = f"{provider}: {cause}" if str(cause) else f"{provider}: {type(cause).__name__}"
        details = {"cause": type(cause).__name__}
        if exc_type is None:
            return TransientProviderError(
                message,
                provider,
                code=self.code,
                user_message=self.user_message,
                retryable=self.retryable,
                details=details,
            )
        return exc_type(
            message,
            provider,
            user_message=self.user_message,
            retryable=self.retryable,
            details=details,
        )


_EXCEPTION_FOR_CODE: Dict[str, Type[ProviderError]] = {
    ErrorCode.AUTH_FAILED: AuthenticationError,
    ErrorCode.QUOTA_EXCEEDED: QuotaExceededError,
    ErrorCode.BAD_REQUEST: ValidationError,
}

ClassifierFunc = Callable[[BaseException], ErrorClassification]


def status_code_of(exc: BaseException) -> Optional[int]:
    """HTTP status carried by an exception, if any."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def generic_classifier(exc: BaseException) -> ErrorClassification:
    """Default entry: every failure is a transient, retryable blip."""
    if isinstance(exc, ProviderError):
        return ErrorClassification(exc.code, exc.user_message, exc.retryable)
    return ErrorClassification(
        ErrorCode.TRANSIENT,
        "The speech service is temporarily unavailable. Retrying may help.",
        True,
    )


def http_status_classifier(display_name: str, messages: Optional[Dict[int, str]] = None) -> ClassifierFunc:
    """
    Build a classifier mapping HTTP statuses for one provider.

    Args:
        display_name: Provider name shown in user messages.
        messages: Optional per-status user message overrides.
    """
    overrides = messages or {}

    def classify(exc: BaseException) -> ErrorClassification:
        if isinstance(exc, ProviderError):
            return ErrorClassification(exc.code, exc.user_message, exc.retryable)

        status = status_code_of(exc)
        if status == 401:
            return ErrorClassification(
                ErrorCode.AUTH_FAILED,
                overrides.get(401, f"{display_name} rejected the API key. Check your credentials."),
                False,
            )
        if status == 403:
            return ErrorClassification(
                ErrorCode.QUOTA_EXCEEDED,
                overrides.get(403, f"{display_name} quota exceeded or access denied."),
                False,
            )
        if status == 400:
            return ErrorClassification(
                ErrorCode.BAD_REQUEST,
                overrides.get(400, f"{display_name} rejected the request. Check the text and voice settings."),
                False,
            )
        if status == 429:
            return ErrorClassification(
                ErrorCode.RATE_LIMITED,
                overrides.get(429, f"{display_name} is rate limiting requests. Retrying shortly."),
                True,
            )
        if isinstance(exc, httpx.TimeoutException):
            return ErrorClassification(
                ErrorCode.TRANSIENT,
                f"{display_name} did not answer in time.",
                True,
            )
        if isinstance(exc, httpx.TransportError):
            return ErrorClassification(
                ErrorCode.TRANSIENT,
                f"Could not reach {display_name}. Check your network connection.",
                True,
            )
        return ErrorClassification(
            ErrorCode.TRANSIENT,
            f"{display_name} failed unexpectedly" + (f" (HTTP {status})." if status else "."),
            True,
        )

    return classify


class ErrorClassifier:
    """
    Registerable provider id -> classifier function table.

    Thread-safe: classifiers can be registered while workers classify.
    """

    def __init__(self, default: ClassifierFunc = generic_classifier, builtins: bool = True):
        self._default = default
        self._table: Dict[str, ClassifierFunc] = {}
        self._lock = threading.Lock()
        if builtins:
            self.register("azure", http_status_classifier(
                "Azure Speech",
                {403: "Azure Speech quota exceeded for this subscription tier."},
            ))
            self.register("elevenlabs", http_status_classifier(
                "ElevenLabs",
                {403: "ElevenLabs character quota exhausted for this billing period."},
            ))

    def register(self, provider: str, func: ClassifierFunc) -> None:
        with self._lock:
            self._table[provider] = func

    def unregister(self, provider: str) -> None:
        with self._lock:
            self._table.pop(provider, None)

    def registered(self) -> list[str]:
        with self._lock:
            return sorted(self._table)

    def classify(self, exc: BaseException, provider: str) -> ErrorClassification:
        """Classify a failure raised by a call to ``provider``."""
        with self._lock:
            func = self._table.get(provider, self._default)
        return func(exc)
