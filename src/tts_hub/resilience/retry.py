"""
Retry with Exponential Backoff.

RetryInvoker runs a unit of work and, when it fails with a failure the
ErrorClassifier marks retryable, sleeps and runs it again:

    attempt 1 fails -> sleep base_delay
    attempt 2 fails -> sleep base_delay * 2
    attempt 3 fails -> sleep base_delay * 4
    ...

There is no jitter. ``max_retries`` counts retries after the first attempt,
so the work runs at most ``max_retries + 1`` times.

Failures that are not retryable (bad credentials, exhausted quota, invalid
request) are raised at once as the matching ProviderError subclass. When
retries run out the last failure is raised as a ProviderError chained to the
original exception.
"""
from __future__ import annotations

import asyncio
import threading
import time
from typing import Awaitable, Callable, Optional, TypeVar

from tts_hub.core.config import Defaults
from tts_hub.core.errors import OperationCancelled, ProviderError
from tts_hub.core.logging import get_logger, warn
from tts_hub.core.metrics import HubMetrics
from tts_hub.resilience.classifier import ErrorClassification, ErrorClassifier

_LOG = get_logger("tts-hub.retry")

T = TypeVar("T")

_ASYNC_POLL_S = 0.01


def backoff_delay(base_delay: float, attempt: int) -> float:
    """Delay in seconds after failed attempt number ``attempt`` (1-based)."""
    return base_delay * (2 ** (attempt - 1))


class RetryInvoker:
    """Bounded exponential-backoff retry around provider calls."""

    def __init__(
        self,
        classifier: Optional[ErrorClassifier] = None,
        metrics: Optional[HubMetrics] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.classifier = classifier or ErrorClassifier()
        self._metrics = metrics
        self._sleep = sleep

    def _raise_final(self, exc: Exception, classification: ErrorClassification, provider: str) -> None:
        if isinstance(exc, ProviderError):
            raise exc
        raise classification.to_exception(provider, exc) from exc

    def _note_retry(self, provider: str, attempt: int, attempts: int, classification: ErrorClassification, delay: float) -> None:
        warn(
            _LOG,
            "retry",
            provider=provider,
            attempt=attempt,
            of=attempts,
            error_code=classification.code,
            delay_ms=round(delay * 1000),
        )
        if self._metrics is not None:
            self._metrics.record_retry(provider, classification.code)

    def invoke(
        self,
        op: Callable[[], T],
        max_retries: int = Defaults.RETRY_MAX_RETRIES,
        base_delay: float = Defaults.RETRY_BASE_DELAY_MS / 1000.0,
        provider: str = "",
        cancel: Optional[threading.Event] = None,
    ) -> T:
        """
        Run ``op`` with retries.

        Args:
            op: Zero-argument callable doing the provider call.
            max_retries: Retries after the initial attempt.
            base_delay: Seconds to sleep before the first retry.
            provider: Provider id used for classification and logs.
            cancel: Optional event; setting it aborts the backoff sleep.

        Raises:
            ProviderError: Non-retryable failure, or retries exhausted.
            OperationCancelled: ``cancel`` was set.
        """
        if max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {max_retries}")

        attempts = max_retries + 1
        for attempt in range(1, attempts + 1):
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"{provider}: cancelled before attempt {attempt}")
            try:
                return op()
            except OperationCancelled:
                raise
            except Exception as exc:
                classification = self.classifier.classify(exc, provider)
                if not classification.retryable or attempt == attempts:
                    self._raise_final(exc, classification, provider)

                delay = backoff_delay(base_delay, attempt)
                self._note_retry(provider, attempt, attempts, classification, delay)
                if cancel is not None:
                    if cancel.wait(delay):
                        raise OperationCancelled(f"{provider}: cancelled during backoff") from exc
                else:
                    self._sleep(delay)

        raise AssertionError("unreachable")

    async def invoke_async(
        self,
        op: Callable[[], Awaitable[T]],
        max_retries: int = Defaults.RETRY_MAX_RETRIES,
        base_delay: float = Defaults.RETRY_BASE_DELAY_MS / 1000.0,
        provider: str = "",
        cancel: Optional[threading.Event] = None,
    ) -> T:
        """
        Async counterpart of invoke().

        Cancelling the awaiting task interrupts the backoff sleep; so does
        setting ``cancel``, which raises OperationCancelled.
        """
        if max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {max_retries}")

        attempts = max_retries + 1
        for attempt in range(1, attempts + 1):
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"{provider}: cancelled before attempt {attempt}")
            try:
                return await op()
            except OperationCancelled:
                raise
            except Exception as exc:
                classification = self.classifier.classify(exc, provider)
                if not classification.retryable or attempt == attempts:
                    self._raise_final(exc, classification, provider)

                delay = backoff_delay(base_delay, attempt)
                self._note_retry(provider, attempt, attempts, classification, delay)
                if cancel is not None:
                    if await _wait_event(cancel, delay):
                        raise OperationCancelled(f"{provider}: cancelled during backoff") from exc
                else:
                    await asyncio.sleep(delay)

        raise AssertionError("unreachable")


async def _wait_event(event: threading.Event, delay: float) -> bool:
    """Sleep up to ``delay`` seconds, waking early once ``event`` is set."""
    deadline = time.monotonic() + delay
    while not event.is_set():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        await asyncio.sleep(min(remaining, _ASYNC_POLL_S))
    return True
