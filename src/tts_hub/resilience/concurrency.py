"""
Process-Wide Concurrency Limiter.

Bounds how many provider calls are in flight at once, whether they come from
bulk-job worker threads or from asyncio tasks spawned by the GUI. Both paths
share a single Lock-protected counter, so the limit holds across them.

Backpressure Strategy:
    1. If a slot is free: take it immediately
    2. Otherwise wait (threads on a Condition, tasks by polling with
       asyncio.sleep) until a slot frees up or the timeout passes
    3. With ``max_queue`` set, callers beyond that many waiters are
       rejected immediately with LimiterQueueFull

A slot is released in a ``finally`` block by the caller that took it, so
success, exceptions and cancellation all give the slot back exactly once.

Usage:
    limiter = ConcurrencyLimiter(max_concurrent=5)

    audio = limiter.run(lambda: synthesize(text), timeout=30.0)

    audio = await limiter.run_async(lambda: synthesize_async(text), timeout=30.0)

    print(limiter.available_slots)
"""
from __future__ import annotations

import asyncio
import threading
import time
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterator, Optional, TypeVar

from tts_hub.core.config import Defaults
from tts_hub.core.errors import LimiterQueueFull, LimiterTimeout, OperationCancelled
from tts_hub.core.logging import debug, get_logger
from tts_hub.core.metrics import HubMetrics

_LOG = get_logger("tts-hub.concurrency")

T = TypeVar("T")

_WAIT_SLICE_S = 0.1
_ASYNC_POLL_S = 0.01


@dataclass
class LimiterStats:
    """Statistics for the concurrency limiter."""
    max_concurrent: int
    current_active: int
    current_waiting: int
    total_processed: int
    total_rejected: int

    @property
    def available_slots(self) -> int:
        return max(0, self.max_concurrent - self.current_active)


class ConcurrencyLimiter:
    """
    Counting limiter shared by threads and asyncio tasks.

    Attributes:
        max_concurrent: Number of slots.
        max_queue: Maximum waiters before rejection (0 = unbounded).
        default_timeout: Wait used when a call passes no timeout.
    """

    def __init__(
        self,
        max_concurrent: int = Defaults.CONCURRENCY_MAX_CONCURRENT,
        max_queue: int = Defaults.CONCURRENCY_MAX_QUEUE,
        default_timeout: float = Defaults.CONCURRENCY_TIMEOUT_S,
        metrics: Optional[HubMetrics] = None,
    ):
        if max_concurrent <= 0:
            raise ValueError(f"max_concurrent must be positive, got {max_concurrent}")

        self.max_concurrent = int(max_concurrent)
        self.max_queue = int(max_queue)
        self.default_timeout = float(default_timeout)
        self._metrics = metrics

        self._lock = threading.Lock()
        self._condition = threading.Condition(self._lock)

        self._active = 0
        self._waiting = 0
        self._total_processed = 0
        self._total_rejected = 0

    @property
    def available_slots(self) -> int:
        with self._lock:
            return self.max_concurrent - self._active

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active

    @property
    def waiting_count(self) -> int:
        with self._lock:
            return self._waiting

    def stats(self) -> LimiterStats:
        with self._lock:
            return LimiterStats(
                max_concurrent=self.max_concurrent,
                current_active=self._active,
                current_waiting=self._waiting,
                total_processed=self._total_processed,
                total_rejected=self._total_rejected,
            )

    # ------------------------------------------------------------------
    # Slot bookkeeping (caller holds self._lock)
    # ------------------------------------------------------------------

    def _enqueue_locked(self) -> None:
        if self.max_queue and self._waiting >= self.max_queue:
            self._total_rejected += 1
            raise LimiterQueueFull(
                f"queue full ({self._waiting} waiting)",
                {"max_queue": self.max_queue},
            )
        self._waiting += 1

    def _timeout_locked(self, timeout: float) -> LimiterTimeout:
        self._waiting -= 1
        self._total_rejected += 1
        return LimiterTimeout(
            f"timeout after {timeout}s waiting for a provider slot",
            {"timeout_s": timeout, "max_concurrent": self.max_concurrent},
        )

    def _release(self) -> None:
        with self._condition:
            self._active -= 1
            self._total_processed += 1
            active = self._active
            self._condition.notify()
        self._publish(active)

    def _publish(self, active: int) -> None:
        if self._metrics is not None:
            self._metrics.set_inflight(active)

    # ------------------------------------------------------------------
    # Sync path
    # ------------------------------------------------------------------

    @contextmanager
    def slot(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[None]:
        """
        Hold one slot for the duration of a ``with`` block.

        Raises:
            LimiterTimeout: No slot within ``timeout``.
            LimiterQueueFull: Too many callers already waiting.
            OperationCancelled: ``cancel`` was set while waiting.
        """
        wait_s = self.default_timeout if timeout is None else float(timeout)
        deadline = time.monotonic() + wait_s

        with self._condition:
            if self._active >= self.max_concurrent:
                self._enqueue_locked()
                try:
                    while self._active >= self.max_concurrent:
                        if cancel is not None and cancel.is_set():
                            raise OperationCancelled("cancelled while waiting for a provider slot")
                        remaining = deadline - time.monotonic()
                        if remaining <= 0:
                            self._total_rejected += 1
                            raise LimiterTimeout(
                                f"timeout after {wait_s}s waiting for a provider slot",
                                {"timeout_s": wait_s, "max_concurrent": self.max_concurrent},
                            )
                        self._condition.wait(min(remaining, _WAIT_SLICE_S))
                finally:
                    self._waiting -= 1
            self._active += 1
            active = self._active

        self._publish(active)
        debug(_LOG, "slot_acquired", active=active, max_concurrent=self.max_concurrent)
        try:
            yield
        finally:
            self._release()

    def run(
        self,
        op: Callable[[], T],
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> T:
        """Run ``op`` while holding a slot and return its result."""
        with self.slot(timeout=timeout, cancel=cancel):
            return op()

    # ------------------------------------------------------------------
    # Async path
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def slot_async(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> AsyncIterator[None]:
        """
        Async counterpart of slot(), sharing the same counter.

        Cancelling the awaiting task while it waits withdraws it from the
        queue; cancelling it while it holds the slot releases the slot.
        Setting ``cancel`` while waiting raises OperationCancelled.
        """
        wait_s = self.default_timeout if timeout is None else float(timeout)

        with self._lock:
            if self._active >= self.max_concurrent:
                self._enqueue_locked()
            else:
                # free slot: the first loop pass takes it, the queue bound does not apply
                self._waiting += 1

        start = time.monotonic()
        try:
            while True:
                with self._lock:
                    if self._active < self.max_concurrent:
                        self._waiting -= 1
                        self._active += 1
                        active = self._active
                        break
                    if cancel is not None and cancel.is_set():
                        self._waiting -= 1
                        raise OperationCancelled("cancelled while waiting for a provider slot")
                    if time.monotonic() - start >= wait_s:
                        raise self._timeout_locked(wait_s)
                await asyncio.sleep(_ASYNC_POLL_S)
        except asyncio.CancelledError:
            with self._lock:
                self._waiting -= 1
            raise

        self._publish(active)
        try:
            yield
        finally:
            self._release()

    async def run_async(
        self,
        op: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> T:
        """Await ``op()`` while holding a slot and return its result."""
        async with self.slot_async(timeout=timeout, cancel=cancel):
            return await op()
