"""
Per-Provider Connection Pooling.

Each speech provider gets a bounded pool of reusable connections. A
Connection wraps a lazily created httpx.Client; pooling it keeps keep-alive
sockets and TLS sessions warm between synthesis calls.

Lifecycle:
    - ``min_size`` connections are created when the pool is built
    - acquire() reuses an idle connection, or creates one while the pool
      holds fewer than ``max_size``
    - connections older than ``max_age_seconds`` are never handed out
      again; they are disposed on acquire or release
    - release() puts a valid connection back, or disposes it

Waiting:
    When every connection is leased, acquire() waits on a condition
    variable. Waiters are served in arrival order and give up with
    PoolAcquireTimeout at the deadline, or with OperationCancelled when the
    caller's cancel event is set.

Example:
    >>> pool = ConnectionPool("azure", factory=lambda: Connection("azure"), min_size=2, max_size=4)
    >>> with pool.connection(timeout=5.0) as conn:
    ...     response = conn.client.post("/cognitiveservices/v1", content=ssml)
    >>> pool.stats().to_dict()
    {'total': 2, 'active': 0, 'available': 2, 'max': 4, 'min': 2}
"""
from __future__ import annotations

import asyncio
import threading
import time
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import (
    Callable,
    Deque,
    Dict,
    Generic,
    Iterator,
    List,
    Optional,
    Protocol,
    Set,
    TypeVar,
    runtime_checkable,
)

import httpx

from tts_hub.core.config import Defaults
from tts_hub.core.errors import (
    OperationCancelled,
    PoolAcquireTimeout,
    PoolClosedError,
    UnknownProviderError,
)
from tts_hub.core.logging import get_logger, info, verbose, warn
from tts_hub.core.metrics import HubMetrics

_LOG = get_logger("tts-hub.pool")

# Upper bound on a single condition wait, so cancel events are noticed promptly
_WAIT_SLICE_S = 0.1
_ASYNC_POLL_S = 0.01


@runtime_checkable
class PooledResource(Protocol):
    """Anything a ConnectionPool can manage."""

    def validate(self) -> bool: ...

    def dispose(self) -> None: ...


R = TypeVar("R", bound=PooledResource)


class Connection:
    """
    A reusable handle to one provider.

    Validity is age-based: a connection is valid while it is not disposed
    and younger than ``max_age_seconds``, however recently it was used.

    Attributes:
        id: Unique connection id.
        provider: Provider identifier.
        created_at: Unix timestamp of creation.
        last_used_at: Unix timestamp of the last lease.
        disposed: True once dispose() ran.
    """

    def __init__(
        self,
        provider: str,
        conn_id: Optional[str] = None,
        max_age_seconds: float = Defaults.POOL_MAX_AGE_SECONDS,
        client_factory: Optional[Callable[[], httpx.Client]] = None,
    ):
        self.id = conn_id or uuid.uuid4().hex
        self.provider = provider
        self.created_at = time.time()
        self.last_used_at = self.created_at
        self.max_age_seconds = float(max_age_seconds)
        self.disposed = False
        self._client_factory = client_factory
        self._client: Optional[httpx.Client] = None

    @property
    def age(self) -> float:
        """Seconds since creation."""
        return time.time() - self.created_at

    @property
    def client(self) -> httpx.Client:
        """The connection's HTTP client, created on first use."""
        if self.disposed:
            raise RuntimeError(f"connection {self.id[:8]} is disposed")
        if self._client is None:
            self._client = self._client_factory() if self._client_factory else httpx.Client()
        return self._client

    def touch(self) -> None:
        self.last_used_at = time.time()

    def validate(self) -> bool:
        return not self.disposed and self.age < self.max_age_seconds

    def dispose(self) -> None:
        """Mark disposed and close the HTTP client if one was opened."""
        if self.disposed:
            return
        self.disposed = True
        if self._client is not None:
            client, self._client = self._client, None
            client.close()

    def __repr__(self) -> str:
        return f"Connection(provider={self.provider!r}, id={self.id[:8]!r}, disposed={self.disposed})"


@dataclass
class PoolStats:
    """Snapshot of one pool."""
    provider: str
    total: int
    active: int
    available: int
    max: int
    min: int

    def to_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data.pop("provider")
        return data


class ConnectionPool(Generic[R]):
    """
    Thread-safe bounded pool of resources for one provider.

    Invariants (held under the pool lock):
        - current_size <= max_size
        - len(active) + len(available) <= current_size
        - a disposed resource is never handed out nor put back

    Resources must be hashable; Connection uses identity hashing.
    """

    def __init__(
        self,
        provider: str,
        factory: Callable[[], R],
        min_size: int = Defaults.POOL_MIN_SIZE,
        max_size: int = Defaults.POOL_MAX_SIZE,
        acquire_timeout: float = Defaults.POOL_ACQUIRE_TIMEOUT_S,
        metrics: Optional[HubMetrics] = None,
    ):
        """
        Build the pool and pre-create ``min_size`` resources.

        Args:
            provider: Provider identifier.
            factory: Zero-argument callable creating one resource.
            min_size: Resources created up front.
            max_size: Upper bound on live resources.
            acquire_timeout: Default wait in seconds when exhausted.
            metrics: Optional Prometheus export.

        Raises:
            ValueError: If the sizes are inconsistent.
        """
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        if not 0 <= min_size <= max_size:
            raise ValueError(f"min_size must be between 0 and max_size ({max_size}), got {min_size}")

        self.provider = provider
        self.min_size = int(min_size)
        self.max_size = int(max_size)
        self.acquire_timeout = float(acquire_timeout)
        self._factory = factory
        self._metrics = metrics

        self._lock = threading.Lock()
        self._condition = threading.Condition(self._lock)
        self._available: Deque[R] = deque()
        self._active: Set[R] = set()
        self._waiters: Deque[object] = deque()
        self._current_size = 0
        self._closed = False

        with self._lock:
            for _ in range(self.min_size):
                self._available.append(self._create_locked())

        info(_LOG, "pool_created", provider=provider, min_size=self.min_size, max_size=self.max_size)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def current_size(self) -> int:
        with self._lock:
            return self._current_size

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    @property
    def available_count(self) -> int:
        with self._lock:
            return len(self._available)

    @property
    def waiting_count(self) -> int:
        with self._lock:
            return len(self._waiters)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def stats(self) -> PoolStats:
        with self._lock:
            return PoolStats(
                provider=self.provider,
                total=self._current_size,
                active=len(self._active),
                available=len(self._available),
                max=self.max_size,
                min=self.min_size,
            )

    # ------------------------------------------------------------------
    # Internals (caller holds self._lock)
    # ------------------------------------------------------------------

    def _create_locked(self) -> R:
        self._current_size += 1
        try:
            return self._factory()
        except Exception:
            self._current_size -= 1
            raise

    def _discard_locked(self, resource: R) -> None:
        self._current_size -= 1
        try:
            resource.dispose()
        except Exception as exc:
            warn(_LOG, "dispose_failed", provider=self.provider, error=str(exc))

    def _lease_locked(self, resource: R) -> R:
        self._active.add(resource)
        touch = getattr(resource, "touch", None)
        if touch is not None:
            touch()
        return resource

    def _take_locked(self) -> Optional[R]:
        """One acquire attempt: reuse a valid idle resource, else create."""
        while self._available:
            resource = self._available.popleft()
            if resource.validate():
                return self._lease_locked(resource)
            self._discard_locked(resource)
            verbose(_LOG, "conn_expired", provider=self.provider)

        if self._current_size < self.max_size:
            return self._lease_locked(self._create_locked())
        return None

    def _check_open_locked(self) -> None:
        if self._closed:
            raise PoolClosedError(
                f"connection pool for '{self.provider}' is closed",
                {"provider": self.provider},
            )

    def _publish(self) -> None:
        if self._metrics is not None:
            self._metrics.set_pool_active(self.provider, self.active_count)

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def try_acquire(self) -> Optional[R]:
        """
        Non-blocking acquire.

        Returns None when the pool is exhausted or other callers are already
        queued for a connection.
        """
        with self._condition:
            self._check_open_locked()
            if self._waiters:
                return None
            resource = self._take_locked()

        if resource is not None:
            self._publish()
            verbose(_LOG, "conn_acquired", provider=self.provider)
        return resource

    def acquire(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> R:
        """
        Lease a resource, waiting while the pool is exhausted.

        Args:
            timeout: Seconds to wait (defaults to ``acquire_timeout``).
            cancel: Optional event; setting it aborts the wait.

        Raises:
            PoolAcquireTimeout: Nothing became available in time.
            OperationCancelled: ``cancel`` was set while waiting.
            PoolClosedError: The pool was drained.
        """
        wait_s = self.acquire_timeout if timeout is None else float(timeout)
        deadline = time.monotonic() + wait_s
        ticket = object()
        waited = False

        with self._condition:
            self._check_open_locked()
            resource = self._take_locked() if not self._waiters else None

            if resource is None:
                waited = True
                self._waiters.append(ticket)
                try:
                    while True:
                        if cancel is not None and cancel.is_set():
                            raise OperationCancelled(
                                f"acquire cancelled for '{self.provider}'",
                                {"provider": self.provider},
                            )
                        self._check_open_locked()
                        if self._waiters[0] is ticket:
                            resource = self._take_locked()
                            if resource is not None:
                                break
                        remaining = deadline - time.monotonic()
                        if remaining <= 0:
                            raise PoolAcquireTimeout(
                                f"no connection for '{self.provider}' within {wait_s:.1f}s",
                                {"provider": self.provider, "timeout_s": wait_s, "max": self.max_size},
                            )
                        self._condition.wait(min(remaining, _WAIT_SLICE_S))
                finally:
                    self._waiters.remove(ticket)
                    self._condition.notify_all()

        self._publish()
        verbose(_LOG, "conn_acquired", provider=self.provider, waited=waited)
        return resource

    async def acquire_async(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> R:
        """
        Asyncio variant of acquire().

        Polls try_acquire() between short sleeps, so the event loop is never
        blocked. Cancelling the awaiting task, or setting ``cancel``, aborts
        the wait.

        Raises:
            PoolAcquireTimeout: Nothing became available in time.
            OperationCancelled: ``cancel`` was set while waiting.
        """
        wait_s = self.acquire_timeout if timeout is None else float(timeout)
        start = time.monotonic()

        while True:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"cancelled while waiting for a '{self.provider}' connection")
            resource = self.try_acquire()
            if resource is not None:
                return resource
            if time.monotonic() - start >= wait_s:
                raise PoolAcquireTimeout(
                    f"no connection for '{self.provider}' within {wait_s:.1f}s",
                    {"provider": self.provider, "timeout_s": wait_s, "max": self.max_size},
                )
            await asyncio.sleep(_ASYNC_POLL_S)

    def release(self, resource: R) -> None:
        """
        Return a leased resource.

        Valid resources go back to the idle queue while it has room; invalid
        ones (or any resource of a closed pool) are disposed and no longer
        count towards the pool size. Releasing something that is not
        currently leased is ignored.
        """
        if resource is None:
            return

        with self._condition:
            if resource not in self._active:
                unknown = True
                recycled = False
            else:
                unknown = False
                self._active.discard(resource)
                recycled = (
                    not self._closed
                    and resource.validate()
                    and len(self._available) < self.max_size
                )
                if recycled:
                    self._available.append(resource)
                else:
                    self._discard_locked(resource)
                self._condition.notify_all()

        if unknown:
            warn(_LOG, "release_unknown", provider=self.provider)
            return

        self._publish()
        if recycled:
            verbose(_LOG, "conn_released", provider=self.provider)
        else:
            verbose(_LOG, "conn_disposed", provider=self.provider)

    @contextmanager
    def connection(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[R]:
        """Acquire a resource for the duration of a ``with`` block."""
        resource = self.acquire(timeout=timeout, cancel=cancel)
        try:
            yield resource
        finally:
            self.release(resource)

    def drain(self) -> int:
        """
        Close the pool.

        Idle resources are disposed immediately; leased ones are disposed
        when they are released. Waiters fail with PoolClosedError.

        Returns:
            Number of idle resources disposed.
        """
        with self._condition:
            self._closed = True
            idle = list(self._available)
            self._available.clear()
            for resource in idle:
                self._discard_locked(resource)
            self._condition.notify_all()

        info(_LOG, "pool_drained", provider=self.provider, disposed=len(idle))
        return len(idle)


class PoolRegistry(Generic[R]):
    """
    Provider id -> ConnectionPool mapping.

    Example:
        registry = PoolRegistry()
        registry.register("azure", lambda: Connection("azure"), min_size=2, max_size=10)
        with registry.get("azure").connection() as conn:
            ...
    """

    def __init__(self, metrics: Optional[HubMetrics] = None):
        self._pools: Dict[str, ConnectionPool[R]] = {}
        self._lock = threading.Lock()
        self._metrics = metrics

    def register(
        self,
        provider: str,
        factory: Callable[[], R],
        min_size: int = Defaults.POOL_MIN_SIZE,
        max_size: int = Defaults.POOL_MAX_SIZE,
        acquire_timeout: float = Defaults.POOL_ACQUIRE_TIMEOUT_S,
    ) -> ConnectionPool[R]:
        """
        Create and register the pool for a provider.

        Raises:
            ValueError: If the provider already has a pool.
        """
        with self._lock:
            if provider in self._pools:
                raise ValueError(f"provider '{provider}' already has a connection pool")
            pool = ConnectionPool(
                provider,
                factory,
                min_size=min_size,
                max_size=max_size,
                acquire_timeout=acquire_timeout,
                metrics=self._metrics,
            )
            self._pools[provider] = pool
            return pool

    def unregister(self, provider: str) -> None:
        """Drain and forget a provider's pool."""
        with self._lock:
            pool = self._pools.pop(provider, None)
        if pool is None:
            raise UnknownProviderError(provider)
        pool.drain()

    def get(self, provider: str) -> ConnectionPool[R]:
        with self._lock:
            pool = self._pools.get(provider)
        if pool is None:
            raise UnknownProviderError(provider)
        return pool

    def __contains__(self, provider: object) -> bool:
        with self._lock:
            return provider in self._pools

    def providers(self) -> List[str]:
        with self._lock:
            return list(self._pools)

    def stats(self) -> Dict[str, PoolStats]:
        with self._lock:
            pools = list(self._pools.items())
        return {name: pool.stats() for name, pool in pools}

    def utilization(self) -> float:
        """Sum of leased over sum of live connections, as a percentage."""
        stats = self.stats().values()
        total = sum(s.total for s in stats)
        if total == 0:
            return 0.0
        return sum(s.active for s in stats) / total * 100.0

    def drain_all(self) -> int:
        with self._lock:
            pools = list(self._pools.values())
        return sum(pool.drain() for pool in pools)
