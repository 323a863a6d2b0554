"""
Timing Utilities.

``timeit`` measures a block with perf_counter(); the facade and the metrics
collector use it for operation latency and the cache for lookup timing.

Example:
    with timeit("provider_call") as t:
        audio = call()
    print(f"{t.timing.ms:.1f} ms")
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """
    Timing measurement result.

    Attributes:
        name: What was timed (e.g. "cache_get", "tracked_op").
        seconds: Duration in seconds.
        meta: Optional metadata.
    """
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None

    @property
    def ms(self) -> float:
        """Duration in milliseconds."""
        return self.seconds * 1000.0


class timeit:
    """
    Context manager for timing code blocks.

    The timing is recorded even when the block raises, so failed
    operations still report their duration.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        t1 = perf_counter()
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=(t1 - self._t0), meta=self.meta)

    @property
    def elapsed(self) -> float:
        """Seconds since entry, usable while the block is still running."""
        if self.timing is not None:
            return self.timing.seconds
        if self._t0 is None:
            return 0.0
        return perf_counter() - self._t0
