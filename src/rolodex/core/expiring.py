"""Process-wide key/value map whose entries expire after a fixed TTL.

Reads never return an expired entry. A background task, started at process
init and stopped at shutdown, sweeps expired entries so the map does not grow
without bound between reads.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

_DEFAULT_SWEEP_INTERVAL_S = 60.0


class ExpiringMap(Generic[K, V]):
    """Concurrency-safe TTL map.

    Usage pattern:
        cache = ExpiringMap(ttl_s=300)
        await cache.start_eviction()
        cache.set(key, value)
        cache.get(key)
        await cache.stop_eviction()

    All mutation happens on the event loop thread without awaiting between
    the check and the write, so no lock is needed for single-key operations.
    """

    def __init__(
        self,
        *,
        ttl_s: float,
        sweep_interval_s: float = _DEFAULT_SWEEP_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        name: str = "expiring-map",
    ) -> None:
        if ttl_s <= 0:
            raise ValueError("ttl_s must be positive")
        if sweep_interval_s <= 0:
            raise ValueError("sweep_interval_s must be positive")
        self._ttl_s = float(ttl_s)
        self._sweep_interval_s = float(sweep_interval_s)
        self._clock = clock
        self._name = name
        self._entries: dict[K, tuple[float, V]] = {}
        self._eviction_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    @property
    def running(self) -> bool:
        return self._eviction_task is not None and not self._eviction_task.done()

    def get(self, key: K) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: K, value: V) -> None:
        self._entries[key] = (self._clock() + self._ttl_s, value)

    def pop(self, key: K) -> V | None:
        value = self.get(key)
        self._entries.pop(key, None)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def evict_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    async def start_eviction(self) -> None:
        """Start the background sweep. Does nothing if already running."""
        if self.running:
            return
        self._eviction_task = asyncio.create_task(self._eviction_loop(), name=self._name)

    async def stop_eviction(self) -> None:
        task = self._eviction_task
        self._eviction_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _eviction_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_s)
            try:
                removed = self.evict_expired()
            except Exception:
                logger.exception("Unexpected error sweeping %s; continuing", self._name)
                continue
            if removed:
                logger.debug("Evicted %d expired entries from %s", removed, self._name)


__all__ = ["ExpiringMap"]
