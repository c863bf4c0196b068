"""
Fixed-window limiter for gateway operations.
- One counter per (plugin, operation) bucket per window.
- Process-local; the gateway is embedded and single-process.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable

from ..core.config import Settings
from ..core.logging import get_logger
from .events import AccessType

logger = get_logger(__name__)


class FixedWindowLimiter:
    def __init__(
        self,
        *,
        namespace: str = "rl:plugin",
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.namespace = namespace
        self.window_seconds = max(1, int(window_seconds))
        self._clock = clock
        self._counters: dict[str, tuple[int, int]] = {}  # key -> (window index, count)
        self._lock = threading.Lock()

    def _key(self, *, bucket: str) -> str:
        return f"{self.namespace}:{bucket}"

    async def allow(self, *, bucket: str, capacity: int, cost: int = 1) -> tuple[bool, int]:
        """Attempt to consume ``cost`` from the bucket's current window.
        Returns (allowed, retry_after_seconds).
        """
        now = self._clock()
        window = int(now) // self.window_seconds
        key = self._key(bucket=bucket)
        cap = max(1, int(capacity))
        with self._lock:
            current_window, n = self._counters.get(key, (window, 0))
            if current_window != window:
                n = 0
            if n + cost > cap:
                self._counters[key] = (window, n)
                retry = self.window_seconds - (int(now) % self.window_seconds)
                return False, max(1, retry)
            self._counters[key] = (window, n + cost)
        return True, 0

    def reset(self, bucket: str | None = None) -> None:
        with self._lock:
            if bucket is None:
                self._counters.clear()
            else:
                self._counters.pop(self._key(bucket=bucket), None)


class OperationRateLimiter:
    """Per-plugin, per-operation limits taken from settings."""

    def __init__(self, settings: Settings, *, clock: Callable[[], float] = time.time):
        self._limiter = FixedWindowLimiter(window_seconds=settings.rate_limit_window_seconds, clock=clock)
        self._capacity = {
            AccessType.READ: settings.rate_limit_reads,
            AccessType.COUNT: settings.rate_limit_reads,
            AccessType.EXPORT: settings.rate_limit_reads,
            AccessType.WRITE: settings.rate_limit_writes,
            AccessType.DELETE: settings.rate_limit_deletes,
        }

    def capacity_for(self, access_type: AccessType) -> int:
        return self._capacity[access_type]

    async def allow(self, plugin_id: str, access_type: AccessType) -> tuple[bool, int]:
        allowed, retry_after = await self._limiter.allow(
            bucket=f"{plugin_id}:{access_type.value}",
            capacity=self._capacity[access_type],
        )
        if not allowed:
            logger.warning(
                "Rate limit hit: plugin=%s operation=%s retry_after=%ss",
                plugin_id,
                access_type.value,
                retry_after,
            )
        return allowed, retry_after

    def reset(self, plugin_id: str | None = None) -> None:
        if plugin_id is None:
            self._limiter.reset()
            return
        for access_type in AccessType:
            self._limiter.reset(f"{plugin_id}:{access_type.value}")
