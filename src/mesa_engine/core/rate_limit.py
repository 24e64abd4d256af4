from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from ..config import RateLimitConfig
from .errors import RateStoreUnavailable
from .ports import CounterStorePort

logger = logging.getLogger(__name__)


class InMemorySlidingWindow:
    """Process-local sliding window. Best effort, not shared across workers."""

    def __init__(self, window_seconds: float, max_operations: int):
        self._window = float(window_seconds)
        self._max = int(max_operations)
        self._hits: dict[str, list[float]] = {}
        self._last_sweep: float | None = None

    def __len__(self) -> int:
        return len(self._hits)

    def hit(self, key: str, now: float) -> bool:
        window_start = now - self._window
        self._sweep(now, window_start)
        timestamps = [t for t in self._hits.get(key, []) if t >= window_start]
        if len(timestamps) >= self._max:
            self._hits[key] = timestamps
            return True
        timestamps.append(now)
        self._hits[key] = timestamps
        return False

    def _sweep(self, now: float, window_start: float) -> None:
        # At most once per window; drops keys with no hit inside it.
        if self._last_sweep is not None and now - self._last_sweep < self._window:
            return
        self._last_sweep = now
        stale = [key for key, stamps in self._hits.items() if not stamps or stamps[-1] < window_start]
        for key in stale:
            del self._hits[key]


class RateLimiter:
    def __init__(
        self,
        store: CounterStorePort | None = None,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ):
        self._config = config or RateLimitConfig()
        self._store = store
        self._clock = clock or time.time
        self._fallback = InMemorySlidingWindow(self._config.window_seconds, self._config.max_operations)

    @property
    def window_seconds(self) -> int:
        return self._config.window_seconds

    def is_limited(self, key: str) -> bool:
        now = self._clock()
        if self._store is None:
            return self._fallback.hit(key, now)
        try:
            return self._store.hit(
                key,
                limit=self._config.max_operations,
                window_seconds=self._config.window_seconds,
                now=datetime.fromtimestamp(now, timezone.utc).replace(tzinfo=None),
            )
        except RateStoreUnavailable as exc:
            logger.warning("rate limit store unavailable (%s); using in-process window", exc.reason)
            return self._fallback.hit(key, now)
