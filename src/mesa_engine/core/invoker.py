from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from ..config import InvokerConfig
from .errors import QuotaExceeded, TransientProviderError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class InvocationState:
    """Sticky fallback index per logical key, clamped to the target list."""

    def __init__(self, target_count: int):
        self._target_count = max(1, target_count)
        self._index_by_key: dict[str, int] = {}

    def _clamp(self, index: int) -> int:
        if index < 0:
            return 0
        if index >= self._target_count:
            return self._target_count - 1
        return index

    def get(self, key: str) -> int:
        return self._clamp(self._index_by_key.get(key, 0))

    def set(self, key: str, index: int) -> None:
        self._index_by_key[key] = self._clamp(index)

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._index_by_key.clear()
            return
        self._index_by_key[key] = 0


class ModelInvoker:
    def __init__(
        self,
        config: InvokerConfig | None = None,
        *,
        targets: Sequence[str] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        cfg = config or InvokerConfig()
        self._targets = tuple(targets) if targets is not None else tuple(cfg.targets)
        if not self._targets:
            raise ValueError("at least one narrative-generation target is required")
        self._min_delay = max(0.0, cfg.min_delay_seconds)
        self._sleep = sleep or asyncio.sleep
        self.state = InvocationState(len(self._targets))

    @property
    def targets(self) -> tuple[str, ...]:
        return self._targets

    async def invoke(self, key: str, build_request: Callable[[str], Awaitable[T]]) -> T:
        start = self.state.get(key)
        last_error: Exception | None = None

        for index in range(start, len(self._targets)):
            target = self._targets[index]
            if self._min_delay > 0 and index > start:
                await self._sleep(self._min_delay * (index - start))
            try:
                result = await build_request(target)
            except QuotaExceeded:
                logger.warning("quota exceeded on target=%s key=%s; aborting fallback chain", target, key)
                raise
            except Exception as exc:
                logger.warning("target=%s failed for key=%s: %s", target, key, exc)
                last_error = exc
                continue
            self.state.set(key, index)
            return result

        self.state.reset(key)
        if last_error is None:
            raise TransientProviderError("all_targets_failed")
        raise last_error
