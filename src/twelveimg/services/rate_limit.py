import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, List

from twelveimg.common.uow import new_uow
from twelveimg.core.config import configs
from twelveimg.core.exceptions import RateLimitError

logger = logging.getLogger(__name__)


class RateLimitStore(ABC):
    @abstractmethod
    async def hit(self, key: str, limit: int, window_seconds: int) -> bool:
        """Record one request for ``key``; True while the key is within ``limit`` for the window."""


class InMemoryRateLimitStore(RateLimitStore):
    """
    Sliding-window counter kept in process memory.

    Only correct for a single-process deployment; use the database store when
    running more than one instance. Keys whose window has emptied are dropped,
    at most once per window, so idle clients do not accumulate.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.requests: Dict[str, List[float]] = {}
        self.clock = clock
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    def _sweep(self, cutoff: float) -> None:
        stale = [key for key, hits in self.requests.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self.requests[key]
        if stale:
            logger.debug(f"Dropped {len(stale)} idle rate limit keys")

    async def hit(self, key: str, limit: int, window_seconds: int) -> bool:
        now = self.clock()
        cutoff = now - window_seconds
        async with self._lock:
            if now - self._last_sweep >= window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

            window = [t for t in self.requests.get(key, ()) if t > cutoff]
            if len(window) >= limit:
                self.requests[key] = window
                return False
            window.append(now)
            self.requests[key] = window
            return True

    def reset(self) -> None:
        self.requests.clear()


class DatabaseRateLimitStore(RateLimitStore):
    """Fixed-window counters in ``rate_limit_counters``, shared by every instance."""

    def __init__(self, uow_factory=new_uow):
        self.uow_factory = uow_factory

    async def hit(self, key: str, limit: int, window_seconds: int) -> bool:
        now = int(time.time())
        window_start = datetime.fromtimestamp(now - now % window_seconds, tz=timezone.utc)
        async with self.uow_factory() as uow:
            async with uow:
                count = await uow.rate_limits.increment(key, window_start)
        return count <= limit


class RateLimiter:
    def __init__(self, store: RateLimitStore, limit: int, window_seconds: int, scope: str = "default"):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.scope = scope

    async def check(self, client_id: str) -> None:
        key = f"{self.scope}:{client_id}"
        if not await self.store.hit(key, self.limit, self.window_seconds):
            logger.warning(f"Rate limit exceeded for {key} ({self.limit}/{self.window_seconds}s)")
            raise RateLimitError(f"Rate limit exceeded. Try again in {self.window_seconds} seconds.")


def create_rate_limit_store(backend: str) -> RateLimitStore:
    if backend == "memory":
        return InMemoryRateLimitStore()
    if backend == "database":
        return DatabaseRateLimitStore()
    raise ValueError(f"Unknown rate limit backend: {backend}")


upload_rate_limiter = RateLimiter(
    create_rate_limit_store(configs.RATE_LIMIT_BACKEND),
    limit=configs.UPLOAD_RATE_LIMIT,
    window_seconds=configs.UPLOAD_RATE_WINDOW_SECONDS,
    scope="upload-grants",
)
