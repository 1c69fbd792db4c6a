import logging
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONCURRENCY = 3
DEFAULT_MAX_CONCURRENCY = 20
DEFAULT_INITIAL_CONCURRENCY = 8


@dataclass
class ConcurrencyMetrics:
    concurrency: int
    samples: int
    success_rate: float
    recent_errors: int
    speed_samples: int
    avg_speed: float
    recent_speed: float
    older_speed: float


class ConcurrencyPolicy(ABC):
    """Decides, from recent upload metrics, which way the concurrency level should move."""

    increase_step: int = 2
    decrease_factor: float = 0.6

    @abstractmethod
    def should_increase(self, metrics: ConcurrencyMetrics) -> bool:
        pass

    @abstractmethod
    def should_decrease(self, metrics: ConcurrencyMetrics) -> bool:
        pass


class ThroughputErrorPolicy(ConcurrencyPolicy):
    """
    Back off when the error rate climbs; grow while every recent upload
    succeeded and throughput is holding up.
    """

    def __init__(self, min_success_rate: float = 0.8, stable_speed_ratio: float = 0.9, min_speed_samples: int = 5):
        self.min_success_rate = min_success_rate
        self.stable_speed_ratio = stable_speed_ratio
        self.min_speed_samples = min_speed_samples

    def should_decrease(self, metrics: ConcurrencyMetrics) -> bool:
        return metrics.success_rate < self.min_success_rate

    def should_increase(self, metrics: ConcurrencyMetrics) -> bool:
        if metrics.success_rate < 1 or metrics.speed_samples < self.min_speed_samples:
            return False
        return metrics.recent_speed >= metrics.older_speed * self.stable_speed_ratio


class AdaptiveConcurrencyController:
    """
    Tracks the last ``max_samples`` upload outcomes and moves the concurrency
    level within ``[min_concurrency, max_concurrency]``.

    ``max_concurrency`` is a hard ceiling: no policy decision can exceed it.
    """

    def __init__(
        self,
        min_concurrency: int = DEFAULT_MIN_CONCURRENCY,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        initial_concurrency: int = DEFAULT_INITIAL_CONCURRENCY,
        policy: Optional[ConcurrencyPolicy] = None,
        max_samples: int = 20,
        min_samples: int = 5,
        cooldown_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.min_concurrency = max(1, min(min_concurrency, max_concurrency))
        self.initial_concurrency = self._clamp(initial_concurrency)
        self.policy = policy or ThroughputErrorPolicy()
        self.max_samples = max_samples
        self.min_samples = min_samples
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

        self.concurrency = self.initial_concurrency
        self.results: Deque[bool] = deque(maxlen=max_samples)
        self.speeds: Deque[float] = deque(maxlen=max_samples)
        self.last_adjustment: Optional[float] = None

    def _clamp(self, value: int) -> int:
        return max(self.min_concurrency, min(self.max_concurrency, value))

    def record(self, success: bool, bytes_uploaded: int = 0, duration_seconds: float = 0.0) -> int:
        """Record one upload outcome and return the (possibly adjusted) concurrency level."""
        self.results.append(success)
        if success and duration_seconds > 0:
            self.speeds.append(bytes_uploaded / duration_seconds)
        self._maybe_adjust()
        return self.concurrency

    def metrics(self) -> ConcurrencyMetrics:
        samples = len(self.results)
        successes = sum(1 for r in self.results if r)
        speeds = list(self.speeds)
        recent = speeds[-5:]
        older = speeds[:5]
        return ConcurrencyMetrics(
            concurrency=self.concurrency,
            samples=samples,
            success_rate=successes / samples if samples else 1.0,
            recent_errors=samples - successes,
            speed_samples=len(speeds),
            avg_speed=sum(speeds) / len(speeds) if speeds else 0.0,
            recent_speed=sum(recent) / len(recent) if recent else 0.0,
            older_speed=sum(older) / len(older) if older else 0.0,
        )

    def _maybe_adjust(self) -> None:
        now = self.clock()
        if self.last_adjustment is not None and now - self.last_adjustment < self.cooldown_seconds:
            return
        if len(self.results) < self.min_samples:
            return

        metrics = self.metrics()
        if self.policy.should_decrease(metrics):
            new_level = self._clamp(math.floor(self.concurrency * self.policy.decrease_factor))
            if new_level != self.concurrency:
                logger.info(f"Backing off concurrency {self.concurrency} -> {new_level} (errors: {metrics.recent_errors})")
            self.concurrency = new_level
            self.last_adjustment = now
        elif self.policy.should_increase(metrics) and self.concurrency < self.max_concurrency:
            new_level = self._clamp(self.concurrency + self.policy.increase_step)
            logger.info(f"Increasing concurrency {self.concurrency} -> {new_level} (speed stable)")
            self.concurrency = new_level
            self.last_adjustment = now

    def reset(self) -> None:
        self.results.clear()
        self.speeds.clear()
        self.concurrency = self.initial_concurrency
        self.last_adjustment = None
