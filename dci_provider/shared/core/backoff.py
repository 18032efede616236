"""
Exponential Backoff Policy

Paces retries of transient DoiT Console API failures. The policy is a pure
algorithm: it holds no per-request state, so one instance is shared by every
request a transport executes.
"""
import random
from dataclasses import dataclass
from typing import Optional

# Defaults mirror the reference exponential backoff (2 minute budget)
DEFAULT_INITIAL_INTERVAL = 0.5
DEFAULT_MULTIPLIER = 1.5
DEFAULT_MAX_INTERVAL = 60.0
DEFAULT_MAX_ELAPSED_TIME = 120.0


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential delays bounded per-step by max_interval and overall by max_elapsed_time."""

    initial_interval: float = DEFAULT_INITIAL_INTERVAL
    multiplier: float = DEFAULT_MULTIPLIER
    max_interval: float = DEFAULT_MAX_INTERVAL
    max_elapsed_time: float = DEFAULT_MAX_ELAPSED_TIME
    # 0.0 keeps the sequence deterministic and non-decreasing
    randomization_factor: float = 0.0

    def __post_init__(self) -> None:
        if self.initial_interval <= 0:
            raise ValueError("initial_interval must be > 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        if self.max_elapsed_time <= 0:
            raise ValueError("max_elapsed_time must be > 0")
        if not 0 <= self.randomization_factor < 1:
            raise ValueError("randomization_factor must be in [0, 1)")

    def base_delay(self, attempt: int) -> float:
        """Un-jittered delay before retry number `attempt` (0-based)."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        delay = self.initial_interval
        for _ in range(attempt):
            delay *= self.multiplier
            if delay >= self.max_interval:
                return self.max_interval
        return min(delay, self.max_interval)

    def exceeds_budget(self, elapsed: float, wait: float) -> bool:
        return elapsed + wait > self.max_elapsed_time

    def next(self, attempt: int, elapsed: float) -> Optional[float]:
        """
        Delay before the next attempt, or None once the elapsed budget would be exceeded.

        `attempt` counts the backoff-driven retries already scheduled; `elapsed` is the
        time spent on the logical request so far, in seconds.
        """
        delay = self.base_delay(attempt)
        if self.randomization_factor:
            spread = delay * self.randomization_factor
            delay = delay - spread + (random.random() * 2 * spread)
        if self.exceeds_budget(elapsed, delay):
            return None
        return delay
