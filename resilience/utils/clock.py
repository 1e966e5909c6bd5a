"""
Injectable clocks.

All time reads in the resilience layer go through a clock object so that
TTL expiry, rate limiting and lease timeouts can be driven deterministically
in tests.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Seconds on a monotonic timeline."""
        ...


class MonotonicClock:
    """Live clock backed by ``time.monotonic``."""

    def now(self) -> float:
        return time.monotonic()


@dataclass
class ManualClock:
    """
    Clock that only moves when told to.

    Used by tests and replay tooling; ``advance`` is the only way time passes.
    """

    current: float = 0.0

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self.current += seconds
        return self.current

    def set(self, value: float) -> None:
        if value < self.current:
            raise ValueError("ManualClock cannot move backwards")
        self.current = value
