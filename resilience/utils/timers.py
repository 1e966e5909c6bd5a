"""
Cancellable timers on the running event loop.

Every deferred callback (lease auto-release, delayed notifications) is held
in a TimerGroup so teardown can cancel all of them at once.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CancellableTimer:
    """Handle for one scheduled callback."""

    timer_id: int
    delay: float
    name: str = ""
    _handle: asyncio.TimerHandle | None = field(default=None, repr=False)
    fired: bool = False
    cancelled: bool = False

    @property
    def active(self) -> bool:
        return not (self.fired or self.cancelled)

    def cancel(self) -> bool:
        if not self.active:
            return False
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        return True


class TimerGroup:
    """Owns a set of loop timers and cancels them together."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._timers: dict[int, CancellableTimer] = {}
        self._ids = itertools.count(1)

    def _get_loop(self) -> asyncio.AbstractEventLoop | None:
        if self._loop is not None and not self._loop.is_closed():
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any, name: str = "") -> CancellableTimer:
        """
        Schedule ``callback(*args)`` after ``delay`` seconds.

        Without a running loop the timer is still returned but never fires;
        callers that need correctness without a loop must also check their
        own deadlines against a clock.
        """
        timer = CancellableTimer(timer_id=next(self._ids), delay=delay, name=name)
        loop = self._get_loop()
        if loop is None:
            logger.debug("No running event loop; timer %s (%s) will not fire", timer.timer_id, name)
            self._timers[timer.timer_id] = timer
            return timer

        def _fire() -> None:
            self._timers.pop(timer.timer_id, None)
            if not timer.active:
                return
            timer.fired = True
            try:
                callback(*args)
            except Exception:
                logger.exception("Timer callback %s failed", name or timer.timer_id)

        timer._handle = loop.call_later(max(delay, 0.0), _fire)
        self._timers[timer.timer_id] = timer
        return timer

    def cancel(self, timer: CancellableTimer | None) -> bool:
        if timer is None:
            return False
        self._timers.pop(timer.timer_id, None)
        return timer.cancel()

    def cancel_all(self) -> int:
        cancelled = 0
        for timer in list(self._timers.values()):
            if timer.cancel():
                cancelled += 1
        self._timers.clear()
        if cancelled:
            logger.debug("Cancelled %d pending timers", cancelled)
        return cancelled

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers.values() if t.active)
