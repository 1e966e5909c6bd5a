"""
Notification gate: decides whether a classified error may be shown to the user.

Two rules, checked in this order:
  1. at most one visible notification per error signature (lease);
  2. at most one new notification per ``min_interval`` seconds overall.
Leases are released on dismissal or after ``lease_timeout`` seconds. Timeouts
are enforced both by loop timers and lazily against the clock, so the gate
stays correct when no event loop is running.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from resilience.services.error_classifier import ErrorKind, ErrorRecord
from resilience.utils.clock import Clock, MonotonicClock
from resilience.utils.timers import CancellableTimer, TimerGroup

if TYPE_CHECKING:
    from resilience.ui.notifications import NotificationRenderer

logger = logging.getLogger(__name__)

DEFAULT_TITLES = {
    ErrorKind.NETWORK: "Connection Issue",
    ErrorKind.RESOURCE: "Resource Loading Error",
    ErrorKind.RUNTIME: "Application Error",
    ErrorKind.ASYNC: "Processing Error",
}

DEFAULT_MESSAGES = {
    ErrorKind.NETWORK: "Network connection issue. Please check your internet connection.",
    ErrorKind.RESOURCE: "Some resources failed to load. The page may not function correctly.",
    ErrorKind.RUNTIME: "A script error occurred. The page should continue to work normally.",
    ErrorKind.ASYNC: "A background operation failed. Some features may be temporarily unavailable.",
}

REMOTE_API_MESSAGE = (
    "Unable to fetch repository data. This might be due to network restrictions or rate limiting."
)


def default_title(record: ErrorRecord) -> str:
    return DEFAULT_TITLES.get(record.kind, "Unexpected Error")


def default_message(record: ErrorRecord, remote_api: bool = False) -> str:
    if record.kind is ErrorKind.NETWORK and remote_api:
        return REMOTE_API_MESSAGE
    return DEFAULT_MESSAGES.get(record.kind, "An unexpected error occurred.")


@dataclass(frozen=True)
class NotificationAction:
    """Button offered with a notification, e.g. Retry or Refresh Page."""

    label: str
    callback: Optional[Callable[[], Any]] = field(default=None, compare=False)


@dataclass(frozen=True)
class Notification:
    notification_id: int
    signature: str
    kind: ErrorKind
    title: str
    message: str
    shown_at: float
    persistent: bool = False
    actions: tuple[NotificationAction, ...] = ()
    domain: Optional[str] = None


@dataclass
class NotificationLease:
    """Exclusive right to display one signature."""

    signature: str
    active_since: float
    notification_id: int
    expires_at: Optional[float] = None
    timer: Optional[CancellableTimer] = field(default=None, repr=False)

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class NotificationGate:
    """Deduplicates and rate-limits user-visible error notifications."""

    def __init__(
        self,
        renderer: "NotificationRenderer",
        timers: Optional[TimerGroup] = None,
        clock: Optional[Clock] = None,
        min_interval: float = 1.0,
        lease_timeout: float = 5.0,
    ):
        self.renderer = renderer
        self.timers = timers or TimerGroup()
        self._clock = clock or MonotonicClock()
        self.min_interval = min_interval
        self.lease_timeout = lease_timeout
        self._leases: dict[str, NotificationLease] = {}
        self._last_shown_at: Optional[float] = None
        self._ids = itertools.count(1)
        self.shown_count = 0
        self.suppressed_count = 0

    def try_notify(
        self,
        record: ErrorRecord,
        *,
        title: Optional[str] = None,
        message: Optional[str] = None,
        persistent: bool = False,
        actions: Sequence[NotificationAction] = (),
        lease_timeout: Optional[float] = None,
        min_interval: Optional[float] = None,
    ) -> bool:
        """Show a notification for ``record`` unless deduplicated or rate limited."""
        now = self._clock.now()
        self._release_expired(now)

        signature = record.signature
        if signature in self._leases:
            self.suppressed_count += 1
            logger.debug("Notification suppressed (duplicate)", extra={"signature": signature})
            return False

        interval = self.min_interval if min_interval is None else min_interval
        if self._last_shown_at is not None and now - self._last_shown_at < interval:
            self.suppressed_count += 1
            logger.debug("Notification suppressed (rate limit)", extra={"signature": signature})
            return False

        notification = Notification(
            notification_id=next(self._ids),
            signature=signature,
            kind=record.kind,
            title=title or default_title(record),
            message=message or default_message(record),
            shown_at=now,
            persistent=persistent,
            actions=tuple(actions),
            domain=record.domain,
        )
        timeout = self.lease_timeout if lease_timeout is None else lease_timeout
        lease = NotificationLease(
            signature=signature,
            active_since=now,
            notification_id=notification.notification_id,
            expires_at=None if persistent else now + timeout,
        )
        self._leases[signature] = lease
        previous_shown_at = self._last_shown_at
        self._last_shown_at = now

        try:
            self.renderer.render(notification)
        except Exception:
            logger.exception("Notification renderer failed", extra={"signature": signature})
            self._leases.pop(signature, None)
            # nothing was shown, so the rate limit window stays where it was
            self._last_shown_at = previous_shown_at
            return False

        if not persistent:
            lease.timer = self.timers.call_later(
                timeout, self._on_timeout, signature, notification.notification_id, name=f"lease:{signature}"
            )
        self.shown_count += 1
        logger.info("Notification shown: %s", notification.title, extra={"signature": signature})
        return True

    def dismiss(self, signature: str) -> bool:
        """User dismissed the notification; the signature may be shown again."""
        lease = self._leases.pop(signature, None)
        if lease is None:
            return False
        self.timers.cancel(lease.timer)
        self.renderer.dismiss(lease.notification_id)
        return True

    def release_all(self) -> int:
        """Drop every lease, cancel their timers and hide their notifications."""
        count = len(self._leases)
        for lease in self._leases.values():
            self.timers.cancel(lease.timer)
            self.renderer.dismiss(lease.notification_id)
        self._leases.clear()
        return count

    def is_active(self, signature: str) -> bool:
        self._release_expired(self._clock.now())
        return signature in self._leases

    def active_signatures(self) -> list[str]:
        self._release_expired(self._clock.now())
        return list(self._leases)

    def _on_timeout(self, signature: str, notification_id: int) -> None:
        lease = self._leases.get(signature)
        if lease is None or lease.notification_id != notification_id:
            return
        del self._leases[signature]
        self.renderer.dismiss(notification_id)
        logger.debug("Notification lease timed out", extra={"signature": signature})

    def _release_expired(self, now: float) -> None:
        expired = [sig for sig, lease in self._leases.items() if lease.expired(now)]
        for sig in expired:
            lease = self._leases.pop(sig)
            self.timers.cancel(lease.timer)
            self.renderer.dismiss(lease.notification_id)
