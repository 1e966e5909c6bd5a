"""
Notification renderers.

The gate decides *whether* to show something; a renderer decides *how*.
Renderers are swappable so the same recovery policy drives log output,
a Streamlit page or an in-memory list in tests.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, Optional

from resilience.services.error_classifier import ErrorKind
from resilience.services.notification_gate import Notification

logger = logging.getLogger(__name__)

ICONS = {
    ErrorKind.NETWORK: "🌐",
    ErrorKind.RESOURCE: "📦",
    ErrorKind.RUNTIME: "⚠️",
    ErrorKind.ASYNC: "⏳",
}


class NotificationRenderer(ABC):
    """Displays and hides notifications."""

    @abstractmethod
    def render(self, notification: Notification) -> None:
        pass

    def dismiss(self, notification_id: int) -> None:
        """Hide a notification; renderers that cannot hide ignore this."""


class LoggingNotificationRenderer(NotificationRenderer):
    """Writes notifications to the log; default for headless use."""

    def __init__(self, logger_: logging.Logger | None = None):
        self._logger = logger_ or logger

    def render(self, notification: Notification) -> None:
        self._logger.warning(
            "%s: %s",
            notification.title,
            notification.message,
            extra={
                "signature": notification.signature,
                "error_kind": notification.kind.value,
                "domain": notification.domain or "",
            },
        )


class InMemoryNotificationRenderer(NotificationRenderer):
    """Keeps notifications in lists; ``visible`` mirrors what a user would see."""

    def __init__(self):
        self.history: list[Notification] = []
        self.visible: dict[int, Notification] = {}

    def render(self, notification: Notification) -> None:
        self.history.append(notification)
        self.visible[notification.notification_id] = notification

    def dismiss(self, notification_id: int) -> None:
        self.visible.pop(notification_id, None)

    def titles(self) -> list[str]:
        return [n.title for n in self.history]

    def clear(self) -> None:
        self.history.clear()
        self.visible.clear()


class StreamlitNotificationRenderer(NotificationRenderer):
    """
    Renders notifications with Streamlit status elements and action buttons.

    A button click reruns the script, so shown notifications are kept in
    ``st.session_state`` until their lease is released and drawn again on
    every run by ``render_active``. Buttons keep the same widget key for
    the notification's lifetime and run their action through ``on_click``,
    which Streamlit calls before the rerun.
    """

    STATE_KEY = "active_notifications"

    def __init__(self):
        import streamlit as st

        self._st = st

    @property
    def active(self) -> dict[int, Notification]:
        return self._st.session_state.setdefault(self.STATE_KEY, {})

    def render(self, notification: Notification) -> None:
        self.active[notification.notification_id] = notification

    def dismiss(self, notification_id: int) -> None:
        self.active.pop(notification_id, None)

    def render_active(self, signatures: Optional[Iterable[str]] = None) -> int:
        """
        Draw every stored notification.

        Args:
            signatures: Signatures whose lease is still held; others are dropped first

        Returns:
            Number of notifications drawn
        """
        active = self.active
        if signatures is not None:
            held = set(signatures)
            for notification_id in [i for i, n in active.items() if n.signature not in held]:
                del active[notification_id]
        for notification in list(active.values()):
            self._draw(notification)
        return len(active)

    def _draw(self, notification: Notification) -> None:
        st = self._st
        icon = ICONS.get(notification.kind, "❗")
        text = f"**{notification.title}**\n\n{notification.message}"
        if notification.kind is ErrorKind.NETWORK:
            st.warning(text, icon=icon)
        elif notification.kind is ErrorKind.RESOURCE:
            st.info(text, icon=icon)
        else:
            st.error(text, icon=icon)

        for action in notification.actions:
            st.button(
                action.label,
                key=f"notification-{notification.notification_id}-{action.label}",
                on_click=action.callback,
            )


def create_renderer(kind: str) -> NotificationRenderer:
    """Build a renderer from its configuration name."""
    if kind == "streamlit":
        return StreamlitNotificationRenderer()
    if kind == "memory":
        return InMemoryNotificationRenderer()
    if kind == "logging":
        return LoggingNotificationRenderer()
    raise ValueError(f"Unknown notification renderer: {kind}")


def render_error_summary(summary: dict[str, Any]) -> None:
    """Render the orchestrator's error summary as a small Streamlit panel."""
    import streamlit as st

    st.subheader("Error Summary")
    counts = summary.get("by_kind", {})
    columns = st.columns(max(len(counts), 1))
    for column, (kind, count) in zip(columns, counts.items()):
        with column:
            st.metric(kind.title(), count)

    domains = summary.get("domains", {})
    if domains:
        st.caption("Data domains")
        st.table([{"domain": name, "state": state} for name, state in domains.items()])

    disabled = summary.get("disabled_features", [])
    if disabled:
        st.caption("Disabled features: " + ", ".join(disabled))

    recent = summary.get("recent", [])
    if recent:
        with st.expander("Recent errors"):
            st.json(recent)
