"""
Streamlit page showing repository stats and recent activity.

The page always renders: each widget reads through the resilience context
and falls back to placeholders when the API is unavailable.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass

import streamlit as st

from config.config import initialize_config
from resilience.context import ResilienceContext
from resilience.services.github_client import CommitSummary, RepositoryStats
from resilience.ui.notifications import StreamlitNotificationRenderer, render_error_summary
from resilience.utils.error_handler import ErrorBoundary
from resilience.utils.logging import configure_root_logging

logger = logging.getLogger(__name__)

COMMIT_ICONS = {
    "fix": "🐛",
    "feature": "✨",
    "test": "🧪",
    "docs": "📚",
    "refactor": "♻️",
    "style": "🎨",
    "performance": "⚡",
    "offline": "📡",
}


@dataclass
class DashboardSession:
    """What one browser session keeps across reruns."""

    ctx: ResilienceContext
    loop: asyncio.AbstractEventLoop
    renderer: StreamlitNotificationRenderer


def _shutdown(ctx: ResilienceContext, loop: asyncio.AbstractEventLoop) -> None:
    if loop.is_closed():
        ctx.teardown()
        return
    try:
        loop.run_until_complete(ctx.aclose())
    except Exception:
        logger.exception("Failed to close resilience context")
    finally:
        loop.close()


def _session() -> DashboardSession:
    """One context and one event loop per browser session, reused across reruns."""
    if "resilience_session" not in st.session_state:
        config = initialize_config()
        configure_root_logging(config.log_level)
        loop = asyncio.new_event_loop()
        renderer = StreamlitNotificationRenderer()
        ctx = ResilienceContext.create(config, renderer=renderer)
        # Retry buttons fire between runs, when the session loop is idle
        ctx.orchestrator.retry_runner = loop.run_until_complete
        # sys/threading hooks are process-wide; a session only owns its loop
        ctx.install_failure_channels(loop, process_hooks=False)
        session = DashboardSession(ctx=ctx, loop=loop, renderer=renderer)
        # Streamlit drops session_state when the browser session ends
        weakref.finalize(session, _shutdown, ctx, loop)
        st.session_state.resilience_session = session
    return st.session_state.resilience_session


async def _load(ctx: ResilienceContext) -> tuple[RepositoryStats, list[CommitSummary]]:
    return await asyncio.gather(ctx.github.repository_stats(), ctx.github.recent_commits())


def render_stats(stats: RepositoryStats) -> None:
    col1, col2, col3 = st.columns(3)
    col1.metric("Stars", stats.stars)
    col2.metric("Forks", stats.forks)
    col3.metric("Open issues", stats.issues)
    if stats.description:
        st.caption(stats.description)


def render_activity(commits: list[CommitSummary]) -> None:
    st.subheader("Recent activity")
    for commit in commits:
        icon = COMMIT_ICONS.get(commit.type, "🔄")
        label = f"{icon} **{commit.message}** · {commit.author}"
        if commit.is_recent:
            label += " · _new_"
        st.markdown(f"{label}  \n`{commit.id}` {commit.date}")


def render_search(ctx: ResilienceContext) -> None:
    term = st.text_input("Search the site")
    if term:
        ctx.recent_searches.add(term)
        ctx.counters.increment("search-total")
    recent = ctx.recent_searches.items()
    if recent:
        st.caption("Recent searches: " + ", ".join(recent))


def render_notifications(session: DashboardSession) -> None:
    # releasing expired leases first drops their notices from session state
    session.renderer.render_active(session.ctx.gate.active_signatures())


def main() -> None:
    st.set_page_config(page_title="CocoPilot Repository Pulse", page_icon="🛰️")
    session = _session()
    ctx, loop = session.ctx, session.loop
    st.title("🛰️ CocoPilot Repository Pulse")
    notices = st.container()

    if st.button("Refresh data"):
        ctx.cache.clear()

    stats, commits = loop.run_until_complete(_load(ctx))

    with notices:
        render_notifications(session)

    with ErrorBoundary(ctx.orchestrator, "Repository stats are unavailable.", on_error=st.info):
        render_stats(stats)

    if ctx.orchestrator.is_feature_enabled("github-activity"):
        with ErrorBoundary(
            ctx.orchestrator, "Recent activity is unavailable.", feature="github-activity", on_error=st.info
        ):
            render_activity(commits)

    if ctx.orchestrator.is_feature_enabled("advanced-search"):
        with ErrorBoundary(ctx.orchestrator, feature="advanced-search", on_error=st.info):
            render_search(ctx)

    with st.sidebar:
        render_error_summary(ctx.orchestrator.get_error_summary())


if __name__ == "__main__":
    main()
