"""
Integration tests: GitHub client wired through a full ResilienceContext.
"""

import httpx
import pytest

from resilience.context import ResilienceContext
from resilience.services.fallbacks import PLACEHOLDER_DESCRIPTION
from resilience.services.github_client import (
    CommitSummary,
    RepositoryStats,
    categorize_commit,
    summarize_commits,
)
from resilience.services.local_store import MemoryKeyValueStore
from resilience.services.recovery_orchestrator import REMOTE_API_TITLE, DomainState

REPO = "/repos/acbart/cocopilot"

COMMITS = [
    {
        "sha": "abcdef1234567",
        "html_url": "https://github.com/acbart/cocopilot/commit/abcdef1",
        "commit": {"message": "Fix broken search\n\nlong body", "author": {"name": "Ada", "date": "2024-01-02T00:00:00Z"}},
        "author": {"avatar_url": "https://avatars.example/ada.png"},
    },
    {
        "sha": "1234567abcdef",
        "commit": {"message": "Add onboarding tour", "author": {"name": "Grace", "email": "g@example.org"}},
        "author": None,
    },
]


def build_context(test_config, renderer, clock, sleep, transport) -> ResilienceContext:
    return ResilienceContext.create(
        test_config,
        renderer=renderer,
        transport=transport,
        clock=clock,
        sleep=sleep,
        store=MemoryKeyValueStore(),
    )


@pytest.mark.integration
class TestGitHubClient:
    """Test widget reads with live, flaky and unavailable APIs."""

    @pytest.mark.asyncio
    async def test_repository_stats(self, test_config, renderer, clock, sleep, make_transport):
        transport = make_transport(
            {REPO: [(200, {"stargazers_count": 42, "forks_count": 7, "open_issues_count": 3, "description": "Copilot"})]}
        )
        async with build_context(test_config, renderer, clock, sleep, transport) as ctx:
            stats = await ctx.github.repository_stats()
            again = await ctx.github.repository_stats()

        assert stats == RepositoryStats(stars=42, forks=7, issues=3, description="Copilot")
        assert again is stats
        assert transport.calls[REPO] == 1

    @pytest.mark.asyncio
    async def test_commits_recover_after_two_failures(self, test_config, renderer, clock, sleep, make_transport):
        transport = make_transport({f"{REPO}/commits": [(502, {}), (503, {}), (200, COMMITS)]})
        async with build_context(test_config, renderer, clock, sleep, transport) as ctx:
            commits = await ctx.github.recent_commits()
            summary = ctx.orchestrator.get_error_summary()

        assert [c.id for c in commits] == ["abcdef1", "1234567"]
        assert sleep.delays == [1.0, 2.0]
        assert renderer.history == []
        assert summary["by_kind"]["NETWORK"] == 2

    @pytest.mark.asyncio
    async def test_rate_limited_contributors_use_placeholder(self, test_config, renderer, clock, sleep, make_transport):
        transport = make_transport({f"{REPO}/stats/contributors": [(403, {"message": "API rate limit exceeded"})]})
        async with build_context(test_config, renderer, clock, sleep, transport) as ctx:
            contributors = await ctx.github.contributor_stats()
            state = ctx.orchestrator.domain_state("contributor_stats")

        assert contributors[0]["placeholder"] is True
        assert transport.calls[f"{REPO}/stats/contributors"] == 4
        assert renderer.titles() == [REMOTE_API_TITLE]
        assert state is DomainState.DEGRADED

    @pytest.mark.asyncio
    async def test_unavailable_stats_show_placeholder(self, test_config, renderer, clock, sleep, make_transport):
        transport = make_transport({REPO: [(404, {"message": "Not Found"})]})
        async with build_context(test_config, renderer, clock, sleep, transport) as ctx:
            stats = await ctx.github.repository_stats()

        assert stats.placeholder is True
        assert stats.description == PLACEHOLDER_DESCRIPTION
        assert transport.calls[REPO] == 1

    @pytest.mark.asyncio
    async def test_offline_activity_feed(self, test_config, renderer, clock, sleep, make_transport):
        transport = make_transport({f"{REPO}/commits": [httpx.ConnectError("offline")]})
        async with build_context(test_config, renderer, clock, sleep, transport) as ctx:
            commits = await ctx.github.recent_commits()

        assert len(commits) == 1
        assert commits[0].id == "offline1"
        assert commits[0].type == "offline"

    @pytest.mark.asyncio
    async def test_bulk_reads_use_bulk_page_size(self, test_config, renderer, clock, sleep, make_transport):
        transport = make_transport(
            {
                f"{REPO}/pulls": [(200, [{"number": 1}])],
                f"{REPO}/issues": [(200, [{"number": 2}])],
                f"{REPO}/commits": [(200, [{"sha": "x"}])],
            }
        )
        async with build_context(test_config, renderer, clock, sleep, transport) as ctx:
            assert await ctx.github.pull_requests() == [{"number": 1}]
            assert await ctx.github.issues(state="open") == [{"number": 2}]
            assert await ctx.github.commit_history() == [{"sha": "x"}]
            keys = ctx.cache.keys()

        assert f"issues:{REPO}/issues?state=open&per_page=100" in keys
        assert f"commit_history:{REPO}/commits?per_page=100" in keys


class TestCommitSummaries:
    """Test activity feed shaping."""

    def test_categorize_commit(self):
        assert categorize_commit("Fix crash") == "fix"
        assert categorize_commit("feat: new widget") == "feature"
        assert categorize_commit("Update README") == "docs"
        assert categorize_commit("Optimize loading") == "performance"
        assert categorize_commit("Bump version") == "other"

    def test_summarize_commits(self):
        summaries = summarize_commits(COMMITS)

        first, second = summaries
        assert isinstance(first, CommitSummary)
        assert first.message == "Fix broken search"
        assert first.type == "fix"
        assert first.avatar == "https://avatars.example/ada.png"
        assert first.is_recent is True
        assert second.author == "Grace"
        assert second.url == "#"
        assert second.avatar == "https://github.com/identicons/g@example.org.png"
        assert second.type == "feature"

    def test_only_first_three_are_recent(self):
        commits = [{"sha": str(n), "commit": {"message": "chore"}} for n in range(5)]
        assert [c.is_recent for c in summarize_commits(commits)] == [True, True, True, False, False]
