"""
GitHub data client for the site's widgets.

Every read goes through the recovery orchestrator, so widgets always get
either fresh data, cached data or the domain's placeholder.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

from resilience.services.http_client import InterceptingHttpClient
from resilience.services.recovery_orchestrator import RecoveryOrchestrator

logger = logging.getLogger(__name__)

DOMAIN_REPOSITORY_STATS = "repository_stats"
DOMAIN_ACTIVITY_FEED = "activity_feed"
DOMAIN_COMMIT_HISTORY = "commit_history"
DOMAIN_PULL_REQUESTS = "pull_requests"
DOMAIN_ISSUES = "issues"
DOMAIN_CONTRIBUTOR_STATS = "contributor_stats"

# (type, keywords), first match wins
COMMIT_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("fix", ("fix", "bug")),
    ("feature", ("feat", "add")),
    ("test", ("test", "spec")),
    ("docs", ("docs", "readme")),
    ("refactor", ("refactor", "clean")),
    ("style", ("style", "format")),
    ("performance", ("perf", "optimize")),
)

RECENT_COMMIT_COUNT = 3


@dataclass(frozen=True)
class RepositoryStats:
    stars: int | str
    forks: int | str
    issues: int | str
    description: str
    placeholder: bool = False

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "RepositoryStats":
        return cls(
            stars=payload.get("stargazers_count", 0),
            forks=payload.get("forks_count", 0),
            issues=payload.get("open_issues_count", 0),
            description=payload.get("description") or "",
        )


@dataclass(frozen=True)
class CommitSummary:
    """One entry of the activity feed."""

    id: str
    message: str
    author: str
    date: str
    url: str
    avatar: str
    type: str
    is_recent: bool = False


def categorize_commit(message: str) -> str:
    lowered = message.lower()
    for category, keywords in COMMIT_CATEGORIES:
        if any(word in lowered for word in keywords):
            return category
    return "other"


def summarize_commits(commits: list[dict[str, Any]]) -> list[CommitSummary]:
    """Turn raw API commits into activity feed entries."""
    summaries = []
    for index, commit in enumerate(commits):
        details = commit.get("commit") or {}
        author = details.get("author") or {}
        full_message = details.get("message") or ""
        avatar = (commit.get("author") or {}).get("avatar_url")
        if not avatar:
            avatar = f"https://github.com/identicons/{author.get('email', 'unknown')}.png"
        summaries.append(
            CommitSummary(
                id=(commit.get("sha") or "")[:7],
                message=full_message.split("\n", 1)[0],
                author=author.get("name") or "unknown",
                date=author.get("date") or "",
                url=commit.get("html_url") or "#",
                avatar=avatar,
                type=categorize_commit(full_message),
                is_recent=index < RECENT_COMMIT_COUNT,
            )
        )
    return summaries


class GitHubClient:
    """Repository, activity and analytics reads for one repository."""

    def __init__(
        self,
        http: InterceptingHttpClient,
        orchestrator: RecoveryOrchestrator,
        owner: str,
        repo: str,
        per_page: int = 10,
        bulk_per_page: int = 100,
    ):
        self.http = http
        self.orchestrator = orchestrator
        self.owner = owner
        self.repo = repo
        self.per_page = per_page
        self.bulk_per_page = bulk_per_page

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def _read(self, domain: str, path: str, params: Optional[dict[str, Any]] = None, parse=None) -> Any:
        query = f"?{urlencode(params)}" if params else ""
        key = f"{domain}:{path}{query}"

        async def call() -> Any:
            payload = await self.http.get_json(path, params=params)
            return parse(payload) if parse is not None else payload

        return await self.orchestrator.fetch(
            domain, key, call, source_url=self.http.url_for(path) + query
        )

    async def repository_stats(self) -> RepositoryStats:
        return await self._read(DOMAIN_REPOSITORY_STATS, self.repo_path, parse=RepositoryStats.from_api)

    async def recent_commits(self, per_page: Optional[int] = None) -> list[CommitSummary]:
        return await self._read(
            DOMAIN_ACTIVITY_FEED,
            f"{self.repo_path}/commits",
            {"per_page": per_page or self.per_page},
            parse=summarize_commits,
        )

    async def commit_history(self, per_page: Optional[int] = None) -> list[dict[str, Any]]:
        return await self._read(
            DOMAIN_COMMIT_HISTORY, f"{self.repo_path}/commits", {"per_page": per_page or self.bulk_per_page}
        )

    async def pull_requests(self, state: str = "all", per_page: Optional[int] = None) -> list[dict[str, Any]]:
        return await self._read(
            DOMAIN_PULL_REQUESTS,
            f"{self.repo_path}/pulls",
            {"state": state, "per_page": per_page or self.bulk_per_page},
        )

    async def issues(self, state: str = "all", per_page: Optional[int] = None) -> list[dict[str, Any]]:
        return await self._read(
            DOMAIN_ISSUES,
            f"{self.repo_path}/issues",
            {"state": state, "per_page": per_page or self.bulk_per_page},
        )

    async def contributor_stats(self) -> list[dict[str, Any]]:
        return await self._read(DOMAIN_CONTRIBUTOR_STATS, f"{self.repo_path}/stats/contributors")
