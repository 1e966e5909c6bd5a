"""Placeholder data used when a data domain cannot be fetched."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from config.config import FeatureFlags
from resilience.services.github_client import (
    DOMAIN_ACTIVITY_FEED,
    DOMAIN_COMMIT_HISTORY,
    DOMAIN_CONTRIBUTOR_STATS,
    DOMAIN_ISSUES,
    DOMAIN_PULL_REQUESTS,
    DOMAIN_REPOSITORY_STATS,
    CommitSummary,
    RepositoryStats,
)
from resilience.services.recovery_orchestrator import RecoveryOrchestrator
from resilience.services.retrying_fetcher import FallbackContext

PLACEHOLDER_DESCRIPTION = "Repository data temporarily unavailable"
OFFLINE_AVATAR = "data:image/svg+xml;utf8,<svg xmlns='http://www.w3.org/2000/svg' width='40' height='40'><circle cx='20' cy='20' r='20' fill='%23656d76'/></svg>"


def repository_stats_placeholder(context: FallbackContext) -> RepositoryStats:
    return RepositoryStats(stars="★", forks="⑂", issues="◦", description=PLACEHOLDER_DESCRIPTION, placeholder=True)


def activity_feed_placeholder(context: FallbackContext) -> list[CommitSummary]:
    return [
        CommitSummary(
            id="offline1",
            message="Recent activity unavailable (offline)",
            author="CocoPilot",
            date=datetime.now(timezone.utc).isoformat(),
            url="#",
            avatar=OFFLINE_AVATAR,
            type="offline",
            is_recent=True,
        )
    ]


def contributor_stats_placeholder(context: FallbackContext) -> list[dict[str, Any]]:
    return [{"author": {"login": "CocoPilot", "avatar_url": OFFLINE_AVATAR}, "total": "—", "placeholder": True}]


def empty_list(context: FallbackContext) -> list[Any]:
    return []


def register_default_fallbacks(orchestrator: RecoveryOrchestrator) -> None:
    orchestrator.register_fallback(DOMAIN_REPOSITORY_STATS, repository_stats_placeholder)
    orchestrator.register_fallback(DOMAIN_ACTIVITY_FEED, activity_feed_placeholder)
    orchestrator.register_fallback(DOMAIN_CONTRIBUTOR_STATS, contributor_stats_placeholder)
    for domain in (DOMAIN_COMMIT_HISTORY, DOMAIN_PULL_REQUESTS, DOMAIN_ISSUES):
        orchestrator.register_fallback(domain, empty_list)


# name, flag, source hints, runtime markers
DEFAULT_FEATURES: tuple[tuple[str, str, tuple[str, ...], tuple[str, ...]], ...] = (
    ("advanced-search", "enable_advanced_search", ("advanced-search", "smart-search"), ("advancedSearch",)),
    ("enhanced-mobile", "enable_enhanced_mobile", ("enhanced-mobile",), ()),
    ("performance-monitor", "enable_performance_monitor", ("performance-monitor",), ()),
    ("onboarding", "enable_onboarding_tour", ("onboarding",), ("onboardingTour",)),
    ("github-activity", "enable_github_activity", ("github-activity",), ()),
    ("analytics-dashboard", "enable_analytics_dashboard", ("analytics-dashboard",), ()),
)


def register_default_features(orchestrator: RecoveryOrchestrator, flags: FeatureFlags) -> None:
    """Optional widgets; switched off up front when their feature flag is off."""
    for name, flag, hints, markers in DEFAULT_FEATURES:
        orchestrator.register_feature(
            name,
            source_hints=hints,
            runtime_markers=markers,
            enabled=getattr(flags, flag, True),
        )
