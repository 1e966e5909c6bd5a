"""
Tests for the recovery orchestrator.
"""

from functools import partial
from unittest.mock import AsyncMock, Mock

import pytest

from config.config import DomainOverride
from resilience.exceptions import FetchFailedError, NotFoundError, RateLimitedError
from resilience.services.error_classifier import ErrorKind, FailureOrigin, RawFailure
from resilience.services.recovery_orchestrator import (
    REMOTE_API_FALLBACK_MESSAGE,
    REMOTE_API_TITLE,
    DomainState,
    FeatureToggle,
    FetchOperation,
)

REPO_URL = "https://api.github.com/repos/acbart/cocopilot"
CONTRIBUTORS_URL = f"{REPO_URL}/stats/contributors"


class TestRemoteFetchRecovery:
    """Test fetch() against transient and persistent remote failures."""

    @pytest.mark.asyncio
    async def test_transient_failures_recover_silently(self, orchestrator, renderer, cache, sleep):
        """Fails twice then succeeds: data returned, cached, no notification."""
        call = AsyncMock(side_effect=[RateLimitedError(REPO_URL), RateLimitedError(REPO_URL), [{"sha": "abc"}]])

        result = await orchestrator.fetch("commit_history", "commits", call, source_url=f"{REPO_URL}/commits")

        assert result == [{"sha": "abc"}]
        assert cache.get("commits") == [{"sha": "abc"}]
        assert sleep.delays == [1.0, 2.0]
        assert renderer.history == []
        assert orchestrator.domain_state("commit_history") is DomainState.HEALTHY

    @pytest.mark.asyncio
    async def test_persistent_rate_limit_uses_placeholder_and_notifies_once(self, orchestrator, renderer, history):
        """403 on every attempt: placeholder returned, exactly one notification."""
        placeholder = [{"author": {"login": "CocoPilot"}, "placeholder": True}]
        orchestrator.register_fallback("contributor_stats", lambda context: placeholder)
        call = AsyncMock(side_effect=RateLimitedError(CONTRIBUTORS_URL))

        result = await orchestrator.fetch("contributor_stats", "contributors", call, source_url=CONTRIBUTORS_URL)

        assert result == placeholder
        assert call.await_count == 4
        assert renderer.titles() == [REMOTE_API_TITLE]
        assert renderer.history[0].message == REMOTE_API_FALLBACK_MESSAGE
        assert [a.label for a in renderer.history[0].actions] == ["Retry"]
        assert orchestrator.domain_state("contributor_stats") is DomainState.DEGRADED
        assert len(history) == 4

    @pytest.mark.asyncio
    async def test_second_failing_fetch_does_not_notify_again(self, orchestrator, renderer, sleep):
        """Leases outlive the retries when no time passes between fetches."""
        sleep.clock = None
        orchestrator.register_fallback("contributor_stats", lambda context: [])
        call = AsyncMock(side_effect=RateLimitedError(CONTRIBUTORS_URL))

        await orchestrator.fetch("contributor_stats", "contributors", call, source_url=CONTRIBUTORS_URL)
        await orchestrator.fetch("contributor_stats", "contributors", call, source_url=CONTRIBUTORS_URL)

        assert renderer.titles() == [REMOTE_API_TITLE]

    @pytest.mark.asyncio
    async def test_domain_recovers_on_next_success(self, orchestrator):
        orchestrator.register_fallback("repository_stats", lambda context: "placeholder")
        failing = AsyncMock(side_effect=RateLimitedError(REPO_URL))
        assert await orchestrator.fetch("repository_stats", "stats", failing, source_url=REPO_URL) == "placeholder"

        ok = AsyncMock(return_value={"stargazers_count": 1})
        assert await orchestrator.fetch("repository_stats", "stats", ok, source_url=REPO_URL) == {"stargazers_count": 1}

        assert orchestrator.domain_state("repository_stats") is DomainState.HEALTHY
        assert orchestrator.transitions == [
            ("repository_stats", DomainState.HEALTHY, DomainState.DEGRADED),
            ("repository_stats", DomainState.DEGRADED, DomainState.RECOVERING),
            ("repository_stats", DomainState.RECOVERING, DomainState.HEALTHY),
        ]

    @pytest.mark.asyncio
    async def test_without_fallback_notifies_and_raises(self, orchestrator, renderer):
        call = AsyncMock(side_effect=RateLimitedError(REPO_URL))

        with pytest.raises(FetchFailedError):
            await orchestrator.fetch("unbound", "stats", call, source_url=REPO_URL)

        assert renderer.titles() == ["Connection Issue"]
        assert "rate limiting" in renderer.history[0].message

    @pytest.mark.asyncio
    async def test_not_found_goes_straight_to_fallback(self, orchestrator, sleep):
        orchestrator.register_fallback("repository_stats", lambda context: "placeholder")
        call = AsyncMock(side_effect=NotFoundError(REPO_URL))

        assert await orchestrator.fetch("repository_stats", "stats", call, source_url=REPO_URL) == "placeholder"
        assert call.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_domain_override_changes_retry_count(self, orchestrator, test_config):
        test_config.domain_overrides["contributor_stats"] = DomainOverride(max_retries=1, base_delay_seconds=0.0)
        orchestrator.register_fallback("contributor_stats", lambda context: [])
        call = AsyncMock(side_effect=RateLimitedError(CONTRIBUTORS_URL))

        await orchestrator.fetch("contributor_stats", "contributors", call, source_url=CONTRIBUTORS_URL)

        assert call.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_last_action_bypasses_cache(self, orchestrator, cache):
        call = AsyncMock(side_effect=["old", "new"])
        await orchestrator.fetch("repository_stats", "stats", call, source_url=REPO_URL)

        assert await orchestrator.retry_last_action() == "new"
        assert cache.get("stats") == "new"

    @pytest.mark.asyncio
    async def test_retry_without_previous_action(self, orchestrator):
        assert await orchestrator.retry_last_action() is None

    @pytest.mark.asyncio
    async def test_degraded_domain_cools_down_to_single_attempt(self, orchestrator, test_config, clock):
        test_config.recovery.degraded_cooldown_seconds = 30.0
        orchestrator.register_fallback("repository_stats", lambda context: "placeholder")
        call = AsyncMock(side_effect=RateLimitedError(REPO_URL))

        await orchestrator.fetch("repository_stats", "stats", call, source_url=REPO_URL)
        assert call.await_count == 4
        assert orchestrator.in_cooldown("repository_stats")

        assert await orchestrator.fetch("repository_stats", "stats", call, source_url=REPO_URL) == "placeholder"
        assert call.await_count == 5

        # an explicit retry always gets the full policy
        await orchestrator.retry_last_action()
        assert call.await_count == 9

        clock.advance(30.0)
        assert not orchestrator.in_cooldown("repository_stats")
        await orchestrator.fetch("repository_stats", "stats", call, source_url=REPO_URL)
        assert call.await_count == 13


class TestRetryAction:
    """Test the Retry button offered with network notifications."""

    @pytest.mark.asyncio
    async def test_retry_reruns_the_failed_fetch_not_the_latest(self, orchestrator, renderer, cache):
        """A later successful fetch for another domain does not hijack Retry."""
        orchestrator.register_fallback("repository_stats", lambda context: "placeholder")
        stats_call = AsyncMock(side_effect=RateLimitedError(REPO_URL))
        commits_call = AsyncMock(return_value=[{"sha": "abc"}])

        await orchestrator.fetch("repository_stats", "stats", stats_call, source_url=REPO_URL)
        await orchestrator.fetch("commit_history", "commits", commits_call, source_url=f"{REPO_URL}/commits")
        retry = renderer.history[0].actions[0]

        await retry.callback()

        assert stats_call.await_count == 8
        assert commits_call.await_count == 1
        assert cache.get("commits") == [{"sha": "abc"}]

    @pytest.mark.asyncio
    async def test_successful_retry_recovers_domain_and_hides_notice(self, orchestrator, renderer, cache, gate):
        orchestrator.register_fallback("repository_stats", lambda context: "placeholder")
        call = AsyncMock(side_effect=[RateLimitedError(REPO_URL)] * 4 + [{"stargazers_count": 5}])

        await orchestrator.fetch("repository_stats", "stats", call, source_url=REPO_URL)
        notification = renderer.history[0]

        await notification.actions[0].callback()

        assert cache.get("stats") == {"stargazers_count": 5}
        assert orchestrator.domain_state("repository_stats") is DomainState.HEALTHY
        assert not gate.is_active(notification.signature)
        assert renderer.visible == {}

    def test_retry_outside_event_loop_runs_to_completion(self, orchestrator, renderer, cache):
        """Button callbacks fire with no running loop; the runner drives the retry."""
        orchestrator.register_fallback("repository_stats", lambda context: "placeholder")
        remote_call = AsyncMock(return_value={"stargazers_count": 5})
        operation = FetchOperation("repository_stats", "stats", remote_call, source_url=REPO_URL)
        record = orchestrator.classifier.classify(RateLimitedError(REPO_URL), domain="repository_stats")

        assert orchestrator.handle(record, retry_action=partial(orchestrator.request_retry, operation)) == "placeholder"
        assert renderer.history[0].actions[0].callback() is None

        remote_call.assert_awaited_once()
        assert cache.get("stats") == {"stargazers_count": 5}
        assert orchestrator.domain_state("repository_stats") is DomainState.HEALTHY

    def test_network_failure_without_operation_offers_no_retry(self, orchestrator, renderer):
        orchestrator.capture(RateLimitedError(REPO_URL))
        assert renderer.titles() == ["Connection Issue"]
        assert renderer.history[0].actions == ()

    @pytest.mark.asyncio
    async def test_failed_fetch_without_fallback_offers_retry(self, orchestrator, renderer):
        call = AsyncMock(side_effect=[RateLimitedError(REPO_URL)] * 4 + ["fresh"])

        with pytest.raises(FetchFailedError):
            await orchestrator.fetch("unbound", "stats", call, source_url=REPO_URL)
        await renderer.history[0].actions[0].callback()

        assert call.await_count == 5
        assert orchestrator.fetcher.cache.get("stats") == "fresh"


class TestFailureHandling:
    """Test handle()/capture() for the non-fetch failure kinds."""

    def test_silent_host_is_recorded_but_not_notified(self, orchestrator, renderer, history):
        raw = RawFailure(origin=FailureOrigin.TRANSPORT, message="Failed to fetch", url="https://www.google-analytics.com/collect")
        orchestrator.capture(raw)
        assert renderer.history == []
        assert len(history) == 1

    def test_resource_failure_disables_matching_feature(self, orchestrator, renderer):
        disabled = Mock()
        orchestrator.register_feature("advanced-search", source_hints=["advanced-search"], on_disable=disabled)
        raw = RawFailure(
            origin=FailureOrigin.RESOURCE_LOAD,
            message="Failed to load script",
            url="https://cdn.example.org/js/advanced-search.js",
        )

        orchestrator.capture(raw)
        orchestrator.capture(raw)

        assert not orchestrator.is_feature_enabled("advanced-search")
        disabled.assert_called_once_with("advanced-search")
        assert renderer.history == []

    def test_core_feature_resource_failure_notifies(self, orchestrator, renderer):
        orchestrator.register_feature("github-activity", core=True, source_hints=["github-activity"])
        orchestrator.capture(
            RawFailure(origin=FailureOrigin.RESOURCE_LOAD, message="Failed to load", url="https://cdn.example.org/github-activity.js")
        )
        assert renderer.titles() == ["Github Activity Unavailable"]

    def test_unmatched_resource_failure_is_only_recorded(self, orchestrator, renderer, history):
        orchestrator.capture(
            RawFailure(origin=FailureOrigin.RESOURCE_LOAD, message="Failed to load image", url="https://cdn.example.org/logo.png")
        )
        assert renderer.history == []
        assert history.counts_by_kind()["RESOURCE"] == 1

    def test_runtime_marker_disables_feature(self, orchestrator):
        orchestrator.register_feature("onboarding", runtime_markers=["onboardingTour"])
        orchestrator.capture(RuntimeError("onboardingTour is not defined"))
        assert not orchestrator.is_feature_enabled("onboarding")

    def test_critical_runtime_error_notifies_with_refresh(self, orchestrator, renderer):
        orchestrator.capture(RuntimeError("Script error."))
        assert renderer.titles() == ["Application Error"]
        assert [a.label for a in renderer.history[0].actions] == ["Refresh Page"]

    def test_non_critical_runtime_error_is_silent(self, orchestrator, renderer, history):
        orchestrator.capture(ValueError("unexpected token"))
        assert renderer.history == []
        assert len(history) == 1

    def test_critical_async_error_notifies_without_actions(self, orchestrator, renderer):
        orchestrator.capture(RawFailure(origin=FailureOrigin.ASYNC_TASK, message="Failed to fetch user data"))
        assert renderer.titles() == ["Processing Error"]
        assert renderer.history[0].actions == ()

    def test_fallback_provider_failure_yields_none(self, orchestrator):
        def broken(context):
            raise RuntimeError("no placeholder")

        orchestrator.register_fallback("issues", broken)
        record = orchestrator.classifier.classify(RateLimitedError(REPO_URL), domain="issues")
        assert orchestrator.handle(record) is None
        assert orchestrator.domain_state("issues") is DomainState.DEGRADED


class TestFeatures:
    """Test feature toggles."""

    def test_display_name_derived_from_name(self):
        assert FeatureToggle(name="performance-monitor").display_name == "Performance Monitor"

    def test_disable_unknown_feature(self, orchestrator):
        assert orchestrator.disable_feature("missing") is False
        assert orchestrator.is_feature_enabled("missing") is False

    def test_disable_runs_once(self, orchestrator):
        orchestrator.register_feature("enhanced-mobile")
        assert orchestrator.disable_feature("enhanced-mobile", reason="broken") is True
        assert orchestrator.disable_feature("enhanced-mobile") is False

    def test_on_disable_hook_failure_is_contained(self, orchestrator):
        orchestrator.register_feature("analytics-dashboard", on_disable=Mock(side_effect=RuntimeError("hook")))
        assert orchestrator.disable_feature("analytics-dashboard") is True


class TestErrorSummary:
    """Test summary and teardown."""

    def test_summary_shape(self, orchestrator):
        orchestrator.register_feature("onboarding", runtime_markers=["onboardingTour"])
        orchestrator.capture(RuntimeError("onboardingTour failed: Script error"))

        summary = orchestrator.get_error_summary()

        assert summary["total"] == 1
        assert summary["by_kind"][ErrorKind.RUNTIME.value] == 1
        assert summary["recent"][0]["kind"] == "RUNTIME"
        assert summary["disabled_features"] == ["onboarding"]
        assert summary["notifications"]["shown"] == 1
        assert summary["pending_fetches"] == []

    def test_clear_errors(self, orchestrator):
        orchestrator.capture(ValueError("x"))
        assert orchestrator.clear_errors() == 1
        assert orchestrator.get_error_summary()["total"] == 0

    def test_clear_errors_hides_active_notifications(self, orchestrator, renderer, gate, clock):
        orchestrator.capture(RuntimeError("network down"))
        assert renderer.visible

        orchestrator.clear_errors()

        assert renderer.visible == {}
        assert gate.active_signatures() == []
        clock.advance(1.0)
        assert orchestrator.capture(RuntimeError("network down")) is None
        assert len(renderer.history) == 2

    def test_teardown_releases_leases(self, orchestrator, gate):
        orchestrator.capture(RuntimeError("network down"))
        assert gate.active_signatures()
        orchestrator.teardown()
        assert gate.active_signatures() == []
