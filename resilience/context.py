"""
ResilienceContext: one object that owns every collaborator of the layer.

Built once at startup and passed to whoever needs it; nothing in the layer
is a module-level singleton, so tests build as many isolated contexts as
they like.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from config.config import Config, initialize_config
from resilience.services.error_classifier import ErrorClassifier, ErrorHistory
from resilience.services.expiring_cache import ExpiringCache
from resilience.services.failure_channels import FailureChannels
from resilience.services.fallbacks import register_default_fallbacks, register_default_features
from resilience.services.github_client import GitHubClient
from resilience.services.http_client import (
    AuthHeaderInterceptor,
    FailureLoggingInterceptor,
    InterceptingHttpClient,
)
from resilience.services.local_store import (
    DismissedFlags,
    InteractionCounters,
    KeyValueStore,
    NamespacedStore,
    RecentSearches,
    create_store,
)
from resilience.services.notification_gate import NotificationGate
from resilience.services.recovery_orchestrator import RecoveryOrchestrator
from resilience.services.retrying_fetcher import RetryingFetcher, RetryOptions, SleepFn
from resilience.ui.notifications import NotificationRenderer, create_renderer
from resilience.utils.clock import Clock, MonotonicClock
from resilience.utils.timers import TimerGroup

logger = logging.getLogger(__name__)


@dataclass
class ResilienceContext:
    config: Config
    clock: Clock
    cache: ExpiringCache
    history: ErrorHistory
    classifier: ErrorClassifier
    timers: TimerGroup
    renderer: NotificationRenderer
    gate: NotificationGate
    fetcher: RetryingFetcher
    orchestrator: RecoveryOrchestrator
    http: InterceptingHttpClient
    github: GitHubClient
    channels: FailureChannels
    store: NamespacedStore
    recent_searches: RecentSearches
    counters: InteractionCounters
    dismissed: DismissedFlags

    @classmethod
    def create(
        cls,
        config: Optional[Config] = None,
        *,
        renderer: Optional[NotificationRenderer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[SleepFn] = None,
        store: Optional[KeyValueStore] = None,
    ) -> "ResilienceContext":
        """Wire every collaborator from ``config`` (or a freshly initialized one)."""
        config = config or initialize_config()
        clock = clock or MonotonicClock()
        policy = config.policy_for(None)

        cache = ExpiringCache(default_ttl=config.cache.default_ttl_seconds, clock=clock)
        history = ErrorHistory(capacity=config.history.capacity)
        classifier = ErrorClassifier(
            known_hosts=config.remote_api.known_hosts,
            silent_hosts=config.remote_api.silent_hosts,
            non_retryable_statuses=config.retry.non_retryable_statuses,
            clock=clock,
        )
        timers = TimerGroup()
        renderer = renderer or create_renderer(config.notifications.renderer)
        gate = NotificationGate(
            renderer,
            timers=timers,
            clock=clock,
            min_interval=policy.min_interval_seconds,
            lease_timeout=policy.lease_timeout_seconds,
        )
        fetcher = RetryingFetcher(
            cache,
            classifier,
            history=history,
            sleep=sleep,
            max_in_flight=config.retry.max_in_flight,
            default_options=RetryOptions(
                max_retries=policy.max_retries,
                base_delay=policy.base_delay_seconds,
                max_delay=policy.max_delay_seconds,
            ),
        )
        orchestrator = RecoveryOrchestrator(classifier, gate, fetcher, history, config)
        register_default_fallbacks(orchestrator)
        register_default_features(orchestrator, config.feature_flags)

        http = InterceptingHttpClient(
            config.remote_api.base_url,
            timeout=config.remote_api.timeout_seconds,
            transport=transport,
            interceptors=[
                AuthHeaderInterceptor(
                    config.credentials.token,
                    config.credentials.user_agent,
                    hosts=config.remote_api.known_hosts,
                ),
                FailureLoggingInterceptor(),
            ],
        )
        github = GitHubClient(
            http,
            orchestrator,
            owner=config.remote_api.owner,
            repo=config.remote_api.repo,
            per_page=config.remote_api.per_page,
            bulk_per_page=config.remote_api.bulk_per_page,
        )

        backend = store or create_store(config.store.dsn, echo=config.store.echo)
        namespaced = NamespacedStore(backend, prefix=config.store.key_prefix)

        logger.info("Resilience context created (environment=%s)", config.environment)
        return cls(
            config=config,
            clock=clock,
            cache=cache,
            history=history,
            classifier=classifier,
            timers=timers,
            renderer=renderer,
            gate=gate,
            fetcher=fetcher,
            orchestrator=orchestrator,
            http=http,
            github=github,
            channels=FailureChannels(orchestrator),
            store=namespaced,
            recent_searches=RecentSearches(namespaced),
            counters=InteractionCounters(namespaced),
            dismissed=DismissedFlags(namespaced),
        )

    def install_failure_channels(
        self, loop: Optional[asyncio.AbstractEventLoop] = None, *, process_hooks: bool = True
    ) -> FailureChannels:
        if self.config.feature_flags.enable_global_failure_channels:
            self.channels.install(loop, process_hooks=process_hooks)
        return self.channels

    def teardown(self) -> None:
        """Synchronous part of shutdown: cancel retries, leases and timers."""
        self.channels.uninstall()
        self.orchestrator.teardown()

    async def aclose(self) -> None:
        self.teardown()
        await self.fetcher.aclose()
        await self.http.aclose()
        self.store.backend.close()

    async def __aenter__(self) -> "ResilienceContext":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
