"""
Recovery orchestrator.

Applies the recovery policy to classified errors:
  - NETWORK failures against the remote API switch the data domain to its
    registered fallback and tell the user once;
  - RESOURCE failures disable the feature that depends on the resource;
  - RUNTIME/ASYNC failures are recorded and only surfaced when critical.
Each data domain moves HEALTHY -> DEGRADED on fallback and back to HEALTHY
(through RECOVERING) on the next successful call.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Optional

from config.config import Config, DomainPolicy
from resilience.exceptions import FetchFailedError
from resilience.services.error_classifier import (
    ErrorClassifier,
    ErrorHistory,
    ErrorKind,
    ErrorRecord,
    RawFailure,
)
from resilience.services.notification_gate import (
    NotificationAction,
    NotificationGate,
    default_message,
)
from resilience.services.retrying_fetcher import (
    FallbackContext,
    FallbackProvider,
    RemoteCall,
    RetryingFetcher,
    RetryOptions,
    maybe_await,
)

logger = logging.getLogger(__name__)

REMOTE_API_TITLE = "GitHub API Unavailable"
REMOTE_API_FALLBACK_MESSAGE = "Repository data temporarily unavailable. Showing cached information."


class DomainState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RECOVERING = "recovering"


@dataclass(frozen=True)
class FallbackBinding:
    """Placeholder data and user message for one data domain."""

    domain: str
    provider: FallbackProvider
    title: str = REMOTE_API_TITLE
    message: str = REMOTE_API_FALLBACK_MESSAGE


@dataclass
class FeatureToggle:
    """An optional widget that can be switched off when it breaks."""

    name: str
    display_name: str = ""
    core: bool = False
    source_hints: tuple[str, ...] = ()
    runtime_markers: tuple[str, ...] = ()
    on_disable: Optional[Callable[[str], Any]] = field(default=None, repr=False)
    enabled: bool = True
    disabled_reason: Optional[str] = None

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.name.replace("-", " ").replace("_", " ").title()

    def matches_source(self, url: Optional[str]) -> bool:
        if not url:
            return False
        lowered = url.lower()
        return any(hint.lower() in lowered for hint in self.source_hints)

    def matches_message(self, message: str) -> bool:
        return any(marker in message for marker in self.runtime_markers)


@dataclass(frozen=True)
class FetchOperation:
    """One fetch as issued by a widget; re-run by the Retry action."""

    domain: str
    key: str
    remote_call: RemoteCall
    source_url: Optional[str] = None
    ttl: Optional[float] = None


RetryRunner = Callable[[Coroutine[Any, Any, Any]], Any]


class RecoveryOrchestrator:
    """Routes classified errors to fallbacks, feature toggles and the notification gate."""

    def __init__(
        self,
        classifier: ErrorClassifier,
        gate: NotificationGate,
        fetcher: RetryingFetcher,
        history: ErrorHistory,
        config: Config,
        retry_runner: Optional[RetryRunner] = None,
    ):
        self.classifier = classifier
        self.gate = gate
        self.fetcher = fetcher
        self.history = history
        self.config = config
        self._critical_patterns = [
            re.compile(p, re.IGNORECASE) for p in config.recovery.critical_patterns
        ]
        self._bindings: dict[str, FallbackBinding] = {}
        self._features: dict[str, FeatureToggle] = {}
        self._states: dict[str, DomainState] = {}
        self._degraded_at: dict[str, float] = {}
        self.transitions: list[tuple[str, DomainState, DomainState]] = []
        self._last_action: Optional[FetchOperation] = None
        self._background: set[asyncio.Task] = set()
        # drives retries requested outside a running loop (Streamlit callbacks)
        self.retry_runner: RetryRunner = retry_runner or asyncio.run

    # -- registration --------------------------------------------------------

    def register_fallback(
        self,
        domain: str,
        provider: FallbackProvider,
        *,
        title: str = REMOTE_API_TITLE,
        message: str = REMOTE_API_FALLBACK_MESSAGE,
    ) -> FallbackBinding:
        binding = FallbackBinding(domain=domain, provider=provider, title=title, message=message)
        self._bindings[domain] = binding
        self._states.setdefault(domain, DomainState.HEALTHY)
        return binding

    def fallback_for(self, domain: Optional[str]) -> Optional[FallbackBinding]:
        return self._bindings.get(domain) if domain else None

    def register_feature(
        self,
        name: str,
        *,
        core: bool = False,
        display_name: str = "",
        source_hints: Iterable[str] = (),
        runtime_markers: Iterable[str] = (),
        on_disable: Optional[Callable[[str], Any]] = None,
        enabled: bool = True,
    ) -> FeatureToggle:
        feature = FeatureToggle(
            name=name,
            display_name=display_name,
            core=core,
            source_hints=tuple(source_hints),
            runtime_markers=tuple(runtime_markers),
            on_disable=on_disable,
            enabled=enabled,
        )
        self._features[name] = feature
        return feature

    def is_feature_enabled(self, name: str) -> bool:
        feature = self._features.get(name)
        return feature is not None and feature.enabled

    def disable_feature(self, name: str, reason: str = "") -> bool:
        """Switch a feature off once; later calls are no-ops."""
        feature = self._features.get(name)
        if feature is None or not feature.enabled:
            return False
        feature.enabled = False
        feature.disabled_reason = reason
        logger.warning("Feature disabled: %s (%s)", name, reason or "no reason given")
        if feature.on_disable is not None:
            try:
                feature.on_disable(name)
            except Exception:
                logger.exception("on_disable hook for %s failed", name)
        return True

    # -- domain state --------------------------------------------------------

    def domain_state(self, domain: str) -> DomainState:
        return self._states.get(domain, DomainState.HEALTHY)

    def _transition(self, domain: str, new_state: DomainState) -> None:
        old_state = self.domain_state(domain)
        if old_state is new_state:
            return
        self._states[domain] = new_state
        self.transitions.append((domain, old_state, new_state))
        logger.info("Domain %s: %s -> %s", domain, old_state.value, new_state.value, extra={"domain": domain})

    def mark_success(self, domain: str) -> None:
        """A call for ``domain`` succeeded: leave DEGRADED via RECOVERING."""
        if self.domain_state(domain) is DomainState.DEGRADED:
            self._transition(domain, DomainState.RECOVERING)
        if self.domain_state(domain) is DomainState.RECOVERING:
            self._transition(domain, DomainState.HEALTHY)

    # -- policy --------------------------------------------------------------

    def policy_for(self, domain: Optional[str]) -> DomainPolicy:
        return self.config.policy_for(domain)

    def is_critical(self, message: str) -> bool:
        return any(p.search(message) for p in self._critical_patterns)

    def _feature_for_source(self, url: Optional[str]) -> Optional[FeatureToggle]:
        return next((f for f in self._features.values() if f.matches_source(url)), None)

    def _feature_for_message(self, message: str) -> Optional[FeatureToggle]:
        return next((f for f in self._features.values() if f.matches_message(message)), None)

    def _retry_actions(
        self, record: ErrorRecord, retry_action: Optional[Callable[[], Any]]
    ) -> tuple[NotificationAction, ...]:
        if retry_action is None:
            return ()
        return (NotificationAction("Retry", partial(self._on_retry, record.signature, retry_action)),)

    def _on_retry(self, signature: str, retry_action: Callable[[], Any]) -> Any:
        # the notice goes away; a repeated failure may show it again
        self.gate.dismiss(signature)
        return retry_action()

    def _notify(self, record: ErrorRecord, **kwargs: Any) -> bool:
        policy = self.policy_for(record.domain)
        return self.gate.try_notify(
            record,
            lease_timeout=policy.lease_timeout_seconds,
            min_interval=policy.min_interval_seconds,
            **kwargs,
        )

    # -- recovery ------------------------------------------------------------

    def capture(self, raw: RawFailure | BaseException, *, domain: Optional[str] = None) -> Any:
        """Entry point for failure channels: classify then handle."""
        if isinstance(raw, FetchFailedError) and raw.handled:
            logger.debug("Skipping already handled failure for %s", raw.key)
            return None
        record = self.classifier.classify(raw, domain=domain)
        return self.handle(record)

    def handle(
        self,
        record: ErrorRecord,
        *,
        retry_action: Optional[Callable[[], Any]] = None,
        attempts: int = 1,
        key: str = "",
    ) -> Any:
        """
        Apply the recovery policy to ``record``.

        ``retry_action`` re-invokes the failed operation; NETWORK notifications
        offer it as their Retry button. Returns the fallback value when a
        NETWORK failure was replaced by one, otherwise None.
        """
        self.history.record(record)

        if self.classifier.is_silent_host(record.source_url):
            logger.info("Degrading silently for %s", record.source_url, extra={"signature": record.signature})
            return None

        if record.kind is ErrorKind.NETWORK:
            binding = self.fallback_for(record.domain)
            if binding is not None:
                context = FallbackContext(key=key, domain=record.domain, record=record, attempts=attempts)
                return self._recover_with(binding, context, retry_action)
            self._notify(
                record,
                title="Connection Issue",
                message=default_message(record, remote_api=self.classifier.is_known_host(record.source_url)),
                actions=self._retry_actions(record, retry_action),
            )
            return None

        if record.kind is ErrorKind.RESOURCE:
            feature = self._feature_for_source(record.source_url)
            if feature is not None:
                self.disable_feature(feature.name, reason=record.message)
                if feature.core:
                    self._notify(
                        record,
                        title=f"{feature.display_name} Unavailable",
                        actions=(NotificationAction("Refresh Page"),),
                    )
            return None

        feature = self._feature_for_message(record.message)
        if feature is not None:
            self.disable_feature(feature.name, reason=record.message)
        if self.is_critical(record.message):
            actions = (NotificationAction("Refresh Page"),) if record.kind is ErrorKind.RUNTIME else ()
            self._notify(record, actions=actions)
        else:
            logger.info("Non-critical %s error recorded: %s", record.kind.value, record.message)
        return None

    def _recover_with(
        self,
        binding: FallbackBinding,
        context: FallbackContext,
        retry_action: Optional[Callable[[], Any]] = None,
    ) -> Any:
        try:
            value = binding.provider(context)
        except Exception:
            logger.exception("Fallback provider for %s failed", binding.domain)
            value = None
        self._transition(binding.domain, DomainState.DEGRADED)
        self._degraded_at[binding.domain] = context.record.occurred_at
        if self.config.recovery.notify_on_fallback:
            self._notify(
                context.record,
                title=binding.title,
                message=binding.message,
                actions=self._retry_actions(context.record, retry_action),
            )
        return value

    async def fetch(
        self,
        domain: str,
        key: str,
        remote_call: RemoteCall,
        *,
        source_url: Optional[str] = None,
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Fetch ``key`` for ``domain`` through the retrying fetcher.

        With a registered fallback the caller always gets a value; without one
        the failure is surfaced to the user and FetchFailedError propagates.
        While the domain is cooling down after a fallback, only one attempt
        is made.
        """
        operation = FetchOperation(domain=domain, key=key, remote_call=remote_call, source_url=source_url, ttl=ttl)
        self._last_action = operation
        return await self._run(operation, cooldown=True)

    def in_cooldown(self, domain: str) -> bool:
        """True while a DEGRADED domain is inside ``degraded_cooldown_seconds``."""
        cooldown = self.config.recovery.degraded_cooldown_seconds
        degraded_at = self._degraded_at.get(domain)
        if cooldown <= 0 or degraded_at is None or self.domain_state(domain) is not DomainState.DEGRADED:
            return False
        return self.classifier.clock.now() - degraded_at < cooldown

    async def _run(self, operation: FetchOperation, *, cooldown: bool) -> Any:
        domain = operation.domain
        policy = self.policy_for(domain)
        retry_action = partial(self.request_retry, operation)

        async def tracked_call() -> Any:
            value = await maybe_await(operation.remote_call())
            self.mark_success(domain)
            return value

        binding = self.fallback_for(domain)

        def recover(context: FallbackContext) -> Any:
            self.history.record(context.record)
            return self._recover_with(binding, context, retry_action)

        max_retries = policy.max_retries
        if cooldown and self.in_cooldown(domain):
            logger.debug("Domain %s cooling down; single attempt", domain, extra={"domain": domain})
            max_retries = 0

        options = RetryOptions(
            max_retries=max_retries,
            base_delay=policy.base_delay_seconds,
            max_delay=policy.max_delay_seconds,
            ttl=operation.ttl if operation.ttl is not None else policy.ttl_seconds,
            fallback_provider=recover if binding is not None else None,
            domain=domain,
            source_url=operation.source_url,
        )
        try:
            return await self.fetcher.fetch_with_retry(operation.key, tracked_call, options)
        except FetchFailedError as exc:
            self.handle(exc.record, retry_action=retry_action, attempts=exc.attempts, key=operation.key)
            exc.handled = True
            raise

    # -- user actions ----------------------------------------------------------

    async def rerun(self, operation: FetchOperation) -> Any:
        """Re-run ``operation`` with the full retry policy, bypassing its cache entry."""
        self.fetcher.cache.clear(operation.key)
        self._last_action = operation
        logger.info("Retrying %s", operation.key, extra={"domain": operation.domain})
        return await self._run(operation, cooldown=False)

    async def retry_last_action(self) -> Any:
        """Re-run the most recent fetch, bypassing the cache entry for its key."""
        if self._last_action is None:
            return None
        return await self.rerun(self._last_action)

    def request_retry(self, operation: Optional[FetchOperation] = None) -> Optional[asyncio.Task]:
        """
        Synchronous hook for Retry buttons.

        Re-runs ``operation`` (the most recent fetch when omitted). Inside a
        running loop the retry is scheduled and its task returned; otherwise
        ``retry_runner`` drives it to completion.
        """
        operation = operation or self._last_action
        if operation is None:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.retry_runner(self._retry_quietly(operation))
            return None
        task = loop.create_task(self._retry_quietly(operation))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _retry_quietly(self, operation: FetchOperation) -> None:
        try:
            await self.rerun(operation)
        except FetchFailedError as exc:
            logger.warning("Retry failed: %s", exc.message)

    # -- reporting / teardown ------------------------------------------------

    def get_error_summary(self, limit: int = 10) -> dict[str, Any]:
        return {
            "total": len(self.history),
            "by_kind": self.history.counts_by_kind(),
            "recent": [r.to_dict() for r in self.history.recent(limit)],
            "domains": {d: s.value for d, s in sorted(self._states.items())},
            "disabled_features": sorted(n for n, f in self._features.items() if not f.enabled),
            "notifications": {
                "shown": self.gate.shown_count,
                "suppressed": self.gate.suppressed_count,
                "active": len(self.gate.active_signatures()),
            },
            "pending_fetches": self.fetcher.pending_keys(),
        }

    def clear_errors(self) -> int:
        """Forget recorded errors, visible notifications and fallback cool-downs."""
        self.gate.release_all()
        self._degraded_at.clear()
        return self.history.clear()

    def teardown(self) -> None:
        """Cancel pending retries, release leases and drop background retries."""
        self.fetcher.cancel_all()
        self.gate.release_all()
        self.gate.timers.cancel_all()
        for task in list(self._background):
            task.cancel()
        self._background.clear()
