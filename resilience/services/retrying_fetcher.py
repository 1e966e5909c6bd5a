"""
Retrying fetcher: cache-first remote calls with bounded exponential backoff.

For one key the fetcher makes at most ``max_retries + 1`` calls, waiting
``base_delay * 2**attempts`` between them. On exhaustion (or a failure that
is not worth retrying) it hands over to the fallback provider exactly once,
or raises FetchFailedError when there is none. Concurrent callers for the
same key share one pending call.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any, Optional

from resilience.exceptions import FetchFailedError, InFlightLimitError
from resilience.services.error_classifier import ErrorClassifier, ErrorHistory, ErrorRecord
from resilience.services.expiring_cache import ExpiringCache

logger = logging.getLogger(__name__)

RemoteCall = Callable[[], Awaitable[Any] | Any]
SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class FallbackContext:
    """What a fallback provider is told about the failure it replaces."""

    key: str
    domain: Optional[str]
    record: ErrorRecord
    attempts: int


FallbackProvider = Callable[[FallbackContext], Any]


@dataclass(frozen=True)
class RetryOptions:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: Optional[float] = 30.0
    ttl: Optional[float] = None
    fallback_provider: Optional[FallbackProvider] = None
    domain: Optional[str] = None
    source_url: Optional[str] = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")


@dataclass
class RetryState:
    """Per-key retry bookkeeping; exists only while a call is pending."""

    key: str
    attempts: int = 0
    next_delay: float = 0.0


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class RetryingFetcher:
    """Cache-first fetch with retry, in-flight sharing and cancellation."""

    def __init__(
        self,
        cache: ExpiringCache,
        classifier: ErrorClassifier,
        history: Optional[ErrorHistory] = None,
        sleep: Optional[SleepFn] = None,
        max_in_flight: int = 32,
        default_options: Optional[RetryOptions] = None,
    ):
        self.cache = cache
        self.classifier = classifier
        self.history = history
        self._sleep = sleep or asyncio.sleep
        self.max_in_flight = max_in_flight
        self.default_options = default_options or RetryOptions()
        self._in_flight: dict[str, asyncio.Task] = {}
        self._states: dict[str, RetryState] = {}

    @staticmethod
    def compute_delay(attempts: int, options: RetryOptions) -> float:
        delay = options.base_delay * (2 ** attempts)
        if options.max_delay is not None:
            delay = min(delay, options.max_delay)
        return delay

    async def fetch_with_retry(
        self,
        key: str,
        remote_call: RemoteCall,
        options: Optional[RetryOptions] = None,
        **overrides: Any,
    ) -> Any:
        """
        Return the cached value for ``key`` or run ``remote_call`` with retries.

        Keyword overrides are applied on top of ``options`` (or the fetcher's
        defaults), e.g. ``fetch_with_retry(key, call, ttl=600)``.
        """
        opts = options or self.default_options
        if overrides:
            opts = replace(opts, **overrides)

        entry = self.cache.get_entry(key)
        if entry is not None:
            logger.debug("Cache hit for %s", key)
            return entry.value

        task = self._in_flight.get(key)
        if task is None:
            if len(self._in_flight) >= self.max_in_flight:
                raise InFlightLimitError(key, self.max_in_flight)
            task = asyncio.ensure_future(self._run(key, remote_call, opts))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._discard(k, t))
        else:
            logger.debug("Joining pending call for %s", key)
        return await asyncio.shield(task)

    async def _run(self, key: str, remote_call: RemoteCall, opts: RetryOptions) -> Any:
        state = RetryState(key=key)
        self._states[key] = state
        try:
            while True:
                try:
                    value = await maybe_await(remote_call())
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    record = self.classifier.classify(
                        exc, retry_count=state.attempts, domain=opts.domain, source_url=opts.source_url
                    )
                    if self.history is not None:
                        self.history.record(record)

                    if state.attempts < opts.max_retries and self.classifier.is_retryable(record):
                        state.next_delay = self.compute_delay(state.attempts, opts)
                        logger.info(
                            "Retrying %s in %.2fs (attempt %d/%d): %s",
                            key, state.next_delay, state.attempts + 1, opts.max_retries, record.message,
                            extra={"signature": record.signature, "domain": opts.domain or ""},
                        )
                        await self._sleep(state.next_delay)
                        state.attempts += 1
                        continue

                    return await self._give_up(key, state, record, opts)

                self.cache.set(key, value, ttl=opts.ttl)
                if state.attempts:
                    logger.info("Fetched %s after %d retries", key, state.attempts)
                return value
        finally:
            self._states.pop(key, None)

    async def _give_up(self, key: str, state: RetryState, record: ErrorRecord, opts: RetryOptions) -> Any:
        attempts = state.attempts + 1
        logger.warning(
            "Giving up on %s after %d attempt(s): %s",
            key, attempts, record.message,
            extra={"signature": record.signature, "error_kind": record.kind.value, "domain": opts.domain or ""},
        )
        if opts.fallback_provider is None:
            raise FetchFailedError(key, record, attempts) from record.cause
        context = FallbackContext(key=key, domain=opts.domain, record=record, attempts=attempts)
        return await maybe_await(opts.fallback_provider(context))

    def _discard(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # mark the exception as retrieved when every waiter went away
            task.exception()

    def cancel(self, key: str) -> bool:
        """Cancel the pending call (and any backoff sleep) for ``key``."""
        task = self._in_flight.get(key)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("Cancelled pending fetch for %s", key)
        return True

    def cancel_all(self) -> int:
        cancelled = 0
        for key in list(self._in_flight):
            if self.cancel(key):
                cancelled += 1
        return cancelled

    async def aclose(self) -> None:
        tasks = list(self._in_flight.values())
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def pending_keys(self) -> list[str]:
        return [k for k, t in self._in_flight.items() if not t.done()]

    def retry_state(self, key: str) -> Optional[RetryState]:
        return self._states.get(key)
