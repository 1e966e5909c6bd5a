"""
Pytest configuration and fixtures for resilience layer tests.
"""

import sys
from pathlib import Path

import httpx
import pytest

# Add repo root to path for imports
sys.path.append(str(Path(__file__).parent.parent))

from config.config import Config, FeatureFlags
from resilience.services.error_classifier import ErrorClassifier, ErrorHistory
from resilience.services.expiring_cache import ExpiringCache
from resilience.services.local_store import MemoryKeyValueStore
from resilience.services.notification_gate import NotificationGate
from resilience.services.recovery_orchestrator import RecoveryOrchestrator
from resilience.services.retrying_fetcher import RetryingFetcher
from resilience.ui.notifications import InMemoryNotificationRenderer
from resilience.utils.clock import ManualClock
from resilience.utils.timers import TimerGroup


class SleepRecorder:
    """Stands in for asyncio.sleep: records delays and advances the manual clock."""

    def __init__(self, clock: ManualClock | None = None):
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)


@pytest.fixture
def test_config():
    """Provide a test configuration instance."""
    config = Config()
    config.environment = "testing"
    config.debug = True
    config.notifications.renderer = "memory"
    config.store.dsn = "sqlite:///:memory:"
    config.feature_flags = FeatureFlags()
    return config


@pytest.fixture
def clock():
    return ManualClock(current=1000.0)


@pytest.fixture
def sleep(clock):
    return SleepRecorder(clock)


@pytest.fixture
def renderer():
    return InMemoryNotificationRenderer()


@pytest.fixture
def classifier(clock):
    return ErrorClassifier(
        known_hosts=["api.github.com"],
        silent_hosts=["google-analytics.com"],
        clock=clock,
    )


@pytest.fixture
def history():
    return ErrorHistory(capacity=100)


@pytest.fixture
def cache(clock):
    return ExpiringCache(default_ttl=300.0, clock=clock)


@pytest.fixture
def gate(renderer, clock):
    return NotificationGate(renderer, timers=TimerGroup(), clock=clock, min_interval=1.0, lease_timeout=5.0)


@pytest.fixture
def fetcher(cache, classifier, history, sleep):
    return RetryingFetcher(cache, classifier, history=history, sleep=sleep)


@pytest.fixture
def orchestrator(classifier, gate, fetcher, history, test_config):
    return RecoveryOrchestrator(classifier, gate, fetcher, history, test_config)


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


def json_transport(routes: dict[str, list]) -> httpx.MockTransport:
    """
    Build a MockTransport answering by URL path.

    Each route maps to a list of responses consumed in order; the last one
    repeats. A response is (status, json_body) or an exception instance.
    """
    calls: dict[str, int] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        responses = routes[path]
        index = min(calls.get(path, 0), len(responses) - 1)
        calls[path] = calls.get(path, 0) + 1
        response = responses[index]
        if isinstance(response, Exception):
            raise response
        status, body = response
        return httpx.Response(status, json=body)

    transport = httpx.MockTransport(handler)
    transport.calls = calls
    return transport


@pytest.fixture
def make_transport():
    return json_transport
