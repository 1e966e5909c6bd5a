"""
Error classification for the resilience layer.

Every failure is turned into an immutable ErrorRecord with one of four kinds.
Failures are tagged with their origin at the point of capture (transport,
resource load, async task, runtime) and the classifier only decides between
those tags; it never infers a kind from free message text.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional
from urllib.parse import urlsplit

import httpx

from resilience.exceptions import ResilienceError
from resilience.utils.clock import Clock, MonotonicClock
from resilience.utils.redaction import PIIRedactor

logger = logging.getLogger(__name__)

SIGNATURE_MESSAGE_LENGTH = 50


class ErrorKind(str, Enum):
    """Closed taxonomy of failure kinds."""

    NETWORK = "NETWORK"
    RESOURCE = "RESOURCE"
    RUNTIME = "RUNTIME"
    ASYNC = "ASYNC"


class FailureOrigin(str, Enum):
    """Where a failure was captured."""

    TRANSPORT = "transport"
    RESOURCE_LOAD = "resource_load"
    ASYNC_TASK = "async_task"
    RUNTIME = "runtime"


@dataclass
class RawFailure:
    """A failure as seen by a capture point, before classification."""

    origin: FailureOrigin
    message: str
    url: Optional[str] = None
    status: Optional[int] = None
    element: Optional[str] = None
    exception: Optional[BaseException] = None


@dataclass(frozen=True)
class ErrorRecord:
    """Classified failure. Immutable once created."""

    kind: ErrorKind
    message: str
    signature: str
    occurred_at: float
    source_url: Optional[str] = None
    retry_count: int = 0
    status: Optional[int] = None
    domain: Optional[str] = None
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "signature": self.signature,
            "occurred_at": self.occurred_at,
            "source_url": self.source_url,
            "retry_count": self.retry_count,
            "status": self.status,
            "domain": self.domain,
        }


def make_signature(kind: ErrorKind, message: str, source_url: Optional[str]) -> str:
    """Deduplication key: kind, first 50 message chars and source url."""
    return f"{kind.value}:{message[:SIGNATURE_MESSAGE_LENGTH]}:{source_url or ''}"


def host_of(url: Optional[str]) -> str:
    if not url:
        return ""
    return (urlsplit(url).hostname or "").lower()


def _host_matches(url: Optional[str], hosts: Iterable[str]) -> bool:
    host = host_of(url)
    if not host:
        return False
    return any(host == h or host.endswith("." + h) for h in hosts)


class ErrorClassifier:
    """Maps raw failures and exceptions to ErrorRecords."""

    def __init__(
        self,
        known_hosts: Iterable[str] = ("api.github.com",),
        silent_hosts: Iterable[str] = (),
        non_retryable_statuses: Iterable[int] = (404, 410),
        clock: Optional[Clock] = None,
    ):
        self.known_hosts = tuple(h.lower() for h in known_hosts)
        self.silent_hosts = tuple(h.lower() for h in silent_hosts)
        self.non_retryable_statuses = frozenset(non_retryable_statuses)
        self._clock = clock or MonotonicClock()

    @property
    def clock(self) -> Clock:
        """Clock that stamps ``ErrorRecord.occurred_at``."""
        return self._clock

    def is_known_host(self, url: Optional[str]) -> bool:
        return _host_matches(url, self.known_hosts)

    def is_silent_host(self, url: Optional[str]) -> bool:
        return _host_matches(url, self.silent_hosts)

    def to_raw_failure(self, exc: BaseException, url: Optional[str] = None) -> RawFailure:
        """Tag an exception with its origin."""
        if isinstance(exc, ResilienceError) and exc.error_kind is not None:
            origin = {
                ErrorKind.NETWORK.value: FailureOrigin.TRANSPORT,
                ErrorKind.RESOURCE.value: FailureOrigin.RESOURCE_LOAD,
                ErrorKind.ASYNC.value: FailureOrigin.ASYNC_TASK,
            }.get(exc.error_kind, FailureOrigin.RUNTIME)
            return RawFailure(
                origin=origin,
                message=exc.message,
                url=getattr(exc, "url", None) or url,
                status=getattr(exc, "status", None),
                exception=exc,
            )
        if isinstance(exc, httpx.HTTPStatusError):
            return RawFailure(
                origin=FailureOrigin.TRANSPORT,
                message=f"HTTP {exc.response.status_code}",
                url=str(exc.request.url),
                status=exc.response.status_code,
                exception=exc,
            )
        if isinstance(exc, httpx.RequestError):
            try:
                request_url = str(exc.request.url)
            except RuntimeError:
                request_url = url
            return RawFailure(
                origin=FailureOrigin.TRANSPORT,
                message=f"Failed to fetch: {str(exc) or type(exc).__name__}",
                url=request_url,
                exception=exc,
            )
        if isinstance(exc, (ConnectionError, TimeoutError)):
            return RawFailure(
                origin=FailureOrigin.TRANSPORT,
                message=f"Failed to fetch: {str(exc) or type(exc).__name__}",
                url=url,
                exception=exc,
            )
        return RawFailure(
            origin=FailureOrigin.RUNTIME,
            message=str(exc) or type(exc).__name__,
            url=url,
            exception=exc,
        )

    def kind_for(self, raw: RawFailure) -> ErrorKind:
        """Apply the classification rules in priority order."""
        if raw.status is not None or raw.origin is FailureOrigin.TRANSPORT or self.is_known_host(raw.url):
            return ErrorKind.NETWORK
        if raw.origin is FailureOrigin.RESOURCE_LOAD:
            return ErrorKind.RESOURCE
        if raw.origin is FailureOrigin.ASYNC_TASK:
            return ErrorKind.ASYNC
        return ErrorKind.RUNTIME

    def classify(
        self,
        raw: RawFailure | BaseException,
        *,
        retry_count: int = 0,
        domain: Optional[str] = None,
        source_url: Optional[str] = None,
    ) -> ErrorRecord:
        if not isinstance(raw, RawFailure):
            raw = self.to_raw_failure(raw, url=source_url)
        kind = self.kind_for(raw)
        message = PIIRedactor.redact(raw.message)
        url = PIIRedactor.redact_url(raw.url or source_url)
        return ErrorRecord(
            kind=kind,
            message=message,
            signature=make_signature(kind, message, url),
            occurred_at=self._clock.now(),
            source_url=url,
            retry_count=retry_count,
            status=raw.status,
            domain=domain,
            cause=raw.exception,
        )

    def is_retryable(self, record: ErrorRecord) -> bool:
        """Only network failures are retried, and never permanent statuses."""
        if record.kind is not ErrorKind.NETWORK:
            return False
        return record.status not in self.non_retryable_statuses


class ErrorHistory:
    """Bounded, append-only log of ErrorRecords; oldest entries fall off."""

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._records: deque[ErrorRecord] = deque(maxlen=capacity)

    def record(self, record: ErrorRecord) -> bool:
        """Append ``record``; a record already present is not added twice."""
        if any(r is record for r in self._records):
            return False
        self._records.append(record)
        logger.debug(
            "Recorded %s error",
            record.kind.value,
            extra={"error_kind": record.kind.value, "signature": record.signature, "domain": record.domain or ""},
        )
        return True

    def contains(self, record: ErrorRecord) -> bool:
        return any(r is record for r in self._records)

    def recent(self, limit: int = 20) -> list[ErrorRecord]:
        if limit <= 0:
            return []
        return list(self._records)[-limit:]

    def counts_by_kind(self) -> dict[str, int]:
        counts = Counter(r.kind.value for r in self._records)
        return {kind.value: counts.get(kind.value, 0) for kind in ErrorKind}

    def clear(self) -> int:
        count = len(self._records)
        self._records.clear()
        return count

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(list(self._records))
