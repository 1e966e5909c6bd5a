"""
HTTP client wrapper for the remote REST API.

All remote reads go through InterceptingHttpClient instead of patching a
global fetch function. Interceptors observe requests, responses and
transport failures; non-2xx responses and transport errors are raised as
tagged exceptions so the classifier sees NETWORK failures directly.
"""

from __future__ import annotations

import logging
from abc import ABC
from typing import Any, Iterable, Optional

import httpx

from resilience.exceptions import (
    HttpStatusError,
    NotFoundError,
    RateLimitedError,
    TransportFailure,
)
from resilience.utils.redaction import PIIRedactor

logger = logging.getLogger(__name__)


class HttpInterceptor(ABC):
    """Hooks around every request; all methods are optional."""

    def before_request(self, request: httpx.Request) -> None:
        pass

    def after_response(self, request: httpx.Request, response: httpx.Response) -> None:
        pass

    def on_transport_error(self, request: httpx.Request, error: Exception) -> None:
        pass


class AuthHeaderInterceptor(HttpInterceptor):
    """Adds the API token and user agent to requests for the remote API host."""

    def __init__(self, token: Optional[str], user_agent: str, hosts: Iterable[str] = ("api.github.com",)):
        self._token = token
        self._user_agent = user_agent
        self._hosts = tuple(hosts)

    def before_request(self, request: httpx.Request) -> None:
        request.headers.setdefault("User-Agent", self._user_agent)
        request.headers.setdefault("Accept", "application/vnd.github+json")
        if self._token and request.url.host in self._hosts:
            request.headers["Authorization"] = f"Bearer {self._token}"


class FailureLoggingInterceptor(HttpInterceptor):
    """Logs failed responses and transport errors with redacted URLs."""

    def __init__(self):
        self.failures = 0

    def after_response(self, request: httpx.Request, response: httpx.Response) -> None:
        if response.is_success:
            return
        self.failures += 1
        logger.info(
            "HTTP %s for %s %s",
            response.status_code,
            request.method,
            PIIRedactor.redact_url(str(request.url)),
        )

    def on_transport_error(self, request: httpx.Request, error: Exception) -> None:
        self.failures += 1
        logger.info(
            "Transport error for %s %s: %s",
            request.method,
            PIIRedactor.redact_url(str(request.url)),
            type(error).__name__,
        )


def _rate_limit_reset(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("x-ratelimit-reset")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def raise_for_status(response: httpx.Response) -> None:
    """Translate a non-2xx response into a tagged HttpStatusError."""
    if response.is_success:
        return
    url = PIIRedactor.redact_url(str(response.request.url))
    status = response.status_code
    if status == 404:
        raise NotFoundError(url)
    if status in (403, 429):
        raise RateLimitedError(url, status=status, reset_at=_rate_limit_reset(response))
    raise HttpStatusError(status, url, reason=response.reason_phrase)


class InterceptingHttpClient:
    """Async GET-only client over ``httpx.AsyncClient`` with interceptors."""

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float = 10.0,
        interceptors: Iterable[HttpInterceptor] = (),
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.interceptors: list[HttpInterceptor] = list(interceptors)
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport, follow_redirects=True
        )

    def add_interceptor(self, interceptor: HttpInterceptor) -> None:
        self.interceptors.append(interceptor)

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        request = self._client.build_request("GET", self.url_for(path), params=params)
        for interceptor in self.interceptors:
            interceptor.before_request(request)
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as exc:
            for interceptor in self.interceptors:
                interceptor.on_transport_error(request, exc)
            raise TransportFailure(
                str(exc) or type(exc).__name__,
                url=PIIRedactor.redact_url(str(request.url)),
                cause=exc,
            ) from exc
        for interceptor in self.interceptors:
            interceptor.after_response(request, response)
        return response

    async def get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET ``path`` and decode the JSON body; raises tagged errors on failure."""
        response = await self.get(path, params=params)
        raise_for_status(response)
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "InterceptingHttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
