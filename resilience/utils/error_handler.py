"""
Error boundaries for widget code.

Failures inside a boundary are classified and handed to the recovery
orchestrator instead of escaping to the page; the boundary can also switch
off the feature it protects.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from resilience.services.recovery_orchestrator import RecoveryOrchestrator

logger = logging.getLogger(__name__)


class ErrorBoundary:
    """Context manager (sync and async) that routes errors to the orchestrator."""

    def __init__(
        self,
        orchestrator: "RecoveryOrchestrator",
        fallback_message: str = "An error occurred in this section.",
        *,
        feature: Optional[str] = None,
        domain: Optional[str] = None,
        reraise: bool = False,
        on_error: Optional[Callable[[str], Any]] = None,
    ):
        self.orchestrator = orchestrator
        self.fallback_message = fallback_message
        self.feature = feature
        self.domain = domain
        self.reraise = reraise
        self.on_error = on_error
        self.error: Optional[BaseException] = None

    def _handle(self, exc: BaseException) -> bool:
        self.error = exc
        self.orchestrator.capture(exc, domain=self.domain)
        if self.feature:
            self.orchestrator.disable_feature(self.feature, reason=str(exc) or type(exc).__name__)
        if self.on_error is not None:
            self.on_error(self.fallback_message)
        # suppress unless asked to propagate
        return not self.reraise

    def __enter__(self) -> "ErrorBoundary":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None or not issubclass(exc_type, Exception):
            return False
        return self._handle(exc_val)

    async def __aenter__(self) -> "ErrorBoundary":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        return self.__exit__(exc_type, exc_val, exc_tb)


def handle_errors(
    orchestrator: "RecoveryOrchestrator",
    *,
    reraise: bool = True,
    default: Any = None,
    domain: Optional[str] = None,
) -> Callable:
    """
    Decorator to route errors of a sync or async function to the orchestrator.

    Args:
        orchestrator: Recovery orchestrator that receives the failure
        reraise: Whether to reraise the exception after handling
        default: Value returned instead when not reraising
        domain: Data domain the function belongs to, if any
    """

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    orchestrator.capture(e, domain=domain)
                    if reraise:
                        raise
                    return default

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                orchestrator.capture(e, domain=domain)
                if reraise:
                    raise
                return default

        return wrapper

    return decorator


def safe_execute(
    orchestrator: "RecoveryOrchestrator",
    func: Callable,
    *args,
    default_return: Any = None,
    **kwargs,
) -> Any:
    """
    Safely execute a function with error handling.

    Returns:
        Function result or default_return if error occurs
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        orchestrator.capture(e)
        logger.debug("safe_execute returned default for %s", getattr(func, "__name__", func))
        return default_return
