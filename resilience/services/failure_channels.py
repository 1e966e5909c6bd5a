"""
Process-wide failure channels.

Uncaught exceptions (main thread and worker threads) become RUNTIME
failures, unretrieved asyncio task exceptions become ASYNC failures and
reported resource loads become RESOURCE failures. Each failure is tagged at
the hook that caught it and handed to the recovery orchestrator. Previous
hooks stay chained and are restored by ``uninstall``.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import Any, Optional

from resilience.services.error_classifier import FailureOrigin, RawFailure
from resilience.services.recovery_orchestrator import RecoveryOrchestrator

logger = logging.getLogger(__name__)


class FailureChannels:
    """Installs excepthooks and the loop exception handler for one orchestrator."""

    def __init__(self, orchestrator: RecoveryOrchestrator):
        self.orchestrator = orchestrator
        self.installed = False
        self._prev_excepthook = None
        self._prev_threading_hook = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._prev_loop_handler = None

    def install(
        self, loop: Optional[asyncio.AbstractEventLoop] = None, *, process_hooks: bool = True
    ) -> "FailureChannels":
        """
        Start routing failures to the orchestrator.

        Args:
            loop: Event loop whose exception handler is replaced; the running loop if omitted
            process_hooks: Also chain sys.excepthook and threading.excepthook. A server
                hosting one context per session leaves these off.
        """
        if self.installed:
            return self
        if process_hooks:
            self._prev_excepthook = sys.excepthook
            sys.excepthook = self._excepthook
            self._prev_threading_hook = threading.excepthook
            threading.excepthook = self._threading_hook

        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        if loop is not None:
            self._loop = loop
            self._prev_loop_handler = loop.get_exception_handler()
            loop.set_exception_handler(self._loop_handler)

        self.installed = True
        logger.debug("Failure channels installed")
        return self

    def uninstall(self) -> None:
        if not self.installed:
            return
        if sys.excepthook == self._excepthook:
            sys.excepthook = self._prev_excepthook
        if threading.excepthook == self._threading_hook:
            threading.excepthook = self._prev_threading_hook
        if self._loop is not None and not self._loop.is_closed():
            self._loop.set_exception_handler(self._prev_loop_handler)
        self._loop = None
        self.installed = False
        logger.debug("Failure channels uninstalled")

    def _capture(self, raw: RawFailure) -> None:
        try:
            self.orchestrator.capture(raw)
        except Exception:
            logger.exception("Failed to route %s failure", raw.origin.value)

    # -- hooks -----------------------------------------------------------------

    def _excepthook(self, exc_type, exc, tb) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            self._capture(
                RawFailure(origin=FailureOrigin.RUNTIME, message=str(exc) or exc_type.__name__, exception=exc)
            )
        if self._prev_excepthook is not None:
            self._prev_excepthook(exc_type, exc, tb)

    def _threading_hook(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is not SystemExit:
            exc = args.exc_value
            self._capture(
                RawFailure(
                    origin=FailureOrigin.RUNTIME,
                    message=str(exc) or args.exc_type.__name__,
                    exception=exc,
                )
            )
        if self._prev_threading_hook is not None:
            self._prev_threading_hook(args)

    def _loop_handler(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        message = str(exc) if exc is not None and str(exc) else context.get("message", "Unhandled async error")
        self._capture(RawFailure(origin=FailureOrigin.ASYNC_TASK, message=message, exception=exc))
        if self._prev_loop_handler is not None:
            self._prev_loop_handler(loop, context)
        else:
            logger.debug("Async failure captured: %s", context.get("message", message))

    # -- explicit reporting ------------------------------------------------------

    def report_resource_failure(self, source_url: str, element: str = "script") -> Any:
        """A script, stylesheet or image failed to load."""
        return self.orchestrator.capture(
            RawFailure(
                origin=FailureOrigin.RESOURCE_LOAD,
                message=f"Failed to load {element}: {source_url}",
                url=source_url,
                element=element,
            )
        )

    def report_async_failure(self, exc: BaseException) -> Any:
        return self.orchestrator.capture(
            RawFailure(origin=FailureOrigin.ASYNC_TASK, message=str(exc) or type(exc).__name__, exception=exc)
        )

    def watch(self, task: asyncio.Task) -> asyncio.Task:
        """Report the task's exception when it fails instead of waiting for GC."""

        def _done(t: asyncio.Task) -> None:
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self.report_async_failure(exc)

        task.add_done_callback(_done)
        return task

    def __enter__(self) -> "FailureChannels":
        return self.install()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.uninstall()
        return False
