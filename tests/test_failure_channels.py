"""
Tests for process-wide failure channels.
"""

import asyncio
import sys
import threading
from unittest.mock import Mock

import pytest

from resilience.services.error_classifier import ErrorKind
from resilience.services.failure_channels import FailureChannels


class TestFailureChannels:
    """Test hook installation and routing."""

    def test_install_and_uninstall_restore_hooks(self, orchestrator):
        original_excepthook = sys.excepthook
        original_threading_hook = threading.excepthook

        with FailureChannels(orchestrator) as channels:
            assert channels.installed
            assert sys.excepthook == channels._excepthook
            assert threading.excepthook == channels._threading_hook

        assert sys.excepthook is original_excepthook
        assert threading.excepthook is original_threading_hook

    def test_loop_only_install_leaves_process_hooks_alone(self, orchestrator):
        """A per-session install touches only its own event loop."""
        original_excepthook = sys.excepthook
        original_threading_hook = threading.excepthook
        loop = asyncio.new_event_loop()
        try:
            channels = FailureChannels(orchestrator).install(loop, process_hooks=False)
            assert sys.excepthook is original_excepthook
            assert threading.excepthook is original_threading_hook
            assert loop.get_exception_handler() == channels._loop_handler

            channels.uninstall()
            assert loop.get_exception_handler() is None
            assert sys.excepthook is original_excepthook
        finally:
            loop.close()

    def test_uncaught_exception_is_runtime_and_chained(self, orchestrator, history):
        channels = FailureChannels(orchestrator)
        previous = Mock()
        channels._prev_excepthook = previous

        exc = ValueError("boom")
        channels._excepthook(ValueError, exc, None)

        assert history.recent(1)[0].kind is ErrorKind.RUNTIME
        previous.assert_called_once_with(ValueError, exc, None)

    def test_keyboard_interrupt_not_captured(self, orchestrator, history):
        channels = FailureChannels(orchestrator)
        channels._prev_excepthook = Mock()
        channels._excepthook(KeyboardInterrupt, KeyboardInterrupt(), None)
        assert len(history) == 0

    def test_thread_exception_is_captured(self, orchestrator, history):
        channels = FailureChannels(orchestrator).install()
        original = channels._prev_threading_hook
        channels._prev_threading_hook = Mock()
        try:
            thread = threading.Thread(target=lambda: 1 / 0)
            thread.start()
            thread.join()
        finally:
            channels._prev_threading_hook = original
            channels.uninstall()

        assert threading.excepthook is original

        assert history.recent(1)[0].kind is ErrorKind.RUNTIME
        assert "division by zero" in history.recent(1)[0].message

    def test_resource_failure_report(self, orchestrator, history):
        orchestrator.register_feature("performance-monitor", source_hints=["performance-monitor"])
        channels = FailureChannels(orchestrator)

        channels.report_resource_failure("https://cdn.example.org/performance-monitor.js")

        record = history.recent(1)[0]
        assert record.kind is ErrorKind.RESOURCE
        assert record.message == "Failed to load script: https://cdn.example.org/performance-monitor.js"
        assert not orchestrator.is_feature_enabled("performance-monitor")

    def test_routing_failure_is_contained(self, orchestrator):
        orchestrator.capture = Mock(side_effect=RuntimeError("orchestrator broken"))
        channels = FailureChannels(orchestrator)
        channels._prev_excepthook = None
        channels._excepthook(ValueError, ValueError("boom"), None)
        orchestrator.capture.assert_called_once()


class TestAsyncFailureChannels:
    """Test async failure capture."""

    @pytest.mark.asyncio
    async def test_loop_exception_handler(self, orchestrator, history):
        loop = asyncio.get_running_loop()
        previous = loop.get_exception_handler()
        channels = FailureChannels(orchestrator).install()
        try:
            loop.call_exception_handler({"message": "Task exception was never retrieved", "exception": RuntimeError("lost task")})
        finally:
            channels.uninstall()

        assert history.recent(1)[0].kind is ErrorKind.ASYNC
        assert history.recent(1)[0].message == "lost task"
        assert loop.get_exception_handler() is previous

    @pytest.mark.asyncio
    async def test_watch_reports_failed_task(self, orchestrator, history):
        channels = FailureChannels(orchestrator)

        async def broken():
            raise RuntimeError("background sync failed")

        task = channels.watch(asyncio.ensure_future(broken()))
        with pytest.raises(RuntimeError):
            await task
        await asyncio.sleep(0)

        assert history.recent(1)[0].kind is ErrorKind.ASYNC

    @pytest.mark.asyncio
    async def test_watch_ignores_cancelled_task(self, orchestrator, history):
        channels = FailureChannels(orchestrator)
        task = channels.watch(asyncio.ensure_future(asyncio.sleep(10)))
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        assert len(history) == 0
