"""Tests for notifications module."""

from __future__ import annotations

import io
import sys
from unittest.mock import MagicMock, patch

from rich.console import Console

from asset_pipeline.notifications import NotificationManager


def _stream() -> tuple[Console, io.StringIO]:
    buf = io.StringIO()
    return Console(file=buf, force_terminal=False, width=200), buf


class TestConsoleMessages:
    """Completion messages on the console."""

    def test_task_completion_printed(self):
        stream, buf = _stream()
        manager = NotificationManager(stream=stream)
        manager.notify_task("styles", "Styles task complete", files=2)
        out = buf.getvalue()
        assert "styles" in out
        assert "Styles task complete" in out
        assert "(2 files)" in out

    def test_markup_in_message_is_escaped(self):
        stream, buf = _stream()
        NotificationManager(stream=stream).notify_task("templates", "[bold]done[/bold]")
        assert "[bold]done[/bold]" in buf.getvalue()

    def test_failure_printed(self):
        stream, buf = _stream()
        NotificationManager(stream=stream).notify_task_failed("scripts", "boom")
        assert "scripts" in buf.getvalue()
        assert "boom" in buf.getvalue()

    def test_console_disabled(self):
        stream, buf = _stream()
        manager = NotificationManager(console=False, stream=stream)
        manager.notify_task("styles", "done")
        manager.notify_task_failed("styles", "boom")
        assert buf.getvalue() == ""


class TestDesktopNotifications:
    """Desktop notifications through plyer."""

    def test_disabled_by_default(self):
        manager = NotificationManager(console=False)
        assert manager.enabled is False
        assert manager._notifier is None

    def test_init_import_error(self):
        """Test initialization when plyer is not installed."""
        with patch.dict(sys.modules, {"plyer": None}):
            manager = NotificationManager(console=False, desktop=True)
        assert manager.enabled is False
        assert manager._notifier is None

    def test_notify_task(self):
        manager = NotificationManager(console=False)
        manager.enabled = True
        manager._notifier = MagicMock()

        manager.notify_task("images", "Images task complete", files=3)

        manager._notifier.notify.assert_called_once()
        call_args = manager._notifier.notify.call_args[1]
        assert "images" in call_args["title"]
        assert call_args["message"] == "Images task complete"
        assert call_args["app_name"] == "Asset Pipeline"
        assert call_args["timeout"] == 10

    def test_failure_message_truncated(self):
        manager = NotificationManager(console=False)
        manager.enabled = True
        manager._notifier = MagicMock()

        manager.notify_task_failed("styles", "x" * 500)

        call_args = manager._notifier.notify.call_args[1]
        assert "failed" in call_args["title"]
        assert len(call_args["message"]) == 200

    def test_backend_error_is_logged_not_raised(self):
        manager = NotificationManager(console=False)
        manager.enabled = True
        manager._notifier = MagicMock()
        manager._notifier.notify.side_effect = NotImplementedError("no backend")

        manager.notify_task("styles", "done")

    def test_nothing_sent_when_disabled(self):
        manager = NotificationManager(console=False)
        manager._notifier = MagicMock()
        manager.notify_task("styles", "done")
        manager._notifier.notify.assert_not_called()
