"""Task completion notifications.

Completion messages always go to the console; desktop notifications are
opt-in (``notifications.desktop`` in the config) and need plyer.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger
from rich.console import Console
from rich.markup import escape


class NotificationManager:
    """Report task completions and failures on the console and desktop."""

    def __init__(self, console: bool = True, desktop: bool = False, stream: Optional[Console] = None):
        """Initialize notification manager.

        Args:
            console: Print completion messages to the console.
            desktop: Also send desktop notifications.
            stream: Console to print to (defaults to stderr).
        """
        self.console_enabled = console
        self.enabled = desktop
        self.console = stream or Console(stderr=True)
        self._notifier = None

        if desktop:
            self._initialize_notifier()

    def _initialize_notifier(self) -> None:
        """Initialize the notification backend."""
        try:
            from plyer import notification

            self._notifier = notification
            logger.debug("Desktop notifications initialized")
        except ImportError:
            logger.warning(
                "plyer not installed - desktop notifications disabled. "
                "Install with: pip install plyer"
            )
            self.enabled = False

    def notify_task(self, task: str, message: str, files: int = 0) -> None:
        """Announce that a task pushed *files* outputs through.

        Args:
            task: Task name.
            message: Completion message configured on the pipeline.
            files: Number of files in the batch.
        """
        if self.console_enabled:
            self.console.print(f"[green]✔[/green] [bold]{task}[/bold]: {escape(message)} [dim]({files} files)[/dim]")

        if not self.enabled or not self._notifier:
            return
        self._send_notification(f"✅ {task}", message)

    def notify_task_failed(self, task: str, error: str) -> None:
        """Announce a failed task run.

        Args:
            task: Task name.
            error: Error message.
        """
        if self.console_enabled:
            self.console.print(f"[red]✘[/red] [bold]{task}[/bold]: {escape(error)}", highlight=False)

        if not self.enabled or not self._notifier:
            return
        self._send_notification(f"❌ {task} failed", error[:200])  # Truncate long errors

    def _send_notification(
        self,
        title: str,
        message: str,
        timeout: int = 10,
    ) -> None:
        """Send desktop notification.

        Args:
            title: Notification title.
            message: Notification message.
            timeout: Timeout in seconds (0 = no timeout).
        """
        if not self._notifier:
            return

        try:
            self._notifier.notify(
                title=title,
                message=message,
                app_name="Asset Pipeline",
                timeout=timeout,
            )
            logger.debug("Notification sent: {}", title)
        except Exception as e:
            logger.warning("Failed to send notification: {}", e)
