"""Best-effort desktop notifications.

Notifications are sent with the freedesktop `notify-send` command. Any
failure is logged and reported through the return value; it never
interrupts reconciliation.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)

APP_NAME = "prefixsync"
NOTIFY_COMMAND = "notify-send"
NOTIFY_TIMEOUT_SECONDS = 5


class Notifier:
    """Send desktop notifications if enabled and available."""

    def __init__(self, enabled: bool = True, command: str = NOTIFY_COMMAND) -> None:
        self._enabled = enabled
        self._command = command

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def notify(self, summary: str, body: str, urgent: bool = False) -> bool:
        """Show a notification without blocking the event loop.

        Returns:
            True if the notification was handed to the desktop, False otherwise.
        """
        if not self._enabled:
            return False

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.send, summary, body, urgent)

    def send(self, summary: str, body: str, urgent: bool = False) -> bool:
        """Run notify-send synchronously, waiting at most NOTIFY_TIMEOUT_SECONDS."""
        executable = shutil.which(self._command)
        if executable is None:
            logger.debug("Notification command not found", extra={"command": self._command})
            return False

        cmd = [
            executable,
            "--app-name",
            APP_NAME,
            "--urgency",
            "critical" if urgent else "low",
            summary,
            body,
        ]
        try:
            result = subprocess.run(
                cmd,
                timeout=NOTIFY_TIMEOUT_SECONDS,
                capture_output=True,
                text=True,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Failed to send notification", extra={"error": str(e)})
            return False

        if result.returncode != 0:
            logger.warning(
                "Failed to send notification",
                extra={"returncode": result.returncode, "stderr": result.stderr.strip()},
            )
            return False
        return True
