"""
Desktop notifications for the loop engine.

Uses notify-send (freedesktop compliant) for notifications.
Works with mako, dunst, GNOME, KDE notification daemons.
"""

import logging
import shutil
import subprocess
import threading
from typing import Callable, Optional

from loopengine.workflow.broadcaster import StatusEvent

logger = logging.getLogger(__name__)


VALID_URGENCIES = ("low", "normal", "critical")

MAX_NOTIFICATION_LENGTH = 200


def notify(title: str, message: str, urgency: str = "normal"):
    """
    Send desktop notification.

    Args:
        title: Notification title
        message: Notification body
        urgency: One of "low", "normal", "critical"
    """
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return

    if len(message) > MAX_NOTIFICATION_LENGTH:
        message = message[:MAX_NOTIFICATION_LENGTH] + "..."

    try:
        result = subprocess.run([
            "notify-send",
            "--urgency", urgency,
            "--app-name", "Loop Engine",
            title,
            message
        ], capture_output=True, text=True, timeout=5)

        if result.returncode != 0:
            logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")


def notify_run_started(title: str):
    notify(f"Loop Engine: {title}", "Agent started", "low")


def notify_run_finished(title: str, iterations: int):
    """Notify that a ticket's agent is no longer running."""
    notify(
        f"Loop Engine: {title}",
        f"Agent finished after {iterations} iteration(s), ready for testing",
        "normal"
    )


class RunNotifier:
    """Status subscriber that notifies when a ticket's run starts or ends.

    Only edges are reported; repeated events with the same running flag
    are ignored.
    """

    def __init__(self, describe: Optional[Callable[[str], str]] = None):
        # ticket id -> human-readable label for the notification title
        self.describe = describe or (lambda ticket_id: ticket_id)
        self._running: dict[str, bool] = {}
        self._lock = threading.Lock()

    def __call__(self, event: StatusEvent) -> None:
        with self._lock:
            was_running = self._running.get(event.ticket_id, False)
            self._running[event.ticket_id] = event.running
        if event.running == was_running:
            return

        label = self.describe(event.ticket_id)
        if event.running:
            notify_run_started(label)
        else:
            notify_run_finished(label, event.iteration)
