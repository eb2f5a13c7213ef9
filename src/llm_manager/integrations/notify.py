"""Best-effort completion notifications."""

import logging
import threading
from datetime import datetime
from pathlib import Path

from llm_manager.integrations import slack as slack_mod

logger = logging.getLogger(__name__)


class Notifier:
    """Fans a (title, message) pair out to the completions log and Slack.

    Never raises: every sink failure is logged and dropped. Slack posts are
    sent in the background; call ``join`` before exiting to let them finish.
    """

    def __init__(
        self,
        completions_log: Path | None = None,
        slack_token: str | None = None,
        slack_channel: str | None = None,
    ):
        self.completions_log = completions_log
        self.slack_token = slack_token
        self.slack_channel = slack_channel
        self._lock = threading.Lock()
        self._senders: list[threading.Thread] = []

    def notify(
        self,
        title: str,
        message: str,
        task_id: str | None = None,
        status: str | None = None,
        backend: str | None = None,
        description: str = "",
    ):
        logger.info("NOTIFY: %s - %s", title, message)
        self._append_completion(message)
        self._post_slack(title, message, task_id, status, backend, description)

    def _append_completion(self, message: str):
        if not self.completions_log:
            return
        try:
            self.completions_log.parent.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            with self._lock, open(self.completions_log, "a") as f:
                f.write(f"[{stamp}] {message}\n")
        except OSError:
            logger.exception("Failed to write completions log %s", self.completions_log)

    def _post_slack(self, title, message, task_id, status, backend, description):
        if not (self.slack_token and self.slack_channel):
            return
        # Posted off the calling thread
        sender = threading.Thread(
            target=self._send_slack,
            args=(title, message, task_id, status, backend, description),
            name="slack-notify",
            daemon=True,
        )
        with self._lock:
            self._senders = [t for t in self._senders if t.is_alive()]
            self._senders.append(sender)
        sender.start()

    def _send_slack(self, title, message, task_id, status, backend, description):
        try:
            blocks = None
            if task_id and status:
                blocks = slack_mod.format_task_notification(
                    task_id, description or message, status, backend
                )
            slack_mod.post_notification(
                self.slack_token, self.slack_channel, f"{title}: {message}", blocks
            )
        except Exception:
            logger.exception("Failed to send Slack notification")

    def join(self, timeout: float | None = None):
        """Wait for in-flight Slack posts, e.g. before the process exits."""
        with self._lock:
            senders = list(self._senders)
        for sender in senders:
            sender.join(timeout)
