"""
Best-Effort Notifier
====================
Non-blocking, non-critical outbound notifications.

A notification is a JSON POST sent from a daemon thread with a bounded
timeout. Failures are logged and dropped; callers never wait for it and
never see an error from it.
"""
import threading
from typing import Any, Dict, Optional

import requests

from poem_translator.config import config
from poem_translator.utils.logging import get_logger


class BestEffortNotifier:

    def __init__(self, url: str = None, timeout: float = None, session: requests.Session = None):
        self.url = url if url is not None else config.notifications.url
        self.timeout = timeout if timeout is not None else config.notifications.timeout_seconds
        self.session = session or requests.Session()
        self.logger = get_logger().app_logger

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def notify(self, event: str, payload: Dict[str, Any]) -> Optional[threading.Thread]:
        """Fire and forget. Returns the sender thread, or None when disabled."""
        if not self.enabled:
            return None
        thread = threading.Thread(
            target=self._send,
            args=({'event': event, **payload},),
            name=f"notify-{event}",
            daemon=True
        )
        thread.start()
        return thread

    def _send(self, body: Dict[str, Any]):
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
            if response.status_code >= 400:
                self.logger.warning(f"Notification {body['event']} rejected: HTTP {response.status_code}")
        except requests.RequestException as e:
            self.logger.warning(f"Notification {body['event']} dropped: {e}")


_notifier_instance: Optional[BestEffortNotifier] = None


def get_notifier() -> BestEffortNotifier:
    global _notifier_instance
    if _notifier_instance is None:
        _notifier_instance = BestEffortNotifier()
    return _notifier_instance
