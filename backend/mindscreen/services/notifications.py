# Notification collaborator. The core only raises the trigger (response identity
# + risk level); formatting and delivery belong to whoever implements Notifier.
import logging
import threading
from typing import List, Protocol, Tuple

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_flagged(self, response_id: str, unique_code: str, risk_level: str) -> None: ...


class LoggingNotifier:
    def notify_flagged(self, response_id: str, unique_code: str, risk_level: str) -> None:
        logger.warning("response %s (%s) flagged for review: %s", unique_code, response_id, risk_level)


class RecordingNotifier:
    """Keeps triggers in memory; used by tests and local runs."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def notify_flagged(self, response_id: str, unique_code: str, risk_level: str) -> None:
        with self._lock:
            self.sent.append((response_id, unique_code, risk_level))
