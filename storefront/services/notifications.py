"""Fire-and-forget notification sink.

Notifications are sent after the transaction commits. A failing sink is
logged and never changes the outcome of the operation that triggered it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .logging import log_event

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    @abstractmethod
    def notify(self, user_id: str, kind: str, title: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        ...


class LogNotificationSink(NotificationSink):
    """Default sink: writes the notification as a log event."""

    def notify(self, user_id, kind, title, message, data=None):
        log_event("info", "notification.queued", user_id=user_id, kind=kind, title=title, data=data or {})


class RecordingNotificationSink(NotificationSink):
    """Keeps notifications in memory for test assertions."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.should_fail = False

    def notify(self, user_id, kind, title, message, data=None):
        if self.should_fail:
            raise RuntimeError("notification channel unavailable")
        self.sent.append({"user_id": user_id, "kind": kind, "title": title, "message": message, "data": data or {}})

    def reset(self):
        self.sent.clear()
        self.should_fail = False


def dispatch(sink: Optional[NotificationSink], *, user_id: str, kind: str, title: str, message: str, data=None) -> None:
    if sink is None or not user_id:
        return
    try:
        sink.notify(user_id, kind, title, message, data)
    except Exception:
        logger.exception("notification to %s dropped (%s)", user_id, kind)
