from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional
import json
import logging
import threading

LOGGER = logging.getLogger(__name__)


class NotificationType(str, Enum):
    CONTRIBUTION_APPROVED = "contribution_approved"
    CONTRIBUTION_REJECTED = "contribution_rejected"
    RECEIPT_APPROVED = "receipt_approved"
    RECEIPT_REJECTED = "receipt_rejected"
    DUTY_ASSIGNED = "duty_assigned"


class NotificationCategory(str, Enum):
    FINANCE = "finance"
    DUTY = "duty"


_CATEGORY_BY_TYPE = {
    NotificationType.CONTRIBUTION_APPROVED: NotificationCategory.FINANCE,
    NotificationType.CONTRIBUTION_REJECTED: NotificationCategory.FINANCE,
    NotificationType.RECEIPT_APPROVED: NotificationCategory.FINANCE,
    NotificationType.RECEIPT_REJECTED: NotificationCategory.FINANCE,
    NotificationType.DUTY_ASSIGNED: NotificationCategory.DUTY,
}


@dataclass
class Notification:
    type: NotificationType
    recipient_id: str
    event_id: str
    title: str
    message: str
    link: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def category(self) -> NotificationCategory:
        return _CATEGORY_BY_TYPE[self.type]

    def to_dict(self) -> dict:
        return {
            "type": self.type.value, "category": self.category.value,
            "recipient_id": self.recipient_id, "event_id": self.event_id,
            "title": self.title, "message": self.message, "link": self.link,
            "metadata": self.metadata, "created_at": self.created_at.isoformat(),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        created_at = data.get("created_at")
        return cls(
            type=NotificationType(data["type"]), recipient_id=data["recipient_id"],
            event_id=data["event_id"], title=data["title"], message=data["message"],
            link=data.get("link"), metadata=data.get("metadata", {}),
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now(timezone.utc),
        )


Channel = Callable[[Notification], Any]


class NotificationDispatcher:
    """Best-effort fan-out of notifications to delivery channels.

    A failing channel is logged and reported in the delivery results; it never
    raises into the caller, so a state change that already committed is never
    undone by a notification problem.
    """

    def __init__(self, channels: Optional[dict[str, Channel]] = None, history_size: int = 500):
        self.channels: dict[str, Channel] = {"log": self._deliver_to_log}
        if channels:
            self.channels.update(channels)
        # most recent notifications only; older ones fall off the left
        self.sent: deque[Notification] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def register_channel(self, name: str, handler: Channel) -> None:
        self.channels[name] = handler

    def remove_channel(self, name: str) -> None:
        self.channels.pop(name, None)

    def dispatch(self, notification: Notification) -> list[dict]:
        with self._lock:
            self.sent.append(notification)
        results = []
        for name, handler in list(self.channels.items()):
            try:
                result = handler(notification)
                results.append({"channel": name, "success": True, "result": result})
            except Exception as e:
                LOGGER.warning(
                    "Notification %s to %s failed on channel %s: %s",
                    notification.type.value, notification.recipient_id, name, e,
                )
                results.append({"channel": name, "success": False, "error": str(e)})
        return results

    def dispatch_many(self, notifications: list[Notification]) -> list[dict]:
        return [
            {"recipient_id": n.recipient_id, "type": n.type.value, "deliveries": self.dispatch(n)}
            for n in notifications
        ]

    def sent_to(self, recipient_id: str, type: Optional[NotificationType] = None) -> list[Notification]:
        with self._lock:
            sent = list(self.sent)
        return [n for n in sent if n.recipient_id == recipient_id and (type is None or n.type == type)]

    def _deliver_to_log(self, notification: Notification) -> dict:
        LOGGER.info("Notify %s [%s]: %s", notification.recipient_id, notification.type.value, notification.title)
        return {"status": "logged"}
