"""
Notification Package

Best-effort delivery of event-finance notifications (contribution and receipt
reviews, duty assignments) to pluggable channels.
"""

from .dispatcher import (
    NotificationDispatcher,
    Notification,
    NotificationType,
    NotificationCategory,
)

__all__ = [
    "NotificationDispatcher",
    "Notification",
    "NotificationType",
    "NotificationCategory",
]
