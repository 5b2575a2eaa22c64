"""Durable per-user notifications."""

from .schemas import Notification, NotificationType
from .service import NotificationSink

__all__ = [
    "Notification",
    "NotificationSink",
    "NotificationType",
]
