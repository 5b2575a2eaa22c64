"""Pydantic schemas for per-user notifications."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NotificationType(str, Enum):
    """Kind of event a notification records.

    Attributes:
        MESSAGE: A new message arrived in one of the user's conversations.
        CONVERSATION: Someone started a conversation with (or added) the user.
    """
    MESSAGE = "message"
    CONVERSATION = "conversation"


class Notification(BaseModel):
    """A durable notification owned by one user.

    The payload references conversation/message/sender ids; it is not tied
    to the lifetime of the message it points at.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    userId: str
    type: NotificationType
    payload: Dict[str, Any] = Field(default_factory=dict)
    isRead: bool = False
    createdAt: datetime = Field(default_factory=utcnow)
