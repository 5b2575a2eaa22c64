"""Pydantic schemas for conversations and messages.

Field names are camelCase because these objects go over the wire unchanged,
both in HTTP responses and in WebSocket events.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Marketplace role of a user."""
    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"


class UserProfile(BaseModel):
    """Public profile fields shown next to conversations and messages."""
    id: str
    firstName: str = ""
    lastName: str = ""
    avatar: Optional[str] = None
    role: UserRole = UserRole.STUDENT


class Message(BaseModel):
    """A persisted chat message.

    Immutable once created except for ``isRead``, which only ever flips from
    False to True.

    Attributes:
        id: Unique message identifier.
        conversationId: Owning conversation.
        senderId: User who sent the message.
        body: Message text.
        sentAt: When the message was stored (UTC).
        isRead: Whether a recipient has read it.
        firstName: Sender's first name (listing enrichment).
        lastName: Sender's last name (listing enrichment).
        avatar: Sender's avatar URL (listing enrichment).
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversationId: str
    senderId: str
    body: str
    sentAt: datetime
    isRead: bool = False
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    avatar: Optional[str] = None


class Conversation(BaseModel):
    id: str
    title: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime


class ConversationSummary(Conversation):
    """Conversation list entry for one user.

    Attributes:
        lastMessage: Most recent message, or None for an empty thread.
        members: Public profiles of the *other* members.
        unreadCount: Messages from others the user has not read yet.
    """
    lastMessage: Optional[Message] = None
    members: List[UserProfile] = Field(default_factory=list)
    unreadCount: int = 0


class SendResult(BaseModel):
    """Outcome of a send: the stored message and where it went.

    ``conversationId`` matters when the conversation was created implicitly,
    so the client can navigate to it.
    """
    message: Message
    conversationId: str
    created: bool = False


# =============================================================================
# Request bodies
# =============================================================================


class CreateConversationRequest(BaseModel):
    recipientId: str = Field(..., min_length=1)
    title: Optional[str] = Field(default=None, max_length=200)


class SendMessageRequest(BaseModel):
    """Body of the send endpoints.

    ``recipientId`` is only consulted when the URL carries no conversation id.
    """
    body: str = ""
    recipientId: Optional[str] = None


class AddMemberRequest(BaseModel):
    userId: str = Field(..., min_length=1)
