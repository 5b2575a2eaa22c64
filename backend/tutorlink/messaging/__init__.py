"""Conversations and messages: storage, lifecycle and the messaging service."""

from .lifecycle import ConversationLifecycle
from .schemas import Conversation, ConversationSummary, Message, SendResult, UserProfile, UserRole
from .service import MessagingService
from .store import ConversationStore

__all__ = [
    "Conversation",
    "ConversationLifecycle",
    "ConversationStore",
    "ConversationSummary",
    "Message",
    "MessagingService",
    "SendResult",
    "UserProfile",
    "UserRole",
]
