"""Wire event contracts and post-commit event dispatch.

Services never talk to sockets directly. After their durable writes commit
they return a list of ``OutboundEvent`` objects; ``EventDispatcher`` drains
that list into the ``RoomRouter``. A failing delivery is logged as a
``BroadcastError`` and never unwinds the operation that produced it.

Frames on the wire are ``{"event": <name>, "data": <object>}`` in both
directions.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel, Field

from tutorlink.errors import BroadcastError

from .rooms import RoomRouter

logger = logging.getLogger(__name__)


# =============================================================================
# Event names
# =============================================================================

# server -> client
CONNECTED = "connected"
PRESENCE = "presence"
JOINED_CONVERSATION = "joinedConversation"
TYPING = "typing"
MESSAGES_READ = "messagesRead"
NEW_MESSAGE = "newMessage"
MESSAGE_SENT = "messageSent"
MESSAGE_DELIVERED = "messageDelivered"
CONVERSATION_CREATED = "conversationCreated"
ERROR = "error"

# client -> server
JOIN_CONVERSATION = "joinConversation"
LEAVE_CONVERSATION = "leaveConversation"
MARK_READ = "markRead"
SEND_MESSAGE = "sendMessage"


# =============================================================================
# Inbound payloads
# =============================================================================


class ConversationRef(BaseModel):
    """Payload of joinConversation / leaveConversation / markRead."""
    conversationId: str = Field(..., min_length=1)


class TypingSignal(BaseModel):
    conversationId: str = Field(..., min_length=1)
    isTyping: bool = True


class SendMessagePayload(BaseModel):
    conversationId: Optional[str] = None
    recipientId: Optional[str] = None
    body: str = ""


# =============================================================================
# Outbound events
# =============================================================================


class Target(str, Enum):
    """Who an outbound event is addressed to."""
    ROOM = "room"
    USER = "user"
    CONNECTION = "connection"
    EVERYONE = "everyone"


@dataclass(frozen=True)
class OutboundEvent:
    """A live event produced by a committed operation.

    Attributes:
        target: Addressing mode.
        key: Conversation id (ROOM), user id (USER) or connection id
            (CONNECTION); ignored for EVERYONE.
        event: Wire event name.
        payload: JSON-serializable data.
        exclude: Connection id to skip for ROOM / EVERYONE targets.
    """
    target: Target
    key: str
    event: str
    payload: Dict[str, Any]
    exclude: Optional[str] = None

    @classmethod
    def to_room(cls, conversation_id: str, event: str, payload: Dict[str, Any],
                exclude: Optional[str] = None) -> "OutboundEvent":
        return cls(Target.ROOM, conversation_id, event, payload, exclude)

    @classmethod
    def to_user(cls, user_id: str, event: str, payload: Dict[str, Any]) -> "OutboundEvent":
        return cls(Target.USER, user_id, event, payload)

    @classmethod
    def to_connection(cls, connection_id: str, event: str, payload: Dict[str, Any]) -> "OutboundEvent":
        return cls(Target.CONNECTION, connection_id, event, payload)

    @classmethod
    def to_everyone(cls, event: str, payload: Dict[str, Any],
                    exclude: Optional[str] = None) -> "OutboundEvent":
        return cls(Target.EVERYONE, "", event, payload, exclude)


class EventDispatcher:
    """Drains post-commit events into the room router, best effort."""

    def __init__(self, router: RoomRouter) -> None:
        self.router = router

    async def dispatch(self, events: Iterable[OutboundEvent]) -> int:
        """Deliver events in order.

        Returns:
            Number of events whose delivery raised (all of them logged).
        """
        failures = 0
        for event in events:
            try:
                await self._deliver(event)
            except Exception as e:
                failures += 1
                error = BroadcastError(f"{event.event} to {event.target.value} {event.key!r} failed: {e}")
                logger.warning("[Dispatch] %s", error.message)
        return failures

    async def _deliver(self, event: OutboundEvent) -> None:
        if event.target is Target.ROOM:
            await self.router.broadcast_to_room(event.key, event.event, event.payload, exclude=event.exclude)
        elif event.target is Target.USER:
            await self.router.send_to_user(event.key, event.event, event.payload)
        elif event.target is Target.CONNECTION:
            await self.router.send_to_connection(event.key, event.event, event.payload)
        else:
            await self.router.broadcast_all(event.event, event.payload, exclude=event.exclude)
