"""Messaging orchestration.

``MessagingService`` is the single entry point used by both the HTTP
routers and the WebSocket gateway. Each operation follows the same order:

1. Validate the request and the caller's membership.
2. Write to the conversation store (atomic per message).
3. Write durable notifications for the other members (best effort).
4. Build the post-commit event list and hand it to the dispatcher
   (best effort).

A failure in step 2 aborts the operation before any side effect. Failures
in steps 3 and 4 are logged and never fail the call: the message is already
saved and is returned to the caller.

Message lifecycle: created -> delivered(N)* -> read. Only "created" and
"read" are persisted; "delivered" is a transient signal to the sender.
"""
import logging
from typing import List, Optional

from tutorlink.chat import events
from tutorlink.chat.events import EventDispatcher, OutboundEvent
from tutorlink.chat.presence import PresenceRegistry
from tutorlink.errors import AuthorizationError, ValidationError
from tutorlink.notifications.schemas import NotificationType
from tutorlink.notifications.service import NotificationSink

from .lifecycle import ConversationLifecycle, conversation_payload
from .schemas import ConversationSummary, Message, SendResult
from .store import ConversationStore

logger = logging.getLogger(__name__)

DEFAULT_EXCERPT_LENGTH = 200
DEFAULT_MAX_BODY_LENGTH = 5000


def make_excerpt(body: str, length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    """First ``length`` characters of a message body (code points, not bytes)."""
    return (body or "")[:length]


def message_event_payload(message: Message) -> dict:
    """Full message object as broadcast in ``newMessage``."""
    data = message.model_dump(mode="json")
    data["conversationId"] = message.conversationId
    return data


class MessagingService:
    """Send, read and list messages.

    Attributes:
        store: Durable conversations and messages.
        notifications: Durable per-user notifications.
        presence: Consulted to decide which recipients count as delivered.
        dispatcher: Delivers post-commit events to live connections.
        lifecycle: Conversation creation and membership.
    """

    def __init__(
        self,
        store: ConversationStore,
        notifications: NotificationSink,
        presence: PresenceRegistry,
        dispatcher: EventDispatcher,
        lifecycle: Optional[ConversationLifecycle] = None,
        excerpt_length: int = DEFAULT_EXCERPT_LENGTH,
        max_body_length: int = DEFAULT_MAX_BODY_LENGTH,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.presence = presence
        self.dispatcher = dispatcher
        self.lifecycle = lifecycle or ConversationLifecycle(store, notifications, dispatcher)
        self.excerpt_length = excerpt_length
        self.max_body_length = max_body_length

    # =========================================================================
    # Queries
    # =========================================================================

    def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        return self.store.list_conversations_for_user(user_id)

    def require_member(self, user_id: str, conversation_id: str) -> None:
        """Raise AuthorizationError unless the user belongs to the conversation.

        Unknown conversation ids fail the same way, so non-members cannot
        probe which conversations exist.
        """
        if not conversation_id or not self.store.is_member(conversation_id, user_id):
            raise AuthorizationError(f"{user_id} is not a member of {conversation_id}")

    def authorize_room_join(self, user_id: str, conversation_id: str) -> None:
        """Check performed before a connection is subscribed to a room."""
        self.require_member(user_id, conversation_id)

    # =========================================================================
    # Send
    # =========================================================================

    async def send_message(
        self,
        sender_id: str,
        body: Optional[str],
        conversation_id: Optional[str] = None,
        recipient_id: Optional[str] = None,
    ) -> SendResult:
        """Persist a message and fan it out.

        Args:
            sender_id: Authenticated sender.
            body: Message text; must not be empty.
            conversation_id: Existing conversation to post to.
            recipient_id: Used when no conversation id is given; the direct
                conversation with this user is reused or created.

        Returns:
            SendResult with the stored message and the resolved conversation.

        Raises:
            ValidationError: Empty body, oversized body or no destination.
            AuthorizationError: Sender is not a member of ``conversation_id``.
            TransientStoreError: The store failed; nothing was persisted.
        """
        if body is None or not body.strip():
            raise ValidationError("Message body is required")
        if len(body) > self.max_body_length:
            raise ValidationError(f"Message body exceeds {self.max_body_length} characters")

        created = False
        if conversation_id:
            self.require_member(sender_id, conversation_id)
        elif recipient_id:
            conversation_id, created = self.lifecycle.get_or_create_direct(sender_id, recipient_id)
        else:
            raise ValidationError("Conversation ID or recipient ID is required")

        message = self.store.append_message(conversation_id, sender_id, body)
        logger.info(
            "[Messaging] %s sent %s to conversation %s%s",
            sender_id, message.id, conversation_id, " (new)" if created else "",
        )

        # Everything below runs after the commit and must not fail the send.
        recipients = self._recipients(conversation_id, sender_id)
        self._notify_recipients(message, recipients)
        await self.dispatcher.dispatch(
            self._message_events(message, recipients, created)
        )

        return SendResult(message=message, conversationId=conversation_id, created=created)

    def _recipients(self, conversation_id: str, sender_id: str) -> List[str]:
        try:
            return [m for m in self.store.list_member_ids(conversation_id) if m != sender_id]
        except Exception as e:
            logger.warning("[Messaging] Could not load members of %s: %s", conversation_id, e)
            return []

    def _notify_recipients(self, message: Message, recipients: List[str]) -> None:
        payload = {
            "conversationId": message.conversationId,
            "messageId": message.id,
            "senderId": message.senderId,
            "excerpt": make_excerpt(message.body, self.excerpt_length),
        }
        for user_id in recipients:
            try:
                self.notifications.create_notification(user_id, NotificationType.MESSAGE, payload)
            except Exception as e:
                logger.warning("[Messaging] Notification for %s failed: %s", user_id, e)

    def _message_events(self, message: Message, recipients: List[str], created: bool) -> List[OutboundEvent]:
        conversation_id = message.conversationId
        outbound = [
            OutboundEvent.to_room(conversation_id, events.NEW_MESSAGE, message_event_payload(message)),
        ]

        if created:
            payload = conversation_payload(conversation_id, message.senderId, None)
            outbound.extend(
                OutboundEvent.to_user(user_id, events.CONVERSATION_CREATED, payload)
                for user_id in recipients
            )

        online = [user_id for user_id in recipients if self.presence.is_online(user_id)]
        if online:
            outbound.append(OutboundEvent.to_user(message.senderId, events.MESSAGE_DELIVERED, {
                "messageId": message.id,
                "conversationId": conversation_id,
                "recipients": online,
            }))
        return outbound

    # =========================================================================
    # Read
    # =========================================================================

    async def get_messages(self, requester_id: str, conversation_id: str) -> List[Message]:
        """Return the history and mark it read for the requester.

        The returned list is the history as it was before the read flags
        changed.
        """
        self.require_member(requester_id, conversation_id)
        history = self.store.list_messages(conversation_id)
        await self._mark_read(requester_id, conversation_id)
        return history

    async def mark_conversation_read(
        self,
        reader_id: str,
        conversation_id: str,
        exclude_connection: Optional[str] = None,
    ) -> int:
        """Mark a conversation read without fetching it.

        Returns:
            Number of messages that flipped to read.
        """
        self.require_member(reader_id, conversation_id)
        return await self._mark_read(reader_id, conversation_id, exclude_connection)

    async def _mark_read(
        self,
        reader_id: str,
        conversation_id: str,
        exclude_connection: Optional[str] = None,
    ) -> int:
        changed = self.store.mark_messages_read_excluding_sender(conversation_id, reader_id)
        cleared = self.notifications.mark_conversation_read(reader_id, conversation_id)
        logger.debug(
            "[Messaging] %s read %s: %d messages, %d notifications",
            reader_id, conversation_id, changed, cleared,
        )
        await self.dispatcher.dispatch([
            OutboundEvent.to_room(
                conversation_id,
                events.MESSAGES_READ,
                {"conversationId": conversation_id, "userId": reader_id},
                exclude=exclude_connection,
            )
        ])
        return changed

    # =========================================================================
    # Lifecycle passthroughs
    # =========================================================================

    async def create_conversation(self, initiator_id: str, recipient_id: str, title: Optional[str] = None):
        return await self.lifecycle.create_conversation(initiator_id, recipient_id, title)

    async def add_member(self, actor_id: str, conversation_id: str, user_id: str) -> bool:
        return await self.lifecycle.add_member(actor_id, conversation_id, user_id)
