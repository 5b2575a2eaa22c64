"""Conversation lifecycle: creation and membership.

A thin layer over the conversation store that adds the side effects of a
new conversation: a durable ``conversation`` notification for the people
who were pulled into it and a live ``conversationCreated`` event for their
open connections.
"""
import logging
from typing import List, Optional, Tuple

from tutorlink.chat import events
from tutorlink.chat.events import EventDispatcher, OutboundEvent
from tutorlink.errors import AuthorizationError
from tutorlink.notifications.schemas import NotificationType
from tutorlink.notifications.service import NotificationSink

from .store import ConversationStore

logger = logging.getLogger(__name__)


def conversation_payload(conversation_id: str, starter_id: str, title: Optional[str]) -> dict:
    return {
        "conversationId": conversation_id,
        "starterId": starter_id,
        "title": title or None,
    }


class ConversationLifecycle:
    """Creates conversations and manages who is in them."""

    def __init__(
        self,
        store: ConversationStore,
        notifications: NotificationSink,
        dispatcher: EventDispatcher,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.dispatcher = dispatcher

    def get_or_create_direct(self, initiator_id: str, recipient_id: str) -> Tuple[str, bool]:
        """Resolve the direct conversation used by the send path.

        No notification is written here: the message that follows produces
        its own.
        """
        return self.store.create_conversation(initiator_id, recipient_id)

    async def create_conversation(
        self,
        initiator_id: str,
        recipient_id: str,
        title: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """Explicitly start a conversation, reusing an existing one.

        Returns:
            Tuple of (conversation_id, created).
        """
        conversation_id, created = self.store.create_conversation(initiator_id, recipient_id, title)
        if not created:
            logger.info(
                "[Lifecycle] Reusing conversation %s for %s -> %s",
                conversation_id, initiator_id, recipient_id,
            )
            return conversation_id, False

        payload = conversation_payload(conversation_id, initiator_id, title)
        await self.dispatcher.dispatch(self._announce([recipient_id], payload))
        return conversation_id, True

    async def add_member(self, actor_id: str, conversation_id: str, user_id: str) -> bool:
        """Add a user to a conversation the actor belongs to.

        Returns:
            True if the user was added, False if already a member.

        Raises:
            AuthorizationError: If the actor is not a member.
        """
        if not self.store.is_member(conversation_id, actor_id):
            raise AuthorizationError(f"{actor_id} cannot add members to {conversation_id}")

        added = self.store.add_member(conversation_id, user_id)
        if not added:
            return False

        title = self.store.get_conversation(conversation_id).title
        payload = conversation_payload(conversation_id, actor_id, title)
        await self.dispatcher.dispatch(self._announce([user_id], payload))
        return True

    def _announce(self, user_ids: List[str], payload: dict) -> List[OutboundEvent]:
        """Write conversation notifications and build the live events."""
        outbound = []
        for user_id in user_ids:
            try:
                self.notifications.create_notification(user_id, NotificationType.CONVERSATION, payload)
            except Exception as e:
                logger.warning(
                    "[Lifecycle] Could not notify %s about conversation %s: %s",
                    user_id, payload["conversationId"], e,
                )
            outbound.append(OutboundEvent.to_user(user_id, events.CONVERSATION_CREATED, payload))
        return outbound
