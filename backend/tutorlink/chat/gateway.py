"""Per-connection protocol handling for the WebSocket endpoint.

The gateway is transport-agnostic: it works on ``Connection`` objects and
parsed frames, so it can be driven by the FastAPI WebSocket route or by
tests with fake connections.

Protocol Flow:
    1. Handshake is verified by the route; the gateway registers the
       connection -> sends {event: "connected"} to it
       -> broadcasts {event: "presence", online: true} on the user's first
       connection.
    2. joinConversation -> membership checked by the messaging service
       -> connection subscribed to the room -> {event: "joinedConversation"}.
    3. typing -> re-broadcast to the room (not to the sending connection)
       with the sender's user id attached.
    4. markRead -> messages and notifications marked read
       -> {event: "messagesRead"} to the rest of the room.
    5. sendMessage -> same path as the HTTP send -> {event: "messageSent"}
       ack to the sending connection.
    6. Disconnect -> rooms left, typing state cleared in those rooms,
       {event: "presence", online: false} on the user's last connection.
"""
import json
import logging
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PayloadError

from tutorlink.dependencies import Services
from tutorlink.errors import AppError, AuthorizationError, ValidationError

from . import events
from .connection import Connection

logger = logging.getLogger(__name__)


class SocketGateway:
    """Handles client events for live connections."""

    def __init__(self, services: Services) -> None:
        self.services = services
        self.presence = services.presence
        self.rooms = services.rooms
        self.typing = services.typing
        self.messaging = services.messaging

        self._handlers: Dict[str, Callable] = {
            events.JOIN_CONVERSATION: self._on_join,
            events.LEAVE_CONVERSATION: self._on_leave,
            events.TYPING: self._on_typing,
            events.MARK_READ: self._on_mark_read,
            events.SEND_MESSAGE: self._on_send_message,
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def on_connect(self, connection: Connection) -> None:
        self.rooms.register(connection)
        came_online = self.presence.add_connection(connection.user_id, connection.id)
        logger.info(
            f"[WS] {connection.user_id} connected ({connection.id}); "
            f"{len(self.presence.connections_for(connection.user_id))} live connection(s)"
        )

        await connection.send(events.CONNECTED, {
            "userId": connection.user_id,
            "connectionId": connection.id,
            "onlineUsers": self.presence.online_users(),
        })
        if came_online:
            await self.rooms.broadcast_all(
                events.PRESENCE,
                {"userId": connection.user_id, "online": True},
                exclude=connection.id,
            )

    async def on_disconnect(self, connection: Connection) -> None:
        user_id = connection.user_id
        rooms_left = self.rooms.unregister(connection.id)
        went_offline = self.presence.remove_connection(user_id, connection.id)
        logger.info(f"[WS] {user_id} disconnected ({connection.id}), left {len(rooms_left)} room(s)")

        # A dropped client cannot send its own stop-typing signal.
        for conversation_id in rooms_left:
            await self._clear_typing(user_id, conversation_id)

        if went_offline:
            await self.rooms.broadcast_all(events.PRESENCE, {"userId": user_id, "online": False})

    # =========================================================================
    # Inbound frames
    # =========================================================================

    async def handle_raw(self, connection: Connection, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            await self._send_error(connection, "", "Invalid message format: expected JSON")
            return
        await self.handle(connection, frame)

    async def handle(self, connection: Connection, frame: Any) -> None:
        """Route one client frame; errors become ``error`` events."""
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self._send_error(connection, "", "Invalid message format: event is required")
            return

        name = frame["event"]
        data = frame.get("data") or {}
        handler = self._handlers.get(name)
        if handler is None:
            await self._send_error(connection, name, f"Unknown event: {name}")
            return

        logger.debug("[WS] %s sent %s", connection.user_id, name)
        try:
            await handler(connection, data)
        except PayloadError as e:
            await self._send_error(connection, name, f"Invalid {name} payload: {e.errors()[0]['msg']}")
        except AppError as e:
            if e.status_code >= 500:
                logger.error(f"[WS] {name} from {connection.user_id} failed: {e!r}")
            await self._send_error(connection, name, e.message)

    async def _send_error(self, connection: Connection, event: str, message: str) -> None:
        await connection.send(events.ERROR, {"error": message, "event": event})

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _on_join(self, connection: Connection, data: dict) -> None:
        ref = events.ConversationRef.model_validate(data)
        self.messaging.authorize_room_join(connection.user_id, ref.conversationId)
        self.rooms.join_room(connection.id, ref.conversationId)
        await connection.send(events.JOINED_CONVERSATION, {"conversationId": ref.conversationId})

    async def _on_leave(self, connection: Connection, data: dict) -> None:
        ref = events.ConversationRef.model_validate(data)
        self.rooms.leave_room(connection.id, ref.conversationId)
        await self._clear_typing(connection.user_id, ref.conversationId)

    async def _on_typing(self, connection: Connection, data: dict) -> None:
        signal = events.TypingSignal.model_validate(data)
        if signal.conversationId not in self.rooms.rooms_for(connection.id):
            raise AuthorizationError(f"{connection.user_id} typed in unjoined room {signal.conversationId}")

        self.typing.set_typing(signal.conversationId, connection.user_id, signal.isTyping)
        await self.rooms.broadcast_to_room(
            signal.conversationId,
            events.TYPING,
            {
                "conversationId": signal.conversationId,
                "isTyping": signal.isTyping,
                "userId": connection.user_id,
            },
            exclude=connection.id,
        )

    async def _on_mark_read(self, connection: Connection, data: dict) -> None:
        ref = events.ConversationRef.model_validate(data)
        await self.messaging.mark_conversation_read(
            connection.user_id, ref.conversationId, exclude_connection=connection.id
        )

    async def _on_send_message(self, connection: Connection, data: dict) -> None:
        payload = events.SendMessagePayload.model_validate(data)
        if not payload.conversationId and not payload.recipientId:
            raise ValidationError("Conversation ID or recipient ID is required")

        result = await self.messaging.send_message(
            connection.user_id,
            payload.body,
            conversation_id=payload.conversationId,
            recipient_id=payload.recipientId,
        )
        await connection.send(events.MESSAGE_SENT, result.model_dump(mode="json"))
        await self._clear_typing(
            connection.user_id, result.conversationId, force=True, exclude=connection.id
        )

    async def _clear_typing(
        self,
        user_id: str,
        conversation_id: str,
        force: bool = False,
        exclude: Optional[str] = None,
    ) -> None:
        """Emit a stop-typing for the user in one room.

        Unless ``force`` is set, nothing happens while another of the user's
        connections is still subscribed to the room.
        """
        if not self.typing.is_typing(conversation_id, user_id):
            return
        if not force and self.rooms.user_in_room(user_id, conversation_id):
            return
        self.typing.set_typing(conversation_id, user_id, False)
        await self.rooms.broadcast_to_room(
            conversation_id,
            events.TYPING,
            {"conversationId": conversation_id, "isTyping": False, "userId": user_id},
            exclude=exclude,
        )
