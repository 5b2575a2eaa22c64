"""Room routing and typing state for live connections.

A room is a conversation id used purely as a pub/sub topic. Joining a room
is independent of persisted membership: the gateway asks the messaging
service whether a user may join before calling ``join_room``.

Key features:
    - Idempotent join/leave, no awaiting while routing tables change
    - Concurrent delivery with asyncio.gather()
    - Dead connections dropped from a room when a send to them fails
    - Direct delivery to every connection of a user via the presence registry
    - Zero live targets is a silent no-op; the notification sink is the
      fallback delivery path

Thread Safety:
    Designed for a single asyncio event loop. NOT thread-safe.

Scaling:
    Routing tables are per process. A multi-node deployment would need a
    shared pub/sub backplane behind ``broadcast_to_room`` and
    ``send_to_user``.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from .connection import Connection
from .presence import PresenceRegistry

logger = logging.getLogger(__name__)


class RoomRouter:
    """Fan-out of events to live connections.

    Attributes:
        presence: Registry used to resolve a user's connections.
    """

    def __init__(self, presence: PresenceRegistry) -> None:
        self.presence = presence

        # connection_id -> Connection
        self.connections: Dict[str, Connection] = {}

        # conversation_id -> set of connection ids
        self.rooms: Dict[str, Set[str]] = {}

        # connection_id -> set of conversation ids (for disconnect handling)
        self.connection_rooms: Dict[str, Set[str]] = {}

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def register(self, connection: Connection) -> None:
        self.connections[connection.id] = connection
        self.connection_rooms.setdefault(connection.id, set())

    def unregister(self, connection_id: str) -> Set[str]:
        """Forget a connection and leave every room it had joined.

        Returns:
            The conversation ids the connection was subscribed to.
        """
        self.connections.pop(connection_id, None)
        rooms = self.connection_rooms.pop(connection_id, set())
        for room_id in rooms:
            self._discard(room_id, connection_id)
        return rooms

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    # =========================================================================
    # Room membership
    # =========================================================================

    def join_room(self, connection_id: str, conversation_id: str) -> None:
        if connection_id not in self.connections:
            return
        self.rooms.setdefault(conversation_id, set()).add(connection_id)
        self.connection_rooms.setdefault(connection_id, set()).add(conversation_id)

    def leave_room(self, connection_id: str, conversation_id: str) -> None:
        self._discard(conversation_id, connection_id)
        if connection_id in self.connection_rooms:
            self.connection_rooms[connection_id].discard(conversation_id)

    def _discard(self, conversation_id: str, connection_id: str) -> None:
        members = self.rooms.get(conversation_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self.rooms[conversation_id]

    def room_connections(self, conversation_id: str) -> Set[str]:
        return set(self.rooms.get(conversation_id, ()))

    def rooms_for(self, connection_id: str) -> Set[str]:
        return set(self.connection_rooms.get(connection_id, ()))

    def user_in_room(self, user_id: str, conversation_id: str, exclude: Optional[str] = None) -> bool:
        """Whether any of the user's connections (other than ``exclude``) joined the room."""
        members = self.rooms.get(conversation_id, set())
        return any(
            cid in members
            for cid in self.presence.connections_for(user_id)
            if cid != exclude
        )

    # =========================================================================
    # Delivery
    # =========================================================================

    async def broadcast_to_room(
        self,
        conversation_id: str,
        event: str,
        payload: Any,
        exclude: Optional[str] = None,
    ) -> int:
        """Send an event to every connection joined to a room.

        Args:
            conversation_id: Room to broadcast to.
            event: Wire event name.
            payload: JSON-serializable event data.
            exclude: Connection id to skip (e.g. the typing connection).

        Returns:
            Number of connections the event reached.
        """
        targets = [
            cid for cid in self.rooms.get(conversation_id, ())
            if cid != exclude
        ]
        failed = await self._deliver(targets, event, payload)

        # Remove failed connections from the room
        for cid in failed:
            self.leave_room(cid, conversation_id)
            logger.debug(f"Removed dead connection {cid} from room {conversation_id}")
        return len(targets) - len(failed)

    async def send_to_user(self, user_id: str, event: str, payload: Any) -> int:
        """Send an event to all of a user's live connections, ignoring rooms."""
        targets = list(self.presence.connections_for(user_id))
        failed = await self._deliver(targets, event, payload)
        return len(targets) - len(failed)

    async def send_to_connection(self, connection_id: str, event: str, payload: Any) -> bool:
        failed = await self._deliver([connection_id], event, payload)
        return not failed and connection_id in self.connections

    async def broadcast_all(self, event: str, payload: Any, exclude: Optional[str] = None) -> int:
        targets = [cid for cid in self.connections if cid != exclude]
        failed = await self._deliver(targets, event, payload)
        return len(targets) - len(failed)

    async def _deliver(self, connection_ids: Iterable[str], event: str, payload: Any) -> List[str]:
        """Send concurrently; return the ids whose send failed."""
        connections = [
            self.connections[cid] for cid in connection_ids
            if cid in self.connections
        ]
        if not connections:
            return []

        results = await asyncio.gather(
            *[conn.send(event, payload) for conn in connections],
            return_exceptions=True,
        )
        return [
            conn.id for conn, success in zip(connections, results)
            if success is not True
        ]


class TypingTracker:
    """Ephemeral conversation -> typing users map. Never persisted."""

    def __init__(self) -> None:
        self._typing: Dict[str, Set[str]] = {}

    def set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> bool:
        """Record a typing signal.

        Returns:
            True if the state changed.
        """
        users = self._typing.get(conversation_id, set())
        if is_typing:
            if user_id in users:
                return False
            self._typing.setdefault(conversation_id, set()).add(user_id)
            return True

        if user_id not in users:
            return False
        users.discard(user_id)
        if not users:
            del self._typing[conversation_id]
        return True

    def is_typing(self, conversation_id: str, user_id: str) -> bool:
        return user_id in self._typing.get(conversation_id, ())

    def typing_users(self, conversation_id: str) -> Set[str]:
        return set(self._typing.get(conversation_id, ()))
