"""Live connection handle.

A ``Connection`` pairs one accepted WebSocket with the verified user it was
opened for. The id is what the presence registry and the room router store;
the WebSocket never leaves this class.
"""
import logging
import uuid
from typing import Any, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Connection:
    """One authenticated socket.

    Attributes:
        id: Server-generated connection handle.
        user_id: Verified user id, fixed for the connection's lifetime.
    """

    def __init__(self, websocket: WebSocket, user_id: str, connection_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.user_id = user_id
        self.id = connection_id or str(uuid.uuid4())

    async def send(self, event: str, data: Any) -> bool:
        """Send one ``{"event", "data"}`` frame.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await self.websocket.send_json({"event": event, "data": data})
            return True
        except Exception as e:
            logger.debug(f"Failed to send {event} to connection {self.id}: {e}")
            return False

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r})"
