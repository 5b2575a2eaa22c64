"""In-memory presence registry.

Maps each user to the set of connection handles they currently have open.
A user is online exactly while that set is non-empty; the entry is deleted
(not left empty) when the last connection closes.

The registry performs no I/O and never awaits, so on the single asyncio
event loop concurrent connect/disconnect events for the same user (two tabs
opening and closing at once) are applied one after the other. Broadcasting
the online/offline transition is left to the caller, which gets the
transition back as a boolean.

This state is rebuilt from scratch on restart and is not a record of who
has ever been online.
"""
import logging
from typing import Dict, FrozenSet, List, Set

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Owns the user -> connection handles map.

    Other components only read it through ``is_online``,
    ``connections_for`` and ``online_users``.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Set[str]] = {}

    def add_connection(self, user_id: str, connection_id: str) -> bool:
        """Register a live connection.

        Returns:
            True if this is the user's first connection (came online).
        """
        handles = self._connections.get(user_id)
        if handles is None:
            self._connections[user_id] = {connection_id}
            logger.info("[Presence] %s is online", user_id)
            return True
        handles.add(connection_id)
        return False

    def remove_connection(self, user_id: str, connection_id: str) -> bool:
        """Drop a connection; unknown handles are ignored.

        Returns:
            True if that was the user's last connection (went offline).
        """
        handles = self._connections.get(user_id)
        if handles is None or connection_id not in handles:
            return False
        handles.discard(connection_id)
        if handles:
            return False
        del self._connections[user_id]
        logger.info("[Presence] %s is offline", user_id)
        return True

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def connections_for(self, user_id: str) -> FrozenSet[str]:
        """Snapshot of the user's connection handles (empty if offline)."""
        return frozenset(self._connections.get(user_id, ()))

    def online_users(self) -> List[str]:
        return sorted(self._connections)

    def __len__(self) -> int:
        return len(self._connections)
