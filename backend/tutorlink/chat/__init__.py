"""Real-time layer: presence, rooms, typing state and the WebSocket gateway."""

from .connection import Connection
from .events import EventDispatcher, OutboundEvent
from .presence import PresenceRegistry
from .rooms import RoomRouter, TypingTracker

__all__ = [
    "Connection",
    "EventDispatcher",
    "OutboundEvent",
    "PresenceRegistry",
    "RoomRouter",
    "TypingTracker",
]
