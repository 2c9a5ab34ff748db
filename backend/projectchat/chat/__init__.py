"""Real-time project chat: registry, rooms, typing presence and sessions."""
from .errors import (
    AlreadyAuthenticated,
    ChatError,
    FrameValidationError,
    NotInRoom,
    PersistenceFailure,
    Unauthenticated,
)
from .hub import ChatHub
from .presence import TypingTracker
from .registry import Connection, ConnectionRegistry
from .rooms import RoomRouter
from .session import ChatSession, SessionState

__all__ = [
    "AlreadyAuthenticated",
    "ChatError",
    "FrameValidationError",
    "NotInRoom",
    "PersistenceFailure",
    "Unauthenticated",
    "ChatHub",
    "TypingTracker",
    "Connection",
    "ConnectionRegistry",
    "RoomRouter",
    "ChatSession",
    "SessionState",
]
