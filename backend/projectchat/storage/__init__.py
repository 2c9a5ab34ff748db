"""Persistence for messages, quotes, users and projects (DuckDB)."""
from .database import open_database
from .directory import ProjectDirectory, UserDirectory
from .messages import DuckDBMessageStore, MessageStore
from .quotes import QuoteStore
from .schemas import Message, MessageType, ProjectRef, Quote, QuoteStatus, UserProfile

__all__ = [
    "open_database",
    "ProjectDirectory",
    "UserDirectory",
    "DuckDBMessageStore",
    "MessageStore",
    "QuoteStore",
    "Message",
    "MessageType",
    "ProjectRef",
    "Quote",
    "QuoteStatus",
    "UserProfile",
]
