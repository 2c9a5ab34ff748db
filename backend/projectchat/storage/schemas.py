"""Pydantic schemas for persisted chat entities.

These schemas are shared by:
    - MessageStore implementations (storage layer)
    - The socket protocol (``new_message`` frames carry a full Message)
    - REST endpoints under /api/messages and /api/quotes
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    """Type of chat message.

    Attributes:
        TEXT: Regular text written by a participant.
        QUOTE: Notification that a contractor submitted a quote.
        SYSTEM: Generated by the platform, not by a participant.
    """
    TEXT = "text"
    QUOTE = "quote"
    SYSTEM = "system"


class UserProfile(BaseModel):
    """Minimal user identity used for presentation.

    Attributes:
        id: User ID.
        displayName: Full name, or the username when no name is on file.
        initials: One or two letters for avatar fallbacks.
        userType: ``homeowner`` or ``service_provider``.
    """
    id: int
    displayName: str
    initials: str = ""
    userType: str = "homeowner"


class ProjectRef(BaseModel):
    """The slice of a project the chat needs."""
    id: int
    homeownerId: int
    title: str = ""
    status: str = "active"


class Message(BaseModel):
    """A persisted chat message.

    Attributes:
        id: Store-assigned message ID.
        projectId: Project this message belongs to.
        senderId: User who wrote it.
        receiverId: Addressed user, or None for every project participant.
        content: Message text.
        messageType: text, quote or system.
        attachments: Optional opaque structured payload.
        isRead: Flipped once by mark-read, never back.
        createdAt: Store-assigned creation time (UTC).
        sender: Sender profile, filled in for clients; not persisted.
    """
    id: int
    projectId: int
    senderId: int
    receiverId: Optional[int] = None
    content: str
    messageType: MessageType = MessageType.TEXT
    attachments: Optional[Any] = None
    isRead: bool = False
    createdAt: datetime
    sender: Optional[UserProfile] = None


class QuoteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Quote(BaseModel):
    """Authoritative quote record.

    ``chatMessageId`` stays None until the quote's chat notification has been
    posted; quotes left in that state are re-announced at startup.
    """
    id: int
    projectId: int
    serviceProviderId: int
    amount: Decimal = Field(..., decimal_places=2)
    description: str = ""
    timeline: str = ""
    validUntil: Optional[datetime] = None
    status: QuoteStatus = QuoteStatus.PENDING
    chatMessageId: Optional[int] = None
    createdAt: datetime
