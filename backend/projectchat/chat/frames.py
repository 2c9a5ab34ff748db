"""Socket protocol frames.

Every frame is a JSON object with a ``type`` discriminator. Inbound frames
are parsed into a closed set of pydantic models (one per ``type``); unknown
fields are ignored, unknown types and missing fields are rejected with a
:class:`FrameValidationError`. Outbound frames are plain dicts built by the
helpers at the bottom of this module.
"""
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, PositiveInt, TypeAdapter, ValidationError

from ..storage.schemas import Message, MessageType
from .errors import FrameValidationError

# ── Client -> Server frame types ──────────────────────────────────────

MSG_AUTHENTICATE = "authenticate"
MSG_JOIN_PROJECT = "join_project"
MSG_LEAVE_PROJECT = "leave_project"
MSG_SEND_MESSAGE = "send_message"
MSG_TYPING = "typing"
MSG_MARK_READ = "mark_read"
MSG_PING = "ping"

# ── Server -> Client frame types ──────────────────────────────────────

MSG_AUTHENTICATED = "authenticated"
MSG_JOINED_PROJECT = "joined_project"
MSG_LEFT_PROJECT = "left_project"
MSG_NEW_MESSAGE = "new_message"
MSG_USER_TYPING = "user_typing"
MSG_MESSAGE_READ = "message_read"
MSG_PONG = "pong"
MSG_ERROR = "error"


# =============================================================================
# Inbound frames
# =============================================================================


class AuthenticateFrame(BaseModel):
    """Bind a user id to the connection, optionally joining a project."""
    type: Literal["authenticate"]
    userId: PositiveInt
    projectId: Optional[PositiveInt] = None


class JoinProjectFrame(BaseModel):
    type: Literal["join_project"]
    projectId: PositiveInt


class LeaveProjectFrame(BaseModel):
    type: Literal["leave_project"]
    projectId: PositiveInt


class SendMessageFrame(BaseModel):
    """A chat message. ``receiverId`` None addresses every participant."""
    type: Literal["send_message"]
    projectId: PositiveInt
    senderId: PositiveInt
    receiverId: Optional[PositiveInt] = None
    content: str
    messageType: MessageType = MessageType.TEXT
    attachments: Optional[Any] = None


class TypingFrame(BaseModel):
    type: Literal["typing"]
    userId: PositiveInt
    projectId: PositiveInt
    isTyping: bool


class MarkReadFrame(BaseModel):
    type: Literal["mark_read"]
    messageId: PositiveInt
    userId: PositiveInt
    projectId: PositiveInt


class PingFrame(BaseModel):
    type: Literal["ping"]


InboundFrame = Annotated[
    Union[
        AuthenticateFrame,
        JoinProjectFrame,
        LeaveProjectFrame,
        SendMessageFrame,
        TypingFrame,
        MarkReadFrame,
        PingFrame,
    ],
    Field(discriminator="type"),
]

INBOUND_FRAME_TYPES = (
    AuthenticateFrame,
    JoinProjectFrame,
    LeaveProjectFrame,
    SendMessageFrame,
    TypingFrame,
    MarkReadFrame,
    PingFrame,
)

_inbound_adapter = TypeAdapter(InboundFrame)


def _describe(exc: ValidationError) -> str:
    """One-line summary of the first validation error."""
    first = exc.errors()[0]
    if first["type"] == "union_tag_not_found":
        return "Frame is missing its 'type' field"
    if first["type"] == "union_tag_invalid":
        return f"Unknown frame type: {first.get('ctx', {}).get('tag')!r}"
    # loc starts with the union tag, e.g. ("send_message", "content")
    field = ".".join(str(part) for part in first["loc"][1:]) or "frame"
    return f"Invalid frame: {field}: {first['msg']}"


def parse_frame(data: Any) -> BaseModel:
    """Validate a decoded JSON value into one of the inbound frame models.

    Raises:
        FrameValidationError: for non-objects, unknown types and bad fields.
    """
    if not isinstance(data, dict):
        raise FrameValidationError("Frame must be a JSON object")
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as exc:
        raise FrameValidationError(_describe(exc)) from exc


# =============================================================================
# Outbound frames
# =============================================================================


def authenticated_frame(user_id: int, connection_id: str) -> dict:
    return {"type": MSG_AUTHENTICATED, "userId": user_id, "connectionId": connection_id}


def joined_project_frame(project_id: int) -> dict:
    return {"type": MSG_JOINED_PROJECT, "projectId": project_id}


def left_project_frame(project_id: int) -> dict:
    return {"type": MSG_LEFT_PROJECT, "projectId": project_id}


def new_message_frame(message: Message) -> dict:
    return {"type": MSG_NEW_MESSAGE, "message": message.model_dump(mode="json")}


def user_typing_frame(user_id: int, project_id: int, is_typing: bool) -> dict:
    return {
        "type": MSG_USER_TYPING,
        "userId": user_id,
        "projectId": project_id,
        "isTyping": is_typing,
    }


def message_read_frame(message_id: int, read_by: int, project_id: int) -> dict:
    return {
        "type": MSG_MESSAGE_READ,
        "messageId": message_id,
        "readBy": read_by,
        "projectId": project_id,
    }


def pong_frame() -> dict:
    return {"type": MSG_PONG}
