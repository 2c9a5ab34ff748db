"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - GET /api/messages/project/{project_id}: Project message history
    - POST /api/messages: Send a message over HTTP (fanned out like socket sends)
    - PATCH /api/messages/{message_id}/read: Mark one message read
    - PATCH /api/messages/project/{project_id}/read-all: Mark every message from others read
    - GET /api/messages/project/{project_id}/unread-count: Unread messages from others
    - WebSocket /ws: Real-time chat protocol (see ``session.py``)
"""
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from pydantic import BaseModel, Field, PositiveInt

from ..dependencies import current_user_id, get_hub
from ..storage import Message, MessageType
from .errors import FrameValidationError, MessageNotFound, PersistenceFailure
from .hub import ChatHub
from .session import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def _require_project(hub: ChatHub, project_id: int) -> None:
    try:
        exists = hub.project_exists(project_id)
    except PersistenceFailure as exc:
        raise HTTPException(status_code=503, detail=exc.message)
    if not exists:
        raise HTTPException(status_code=404, detail="Project not found")


class MessageCreate(BaseModel):
    """Input schema for sending a message over HTTP.

    The sender is the authenticated user; the server adds id and createdAt.
    """
    projectId: PositiveInt = Field(..., description="Project the message belongs to")
    receiverId: Optional[PositiveInt] = Field(None, description="Addressed user, null for everyone")
    content: str = Field(..., description="Message content")
    messageType: MessageType = Field(MessageType.TEXT, description="text or quote")
    attachments: Optional[Any] = Field(None, description="Opaque structured payload")


@router.get("/api/messages/project/{project_id}", response_model=List[Message])
async def list_project_messages(
    project_id: int,
    user_id: int = Depends(current_user_id),
    hub: ChatHub = Depends(get_hub),
) -> List[Message]:
    """Get the full message history of a project, oldest first.

    Args:
        project_id: The project ID.

    Returns:
        Messages with sender profiles attached.
    """
    _require_project(hub, project_id)
    try:
        return await hub.history(project_id)
    except PersistenceFailure as exc:
        raise HTTPException(status_code=503, detail=exc.message)


@router.post("/api/messages", response_model=Message)
async def create_message(
    request: MessageCreate,
    user_id: int = Depends(current_user_id),
    hub: ChatHub = Depends(get_hub),
) -> Message:
    """Persist a message and broadcast it to the project's room.

    Returns:
        The stored message.
    """
    _require_project(hub, request.projectId)
    if request.messageType == MessageType.SYSTEM:
        raise HTTPException(status_code=400, detail="System messages cannot be sent by clients")
    try:
        content = hub.check_content(request.content)
    except FrameValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)

    try:
        return await hub.post_message(
            request.projectId,
            user_id,
            request.receiverId,
            content,
            request.messageType,
            request.attachments,
        )
    except PersistenceFailure as exc:
        raise HTTPException(status_code=503, detail=exc.message)


@router.patch("/api/messages/{message_id}/read", response_model=Message)
async def mark_message_read(
    message_id: int,
    user_id: int = Depends(current_user_id),
    hub: ChatHub = Depends(get_hub),
) -> Message:
    """Mark a message read for the current user and tell its project room.

    Marking your own message is accepted and changes nothing.
    """
    try:
        message = await hub.read_message(message_id, user_id)
        return hub.with_sender(message)
    except MessageNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except PersistenceFailure as exc:
        raise HTTPException(status_code=503, detail=exc.message)


@router.patch("/api/messages/project/{project_id}/read-all")
async def mark_project_read(
    project_id: int,
    user_id: int = Depends(current_user_id),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Mark every message in the project that the current user did not send as read.

    Returns:
        dict: Confirmation and the ids that changed.
    """
    _require_project(hub, project_id)
    try:
        changed = await hub.read_all(project_id, user_id)
    except PersistenceFailure as exc:
        raise HTTPException(status_code=503, detail=exc.message)
    return {"message": "All messages marked as read", "messageIds": changed}


@router.get("/api/messages/project/{project_id}/unread-count")
async def project_unread_count(
    project_id: int,
    user_id: int = Depends(current_user_id),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Number of unread messages in the project sent by someone else."""
    _require_project(hub, project_id)
    try:
        return {"count": await hub.unread_count(project_id, user_id)}
    except PersistenceFailure as exc:
        raise HTTPException(status_code=503, detail=exc.message)


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time project chat.

    Protocol Flow:
        1. Client sends: {type: "authenticate", userId, projectId?}
           → Server sends: {type: "authenticated", userId, connectionId}
        2. Client sends: {type: "join_project", projectId}
           → Server sends: {type: "joined_project", projectId}
        3. Client sends: {type: "send_message", ...}
           → Server broadcasts to the room (sender included):
             {type: "new_message", message: {...}}
        4. Client sends: {type: "typing", isTyping}
           → Server broadcasts to the others: {type: "user_typing", ...}
        5. Client sends: {type: "mark_read", messageId}
           → Server broadcasts: {type: "message_read", messageId, readBy}
        6. On disconnect the connection leaves every room.
    """
    hub: ChatHub = websocket.app.state.chat_hub
    session = ChatSession(websocket, hub)
    await session.run()
