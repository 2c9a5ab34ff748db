"""Per-connection protocol session.

Each socket gets one :class:`ChatSession`. The session owns an explicit state
machine and dispatches every inbound frame to a ``handle_<type>`` method:

    CONNECTED ──authenticate──▶ AUTHENTICATED ──join_project──▶ IN_ROOM
        │                            ▲                            │
        │                            └──────leave_project─────────┘
        └──────────────── close / error (any state) ──▶ CLOSED

Protocol Message Types:
    - authenticate {userId, projectId?}: bind the user (optionally join)
    - join_project {projectId}: enter a project room
    - leave_project {projectId}: leave a project room
    - send_message {projectId, senderId, receiverId, content, messageType}
    - typing {userId, projectId, isTyping}: typing indicator
    - mark_read {messageId, userId, projectId}: read receipt
    - ping: liveness check, answered with pong

Errors are reported to the offending connection only, as ``error`` frames,
and never end the connection. Frames are processed one at a time per
connection, so a sender's own frames keep their order.
"""
import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from ..storage import MessageType
from .errors import AlreadyAuthenticated, ChatError, FrameValidationError, NotInRoom, Unauthenticated
from .frames import (
    INBOUND_FRAME_TYPES,
    AuthenticateFrame,
    JoinProjectFrame,
    LeaveProjectFrame,
    MarkReadFrame,
    PingFrame,
    SendMessageFrame,
    TypingFrame,
    authenticated_frame,
    joined_project_frame,
    left_project_frame,
    parse_frame,
    pong_frame,
)
from .hub import ChatHub
from .outbox import Outbox

logger = logging.getLogger(__name__)

# Close code sent when a connection's outbox overflows under the disconnect policy.
CLOSE_TRY_AGAIN_LATER = 1013


class SessionState(str, Enum):
    """Lifecycle of a socket session."""
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    IN_ROOM = "in_room"
    CLOSED = "closed"


# Frame model -> handler method. Checked against the frame union below so a
# new frame type cannot be added without a handler.
_HANDLERS = {
    AuthenticateFrame: "handle_authenticate",
    JoinProjectFrame: "handle_join_project",
    LeaveProjectFrame: "handle_leave_project",
    SendMessageFrame: "handle_send_message",
    TypingFrame: "handle_typing",
    MarkReadFrame: "handle_mark_read",
    PingFrame: "handle_ping",
}

_unhandled = set(INBOUND_FRAME_TYPES) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(f"Inbound frames without a handler: {sorted(m.__name__ for m in _unhandled)}")

# Frames accepted before authentication.
_PRE_AUTH_FRAMES = (AuthenticateFrame, PingFrame)


class ChatSession:
    """Holds all mutable state for a single socket connection.

    Attributes:
        ws: The underlying WebSocket.
        hub: Shared chat wiring (registry, rooms, typing, stores).
        connection_id: Opaque id, unique for this socket's lifetime.
        state: Current :class:`SessionState`.
        user_id: Bound user id once authenticated.
        outbox: Bounded outbound queue drained to ``ws``.
    """

    def __init__(self, websocket: WebSocket, hub: ChatHub, connection_id: Optional[str] = None):
        self.ws = websocket
        self.hub = hub
        self.connection_id = connection_id or str(uuid.uuid4())
        self.state = SessionState.CONNECTED
        self.user_id: Optional[int] = None
        self.outbox = Outbox(
            self.ws.send_json,
            maxsize=hub.settings.outbound_queue_size,
            overflow_policy=hub.settings.overflow_policy,
            on_overflow=self._on_overflow,
            name=self.connection_id,
        )
        self._close_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Accept the socket and serve frames until it closes."""
        await self.ws.accept()
        self.hub.registry.register(self.connection_id, self.outbox)
        self.outbox.start()
        logger.info(
            "[WS] Connection %s opened (%d live)",
            self.connection_id, self.hub.registry.connection_count(),
        )
        try:
            while True:
                message = await self.ws.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                await self.handle_raw(message.get("text"))
        except WebSocketDisconnect as exc:
            logger.info("[WS] Connection %s disconnected (code=%s)", self.connection_id, exc.code)
        finally:
            await self.close()

    async def close(self) -> None:
        """Tear down: clear typing, leave every room, stop the outbox.

        Runs on every exit path of :meth:`run`; calling it twice is harmless.
        """
        if self.state == SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self.hub.drop_connection_typing(self.connection_id)
        connection = self.hub.registry.unregister(self.connection_id)
        await self.outbox.close()
        logger.info(
            "[WS] Connection %s closed (user=%s, rooms=%s, %d live)",
            self.connection_id,
            self.user_id,
            sorted(connection.projects) if connection else [],
            self.hub.registry.connection_count(),
        )

    def _on_overflow(self) -> None:
        logger.warning("[WS] Closing slow connection %s", self.connection_id)
        self._close_task = asyncio.create_task(self.ws.close(code=CLOSE_TRY_AGAIN_LATER))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def reply(self, frame: dict) -> None:
        """Queue a frame for this connection only."""
        self.outbox.put(frame)

    def _require_authenticated(self) -> int:
        if self.user_id is None or self.state not in (SessionState.AUTHENTICATED, SessionState.IN_ROOM):
            raise Unauthenticated()
        return self.user_id

    def _require_member(self, project_id: int) -> None:
        if not self.hub.registry.is_member(self.connection_id, project_id):
            raise NotInRoom(project_id)

    def _require_self(self, user_id: int, field: str) -> None:
        if user_id != self.user_id:
            raise FrameValidationError(f"{field} does not match the authenticated user")

    def _refresh_room_state(self) -> None:
        if self.hub.registry.rooms_of(self.connection_id):
            self.state = SessionState.IN_ROOM
        else:
            self.state = SessionState.AUTHENTICATED

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle_raw(self, raw: Optional[str]) -> None:
        """Decode, validate and dispatch one text frame (None for binary frames)."""
        if self.state == SessionState.CLOSED:
            return
        frame_type = None
        try:
            if raw is None:
                raise FrameValidationError("Binary frames are not supported")
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise FrameValidationError("Frame is not valid JSON") from exc
            frame = parse_frame(data)
            frame_type = frame.type
            await self.dispatch(frame)
        except ChatError as err:
            logger.info(
                "[WS] Rejected frame from %s (user=%s): %s %s",
                self.connection_id, self.user_id, err.code, err.message,
            )
            self.reply(err.to_frame(frame_type))

    async def dispatch(self, frame: BaseModel) -> None:
        """Route a parsed frame to its handler after the state check."""
        if not isinstance(frame, _PRE_AUTH_FRAMES):
            self._require_authenticated()
        handler = getattr(self, _HANDLERS[type(frame)])
        logger.debug("[WS] %s <- %s", self.connection_id, frame.type)
        await handler(frame)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_authenticate(self, frame: AuthenticateFrame) -> None:
        if self.state != SessionState.CONNECTED:
            # Same user again is a harmless re-ack; switching users is not allowed.
            if frame.userId != self.user_id:
                raise AlreadyAuthenticated()
        elif self.hub.find_user(frame.userId) is None:
            raise FrameValidationError(f"Unknown user {frame.userId}")

        self.hub.registry.authenticate(self.connection_id, frame.userId)
        self.user_id = frame.userId
        if self.state == SessionState.CONNECTED:
            self.state = SessionState.AUTHENTICATED
            logger.info("[WS] Connection %s authenticated as user %s", self.connection_id, self.user_id)
        self.reply(authenticated_frame(self.user_id, self.connection_id))

        if frame.projectId is not None:
            await self._join(frame.projectId)

    async def handle_join_project(self, frame: JoinProjectFrame) -> None:
        await self._join(frame.projectId)

    async def _join(self, project_id: int) -> None:
        if not self.hub.project_exists(project_id):
            raise FrameValidationError(f"Unknown project {project_id}")
        self.hub.registry.join(self.connection_id, project_id)
        self.state = SessionState.IN_ROOM
        self.reply(joined_project_frame(project_id))

    async def handle_leave_project(self, frame: LeaveProjectFrame) -> None:
        self._require_member(frame.projectId)
        self.hub.registry.leave(self.connection_id, frame.projectId)
        self.hub.stop_typing(frame.projectId, self.user_id)
        self._refresh_room_state()
        self.reply(left_project_frame(frame.projectId))

    async def handle_send_message(self, frame: SendMessageFrame) -> None:
        self._require_member(frame.projectId)
        self._require_self(frame.senderId, "senderId")
        if frame.messageType == MessageType.SYSTEM:
            raise FrameValidationError("System messages cannot be sent by clients")
        content = self.hub.check_content(frame.content)

        # post_message raises PersistenceFailure before anything is broadcast.
        await self.hub.post_message(
            frame.projectId,
            self.user_id,
            frame.receiverId,
            content,
            frame.messageType,
            frame.attachments,
        )

    async def handle_typing(self, frame: TypingFrame) -> None:
        self._require_member(frame.projectId)
        self._require_self(frame.userId, "userId")

        if not frame.isTyping:
            self.hub.stop_typing(frame.projectId, self.user_id)
            return

        # A refresh only resets the expiry timer; the room already knows.
        if self.hub.typing.start(frame.projectId, self.user_id, self.connection_id):
            self.hub.broadcast_typing(frame.projectId, self.user_id, True)

    async def handle_mark_read(self, frame: MarkReadFrame) -> None:
        self._require_member(frame.projectId)
        self._require_self(frame.userId, "userId")

        await self.hub.read_message(frame.messageId, self.user_id, frame.projectId)

    async def handle_ping(self, frame: PingFrame) -> None:
        self.reply(pong_frame())
