"""Client-side chat state and the reducer that folds frames into it.

``reduce(state, frame)`` is pure: it never mutates *state* and never does
I/O. It accepts the server's outbound frames plus a handful of local events
the client emits about itself (connection opened/lost, draft edits, send
started, history loaded, join/leave requested).
"""
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Optional, Tuple

# ── Local events (never sent over the wire) ───────────────────────────

CONNECTION_OPENED = "connection_opened"
CONNECTION_LOST = "connection_lost"
DRAFT_CHANGED = "draft_changed"
SEND_STARTED = "send_started"
HISTORY_LOADED = "history_loaded"
JOIN_REQUESTED = "join_requested"
LEAVE_REQUESTED = "leave_requested"


@dataclass(frozen=True)
class PendingSend:
    """A message handed to the socket but not yet echoed back by the server."""
    project_id: int
    content: str


@dataclass(frozen=True)
class ChatState:
    """Everything a chat view renders.

    Attributes:
        user_id: The local user.
        connected: Socket open.
        authenticated: Server acknowledged ``authenticate`` on this socket.
        wanted_projects: Projects the user asked to be in; re-joined after a reconnect.
        active_projects: Projects the server confirmed on the current socket.
        messages: Known messages, ordered by id, one entry per id.
        typing: (project_id, user_id) pairs of other users currently typing.
        draft: Composer text. Only cleared once the server echoes the send.
        pending: The send awaiting its echo, if any.
        last_error: Most recent ``error`` frame.
    """
    user_id: Optional[int] = None
    connected: bool = False
    authenticated: bool = False
    wanted_projects: FrozenSet[int] = frozenset()
    active_projects: FrozenSet[int] = frozenset()
    messages: Tuple[dict, ...] = ()
    typing: FrozenSet[Tuple[int, int]] = frozenset()
    draft: str = ""
    pending: Optional[PendingSend] = None
    last_error: Optional[dict] = field(default=None, compare=False)

    def can_send(self, project_id: int) -> bool:
        """Send and typing are disabled until the socket is back in the room."""
        return self.connected and self.authenticated and project_id in self.active_projects

    def typing_in(self, project_id: int) -> FrozenSet[int]:
        return frozenset(user for (pid, user) in self.typing if pid == project_id)

    def messages_for(self, project_id: int) -> Tuple[dict, ...]:
        return tuple(msg for msg in self.messages if msg.get("projectId") == project_id)


def _merge_messages(existing: Tuple[dict, ...], incoming) -> Tuple[dict, ...]:
    by_id = {msg["id"]: msg for msg in existing}
    for msg in incoming:
        by_id[msg["id"]] = msg
    return tuple(by_id[key] for key in sorted(by_id))


def _on_new_message(state: ChatState, frame: dict) -> ChatState:
    message = frame.get("message")
    if not isinstance(message, dict) or "id" not in message:
        return state
    state = replace(state, messages=_merge_messages(state.messages, [message]))

    # Our own echo confirms the pending send: now the composer can clear.
    pending = state.pending
    if (
        pending is not None
        and message.get("senderId") == state.user_id
        and message.get("projectId") == pending.project_id
        and message.get("content") == pending.content
    ):
        state = replace(state, pending=None, draft="" if state.draft == pending.content else state.draft)

    sender = (message.get("projectId"), message.get("senderId"))
    if sender in state.typing:
        state = replace(state, typing=state.typing - {sender})
    return state


def _on_user_typing(state: ChatState, frame: dict) -> ChatState:
    user_id = frame.get("userId")
    project_id = frame.get("projectId")
    if user_id is None or project_id is None or user_id == state.user_id:
        return state
    key = (project_id, user_id)
    if frame.get("isTyping"):
        return replace(state, typing=state.typing | {key})
    return replace(state, typing=state.typing - {key})


def _on_message_read(state: ChatState, frame: dict) -> ChatState:
    message_id = frame.get("messageId")
    messages = tuple(
        {**msg, "isRead": True} if msg.get("id") == message_id else msg
        for msg in state.messages
    )
    return replace(state, messages=messages)


def reduce(state: ChatState, frame: dict) -> ChatState:
    """Return the state after applying one server frame or local event."""
    kind = frame.get("type")

    if kind == CONNECTION_OPENED:
        return replace(state, connected=True, last_error=None)
    if kind == CONNECTION_LOST:
        # Keep wanted_projects, draft and pending so the user can retry after reconnecting.
        return replace(
            state,
            connected=False,
            authenticated=False,
            active_projects=frozenset(),
            typing=frozenset(),
        )
    if kind == DRAFT_CHANGED:
        return replace(state, draft=frame.get("content", ""))
    if kind == SEND_STARTED:
        return replace(state, pending=PendingSend(frame["projectId"], frame["content"]))
    if kind == HISTORY_LOADED:
        return replace(state, messages=_merge_messages(state.messages, frame.get("messages", [])))
    if kind == JOIN_REQUESTED:
        return replace(state, wanted_projects=state.wanted_projects | {frame["projectId"]})
    if kind == LEAVE_REQUESTED:
        project_id = frame["projectId"]
        return replace(
            state,
            wanted_projects=state.wanted_projects - {project_id},
            typing=frozenset(pair for pair in state.typing if pair[0] != project_id),
        )

    if kind == "authenticated":
        return replace(state, authenticated=True, user_id=frame.get("userId", state.user_id))
    if kind == "joined_project":
        return replace(state, active_projects=state.active_projects | {frame["projectId"]})
    if kind == "left_project":
        return replace(state, active_projects=state.active_projects - {frame["projectId"]})
    if kind == "new_message":
        return _on_new_message(state, frame)
    if kind == "user_typing":
        return _on_user_typing(state, frame)
    if kind == "message_read":
        return _on_message_read(state, frame)
    if kind == "error":
        # A failed send leaves the draft in the composer for a retry. Errors
        # for other frames leave an in-flight send alone.
        if frame.get("frameType") == "send_message":
            return replace(state, pending=None, last_error=frame)
        return replace(state, last_error=frame)

    return state
