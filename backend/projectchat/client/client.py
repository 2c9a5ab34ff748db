"""Socket client for the project chat.

:class:`ProjectChatClient` keeps one WebSocket to the server, folds every
inbound frame into a :class:`ChatState` with :func:`reduce`, and reconnects
with exponential backoff. After each reconnect it authenticates again and
re-joins every project the user had joined, so a dropped connection only
disables sending until the rooms are back.

Usage:
    client = ProjectChatClient("ws://localhost:8000/ws", user_id=5,
                               http_base_url="http://localhost:8000")
    await client.join(42)
    runner = asyncio.create_task(client.run())
    await client.send_message(42, "Can you come Tuesday?", receiver_id=7)
"""
import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

import httpx
import websockets
from websockets.exceptions import WebSocketException

from .state import (
    CONNECTION_LOST,
    CONNECTION_OPENED,
    DRAFT_CHANGED,
    HISTORY_LOADED,
    JOIN_REQUESTED,
    LEAVE_REQUESTED,
    SEND_STARTED,
    ChatState,
    reduce,
)

logger = logging.getLogger(__name__)

DEFAULT_TYPING_TIMEOUT = 2.0


class ChatClientError(Exception):
    """Raised when an operation needs a live, authenticated socket."""


class ProjectChatClient:
    """Reconnecting chat client bound to one user.

    Attributes:
        url: WebSocket URL of the ``/ws`` endpoint.
        state: Current :class:`ChatState`; replaced on every frame.
    """

    def __init__(
        self,
        url: str,
        user_id: int,
        *,
        http_base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        typing_timeout: float = DEFAULT_TYPING_TIMEOUT,
        reconnect_initial_delay: float = 0.5,
        reconnect_max_delay: float = 10.0,
        connect: Callable[[str], Any] = websockets.connect,
        on_state: Optional[Callable[[ChatState], None]] = None,
    ) -> None:
        self.url = url
        self.state = ChatState(user_id=user_id)
        self.typing_timeout = typing_timeout
        self._http_base_url = http_base_url
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._reconnect_initial = reconnect_initial_delay
        self._reconnect_max = reconnect_max_delay
        self._connect = connect
        self._on_state = on_state
        self._ws = None
        self._closing = False
        self._inline_project: Optional[int] = None

        # project_id -> monotonic time the last "typing: true" was sent
        self._typing_sent: Dict[int, float] = {}
        self._typing_timers: Dict[int, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def user_id(self) -> int:
        return self.state.user_id

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _apply(self, frame: dict) -> None:
        self.state = reduce(self.state, frame)
        if self._on_state is not None:
            self._on_state(self.state)

    def set_draft(self, content: str) -> None:
        self._apply({"type": DRAFT_CHANGED, "content": content})

    async def _send(self, frame: dict) -> None:
        if self._ws is None:
            raise ChatClientError("Not connected")
        await self._ws.send(json.dumps(frame))

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket and authenticate, joining the first wanted project inline."""
        self._ws = await self._connect(self.url)
        self._apply({"type": CONNECTION_OPENED})
        frame = {"type": "authenticate", "userId": self.user_id}
        wanted = sorted(self.state.wanted_projects)
        self._inline_project = wanted[0] if wanted else None
        if self._inline_project is not None:
            frame["projectId"] = self._inline_project
        await self._send(frame)
        logger.info("[Client] Connected to %s as user %s", self.url, self.user_id)

    async def handle_frame(self, frame: dict) -> None:
        """Apply one server frame and react to it."""
        self._apply(frame)
        if frame.get("type") == "authenticated":
            # Everything wanted except the project joined inline by authenticate,
            # including joins requested while the ack was in flight.
            for project_id in sorted(self.state.wanted_projects):
                if project_id == self._inline_project:
                    continue
                await self._send({"type": "join_project", "projectId": project_id})
        elif frame.get("type") == "error":
            logger.warning("[Client] Server error %s: %s", frame.get("code"), frame.get("message"))

    async def run(self) -> None:
        """Serve the socket until :meth:`close`, reconnecting with backoff."""
        delay = self._reconnect_initial
        while not self._closing:
            try:
                await self.connect()
                delay = self._reconnect_initial
                async for raw in self._ws:
                    try:
                        frame = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("[Client] Ignoring non-JSON frame")
                        continue
                    await self.handle_frame(frame)
            except (OSError, WebSocketException) as exc:
                logger.warning("[Client] Connection error: %s", exc)
            finally:
                self._connection_lost()

            if self._closing:
                break
            logger.info("[Client] Reconnecting in %.1fs", delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._reconnect_max)

    def _connection_lost(self) -> None:
        self._ws = None
        for handle in self._typing_timers.values():
            handle.cancel()
        self._typing_timers.clear()
        self._typing_sent.clear()
        if self.state.connected:
            self._apply({"type": CONNECTION_LOST})

    async def close(self) -> None:
        """Stop reconnecting and close the socket."""
        self._closing = True
        ws = self._ws
        if ws is not None:
            await ws.close()
        for task in list(self._tasks):
            task.cancel()
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def join(self, project_id: int) -> None:
        """Join a project now if connected, and after every reconnect."""
        self._apply({"type": JOIN_REQUESTED, "projectId": project_id})
        if self._ws is not None and self.state.authenticated:
            await self._send({"type": "join_project", "projectId": project_id})

    async def leave(self, project_id: int) -> None:
        self._apply({"type": LEAVE_REQUESTED, "projectId": project_id})
        if self._ws is not None and project_id in self.state.active_projects:
            await self._send({"type": "leave_project", "projectId": project_id})

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(
        self,
        project_id: int,
        content: Optional[str] = None,
        *,
        receiver_id: Optional[int] = None,
        message_type: str = "text",
        attachments: Optional[Any] = None,
    ) -> bool:
        """Send *content* (or the current draft) to a project.

        The draft is only cleared when the server echoes the message back, so
        a send that fails or never leaves leaves the text in the composer.

        Returns:
            False if nothing was sent (empty text or not in the room).
        """
        text = self.state.draft if content is None else content
        if not text or not text.strip():
            return False
        if not self.state.can_send(project_id):
            logger.info("[Client] Not in project %s; keeping draft", project_id)
            return False

        self._apply({"type": SEND_STARTED, "projectId": project_id, "content": text})
        await self._send({
            "type": "send_message",
            "projectId": project_id,
            "senderId": self.user_id,
            "receiverId": receiver_id,
            "content": text,
            "messageType": message_type,
            "attachments": attachments,
        })
        await self.stop_typing(project_id)
        return True

    async def mark_read(self, project_id: int, message_id: int) -> None:
        if not self.state.can_send(project_id):
            return
        await self._send({
            "type": "mark_read",
            "messageId": message_id,
            "userId": self.user_id,
            "projectId": project_id,
        })

    async def load_history(self, project_id: int) -> None:
        """Fetch the project's persisted messages over HTTP and merge them in."""
        if self._http_client is None:
            if self._http_base_url is None:
                raise ChatClientError("No HTTP base URL configured")
            self._http_client = httpx.AsyncClient(base_url=self._http_base_url)
        response = await self._http_client.get(
            f"/api/messages/project/{project_id}",
            headers={"X-User-Id": str(self.user_id)},
        )
        response.raise_for_status()
        self._apply({"type": HISTORY_LOADED, "projectId": project_id, "messages": response.json()})

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    async def notify_typing(self, project_id: int) -> None:
        """Call on every keystroke.

        Sends ``typing: true`` at the start of a burst (and again every half
        timeout so the server's expiry never fires mid-burst), then
        ``typing: false`` once the user has been idle for the timeout.
        """
        if not self.state.can_send(project_id):
            return

        now = time.monotonic()
        last_sent = self._typing_sent.get(project_id)
        if last_sent is None or now - last_sent >= self.typing_timeout / 2:
            self._typing_sent[project_id] = now
            await self._send({
                "type": "typing",
                "userId": self.user_id,
                "projectId": project_id,
                "isTyping": True,
            })

        previous = self._typing_timers.pop(project_id, None)
        if previous is not None:
            previous.cancel()
        self._typing_timers[project_id] = asyncio.get_running_loop().call_later(
            self.typing_timeout, self._typing_idle, project_id
        )

    def _typing_idle(self, project_id: int) -> None:
        task = asyncio.get_running_loop().create_task(self.stop_typing(project_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def stop_typing(self, project_id: int) -> None:
        handle = self._typing_timers.pop(project_id, None)
        if handle is not None:
            handle.cancel()
        if self._typing_sent.pop(project_id, None) is None or self._ws is None:
            return
        await self._send({
            "type": "typing",
            "userId": self.user_id,
            "projectId": project_id,
            "isTyping": False,
        })
