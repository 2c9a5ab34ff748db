"""Chat hub: the per-application wiring of the chat core.

A :class:`ChatHub` owns the connection registry, the room router and the
typing tracker, and holds the storage collaborators. One hub is built per
FastAPI application and handed to every socket session and REST handler;
there are no module-level singletons, so tests can build as many as they
like.

Every storage call made through the hub turns a store exception into a
:class:`PersistenceFailure`, so callers only ever see ``ChatError``s.
"""
import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from ..config import ChatSettings
from ..storage import Message, MessageStore, MessageType, ProjectDirectory, UserDirectory, UserProfile
from .errors import FrameValidationError, MessageNotFound, PersistenceFailure
from .frames import message_read_frame, new_message_frame, user_typing_frame
from .presence import TypingEntry, TypingTracker
from .registry import ConnectionRegistry
from .rooms import RoomRouter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChatHub:
    """Registry + router + typing tracker, bound to the storage collaborators.

    Attributes:
        settings: Chat protocol settings.
        messages: Durable message storage.
        users: User id -> profile resolution.
        projects: Project lookup.
        registry: Live connections and rooms.
        rooms: Fan-out over the registry.
        typing: Typing presence with server-owned expiry.
    """

    def __init__(
        self,
        messages: MessageStore,
        users: UserDirectory,
        projects: ProjectDirectory,
        settings: Optional[ChatSettings] = None,
    ) -> None:
        self.settings = settings or ChatSettings()
        self.messages = messages
        self.users = users
        self.projects = projects
        self.registry = ConnectionRegistry()
        self.rooms = RoomRouter(self.registry)
        self.typing = TypingTracker(
            timeout=self.settings.typing_timeout_seconds,
            on_expire=self._typing_expired,
        )

    # =========================================================================
    # Store access
    # =========================================================================

    async def store_call(self, call: Awaitable[T], action: str) -> T:
        """Await a store coroutine, reporting any failure as PersistenceFailure."""
        try:
            return await call
        except Exception as exc:
            logger.exception("[Hub] Store call failed while trying to %s", action)
            raise PersistenceFailure(f"Could not {action}, please retry") from exc

    def _lookup(self, fn: Callable[[int], T], key: int, action: str) -> T:
        try:
            return fn(key)
        except Exception as exc:
            logger.exception("[Hub] Lookup failed while trying to %s", action)
            raise PersistenceFailure(f"Could not {action}, please retry") from exc

    def find_user(self, user_id: int) -> Optional[UserProfile]:
        return self._lookup(self.users.get, user_id, "look up the user")

    def project_exists(self, project_id: int) -> bool:
        return self._lookup(self.projects.exists, project_id, "look up the project")

    # =========================================================================
    # Typing
    # =========================================================================

    def broadcast_typing(self, project_id: int, user_id: int, is_typing: bool) -> int:
        """Tell the room about a typing change, skipping every connection of the typist."""
        return self.rooms.broadcast(
            project_id,
            user_typing_frame(user_id, project_id, is_typing),
            exclude=self.registry.connections_for_user(user_id),
        )

    async def _typing_expired(self, entry: TypingEntry) -> None:
        self.broadcast_typing(entry.project_id, entry.user_id, False)

    def stop_typing(self, project_id: int, user_id: int) -> bool:
        """Clear a typing flag, telling the room if it was set."""
        if self.typing.stop(project_id, user_id) is None:
            return False
        self.broadcast_typing(project_id, user_id, False)
        return True

    def drop_connection_typing(self, connection_id: str) -> None:
        """Clear every typing flag owned by a closing connection."""
        for entry in self.typing.clear_connection(connection_id):
            self.broadcast_typing(entry.project_id, entry.user_id, False)

    # =========================================================================
    # Messages
    # =========================================================================

    def check_content(self, content: str) -> str:
        """Validate message text, returning it unchanged.

        Raises:
            FrameValidationError: if empty/blank or longer than allowed.
        """
        if not content or not content.strip():
            raise FrameValidationError("Message content is required")
        if len(content) > self.settings.max_message_length:
            raise FrameValidationError(
                f"Message content exceeds {self.settings.max_message_length} characters"
            )
        return content

    def with_sender(self, message: Message) -> Message:
        """Attach the sender's profile for presentation.

        Raises:
            PersistenceFailure: if the user directory failed.
        """
        return message.model_copy(update={"sender": self.find_user(message.senderId)})

    async def post_message(
        self,
        project_id: int,
        sender_id: int,
        receiver_id: Optional[int],
        content: str,
        message_type: MessageType = MessageType.TEXT,
        attachments: Optional[Any] = None,
    ) -> Message:
        """Persist a message, then fan it out to the whole room (sender included).

        Nothing is broadcast unless the store call succeeded. Once stored, the
        message is always broadcast, without a sender profile if that lookup
        fails.

        Raises:
            PersistenceFailure: if the store rejected or failed the write.
        """
        stored = await self.store_call(
            self.messages.create(project_id, sender_id, receiver_id, content, message_type, attachments),
            "save the message",
        )

        try:
            message = self.with_sender(stored)
        except PersistenceFailure:
            message = stored
        delivered = self.rooms.broadcast(project_id, new_message_frame(message))
        logger.info(
            "[Hub] Message %s (%s) in project %s delivered to %d connection(s)",
            message.id, message.messageType.value, project_id, delivered,
        )
        self.stop_typing(project_id, sender_id)
        return message

    async def history(self, project_id: int) -> List[Message]:
        """Project history, oldest first, with sender profiles."""
        stored = await self.store_call(self.messages.list_by_project(project_id), "load messages")
        return [self.with_sender(message) for message in stored]

    # =========================================================================
    # Read receipts
    # =========================================================================

    async def read_message(
        self, message_id: int, reader_id: int, project_id: Optional[int] = None
    ) -> Message:
        """Mark one message read on behalf of *reader_id*.

        Reading your own message changes nothing. ``message_read`` goes to the
        room only when the flag actually flipped.

        Raises:
            MessageNotFound: if the message is unknown (or not in *project_id*).
            PersistenceFailure: if the store failed.
        """
        message = await self.store_call(self.messages.get(message_id), "load the message")
        if message is None or (project_id is not None and message.projectId != project_id):
            raise MessageNotFound(message_id, project_id)
        if message.senderId == reader_id:
            return message

        changed = await self.store_call(self.messages.mark_read(message_id), "mark the message read")
        if changed:
            self.rooms.broadcast(
                message.projectId,
                message_read_frame(message_id, reader_id, message.projectId),
            )
        return message.model_copy(update={"isRead": True})

    async def read_all(self, project_id: int, reader_id: int) -> List[int]:
        """Mark every message *reader_id* did not send as read, announcing each change."""
        changed = await self.store_call(
            self.messages.mark_all_read(project_id, reader_id), "mark messages read"
        )
        for message_id in changed:
            self.rooms.broadcast(project_id, message_read_frame(message_id, reader_id, project_id))
        logger.info("[Hub] User %s read %d message(s) in project %s", reader_id, len(changed), project_id)
        return changed

    async def unread_count(self, project_id: int, reader_id: int) -> int:
        return await self.store_call(
            self.messages.unread_count(project_id, reader_id), "count unread messages"
        )

    async def aclose(self) -> None:
        await self.typing.aclose()
