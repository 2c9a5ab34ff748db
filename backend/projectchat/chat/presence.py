"""Typing presence with server-owned expiry.

Each (project_id, user_id) pair is either idle or typing. ``start`` moves a
pair to typing and (re)schedules its single expiry timer; a refresh resets
the timer instead of stacking a second one. When a timer fires the pair goes
back to idle and the ``on_expire`` callback is scheduled, which is how the
"stopped typing" frame reaches the room even if the client never sends
``isTyping: false``.

Timers use ``loop.call_later``; nothing polls.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TYPING_TIMEOUT = 2.0


@dataclass
class TypingEntry:
    """An active typing flag.

    Attributes:
        project_id: Room the user is typing in.
        user_id: Who is typing.
        connection_id: Connection that sent the latest ``typing: true``.
        handle: Pending expiry timer.
    """
    project_id: int
    user_id: int
    connection_id: str
    handle: asyncio.TimerHandle


ExpiryCallback = Callable[[TypingEntry], Awaitable[None]]


class TypingTracker:
    """Per-project set of users currently typing, with debounce expiry."""

    def __init__(
        self,
        timeout: float = DEFAULT_TYPING_TIMEOUT,
        on_expire: Optional[ExpiryCallback] = None,
    ) -> None:
        self.timeout = timeout
        self.on_expire = on_expire
        self._entries: Dict[Tuple[int, int], TypingEntry] = {}
        self._callbacks: Set[asyncio.Task] = set()

    def start(self, project_id: int, user_id: int, connection_id: str) -> bool:
        """Mark the user as typing and (re)start the expiry timer.

        Returns:
            True if the user was idle before (the room should be told),
            False if this only refreshed an existing timer.
        """
        key = (project_id, user_id)
        loop = asyncio.get_running_loop()
        previous = self._entries.get(key)
        if previous is not None:
            previous.handle.cancel()

        handle = loop.call_later(self.timeout, self._expire, key)
        self._entries[key] = TypingEntry(project_id, user_id, connection_id, handle)
        return previous is None

    def stop(self, project_id: int, user_id: int) -> Optional[TypingEntry]:
        """Mark the user idle. Returns the removed entry, or None if already idle."""
        entry = self._entries.pop((project_id, user_id), None)
        if entry is not None:
            entry.handle.cancel()
        return entry

    def is_typing(self, project_id: int, user_id: int) -> bool:
        return (project_id, user_id) in self._entries

    def typing_users(self, project_id: int) -> Set[int]:
        return {user_id for (pid, user_id) in self._entries if pid == project_id}

    def clear_connection(self, connection_id: str) -> List[TypingEntry]:
        """Drop every flag last refreshed by *connection_id* (socket closed)."""
        stale = [entry for entry in self._entries.values() if entry.connection_id == connection_id]
        for entry in stale:
            self.stop(entry.project_id, entry.user_id)
        return stale

    def _expire(self, key: Tuple[int, int]) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        logger.debug("[Typing] Expired user %s in project %s", entry.user_id, entry.project_id)
        if self.on_expire is None:
            return
        task = asyncio.get_running_loop().create_task(self.on_expire(entry))
        self._callbacks.add(task)
        task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task) -> None:
        self._callbacks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[Typing] Expiry callback failed: %s", task.exception())

    async def aclose(self) -> None:
        """Cancel all timers and pending expiry callbacks."""
        for entry in self._entries.values():
            entry.handle.cancel()
        self._entries.clear()
        for task in list(self._callbacks):
            task.cancel()
        if self._callbacks:
            await asyncio.gather(*self._callbacks, return_exceptions=True)
        self._callbacks.clear()
