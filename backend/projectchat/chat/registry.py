"""Connection registry: live connections and project room membership.

The registry is the single index of who is connected and which project rooms
each connection has joined. Rooms are not persisted; they are the reverse
index ``project_id -> {connection_id}`` maintained here.

Invariant:
    A connection id is in ``members_of(p)`` if and only if it joined ``p``
    and has neither left ``p`` nor been unregistered. ``unregister`` must run
    on every close/error path; it removes the connection from all rooms.

Thread Safety:
    Mutated only from the event loop thread. It is NOT thread-safe.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .errors import Unauthenticated
from .outbox import Outbox

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """One live socket.

    Attributes:
        connection_id: Opaque id, unique for the socket's lifetime.
        user_id: Bound by ``authenticate``; None until then.
        projects: Project ids this connection has joined.
        outbox: Outbound frame queue, None for connections without a socket.
    """
    connection_id: str
    user_id: Optional[int] = None
    projects: Set[int] = field(default_factory=set)
    outbox: Optional[Outbox] = None


class ConnectionRegistry:
    """Index of live connections and the project rooms they joined."""

    def __init__(self) -> None:
        # connection_id -> Connection
        self._connections: Dict[str, Connection] = {}

        # project_id -> set of connection ids (a "room")
        self._rooms: Dict[int, Set[str]] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def register(self, connection_id: str, outbox: Optional[Outbox] = None) -> Connection:
        """Create an entry with no user and no rooms."""
        connection = Connection(connection_id=connection_id, outbox=outbox)
        self._connections[connection_id] = connection
        logger.debug("[Registry] Registered connection %s", connection_id)
        return connection

    def authenticate(self, connection_id: str, user_id: int) -> None:
        """Bind *user_id* to the connection.

        Idempotent for the same user; a different user id overwrites the
        previous binding (last write wins).

        Raises:
            KeyError: if the connection is not registered.
        """
        connection = self._connections[connection_id]
        if connection.user_id is not None and connection.user_id != user_id:
            logger.warning(
                "[Registry] Connection %s rebound from user %s to %s",
                connection_id, connection.user_id, user_id,
            )
        connection.user_id = user_id

    def join(self, connection_id: str, project_id: int) -> bool:
        """Add the connection to the project's room.

        Returns:
            True if membership was added, False if it already existed.

        Raises:
            Unauthenticated: if no user is bound to the connection.
        """
        connection = self._connections.get(connection_id)
        if connection is None or connection.user_id is None:
            raise Unauthenticated("Authenticate before joining a project")

        if project_id in connection.projects:
            return False
        connection.projects.add(project_id)
        self._rooms.setdefault(project_id, set()).add(connection_id)
        logger.info(
            "[Registry] Connection %s (user %s) joined project %s; room size %d",
            connection_id, connection.user_id, project_id, len(self._rooms[project_id]),
        )
        return True

    def leave(self, connection_id: str, project_id: int) -> bool:
        """Remove the connection from one room. Returns True if it was a member."""
        connection = self._connections.get(connection_id)
        if connection is None or project_id not in connection.projects:
            return False
        connection.projects.discard(project_id)
        self._discard_member(project_id, connection_id)
        logger.info("[Registry] Connection %s left project %s", connection_id, project_id)
        return True

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """Remove the connection from every room and delete its entry.

        Safe to call for unknown or already-unregistered ids.

        Returns:
            The removed Connection, or None if it was not registered.
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None
        for project_id in connection.projects:
            self._discard_member(project_id, connection_id)
        logger.debug(
            "[Registry] Unregistered connection %s (left %d rooms)",
            connection_id, len(connection.projects),
        )
        return connection

    def _discard_member(self, project_id: int, connection_id: str) -> None:
        members = self._rooms.get(project_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[project_id]

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def user_of(self, connection_id: str) -> Optional[int]:
        connection = self._connections.get(connection_id)
        return connection.user_id if connection else None

    def rooms_of(self, connection_id: str) -> Set[int]:
        connection = self._connections.get(connection_id)
        return set(connection.projects) if connection else set()

    def is_member(self, connection_id: str, project_id: int) -> bool:
        return connection_id in self._rooms.get(project_id, ())

    def members_of(self, project_id: int) -> Set[str]:
        """Connection ids currently in the project's room (empty if none)."""
        return set(self._rooms.get(project_id, ()))

    def connections_for_user(self, user_id: int) -> List[str]:
        return [
            conn.connection_id
            for conn in self._connections.values()
            if conn.user_id == user_id
        ]

    def connection_count(self) -> int:
        return len(self._connections)

    def room_count(self) -> int:
        return len(self._rooms)
