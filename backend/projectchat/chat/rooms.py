"""Room fan-out.

Translates "broadcast to project X" into one outbox ``put`` per connection
currently in ``ConnectionRegistry.members_of(X)``. Delivery is pure fan-out:
every room member receives every frame, whatever the message's receiverId.
"""
import logging
from typing import Iterable, Optional

from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class RoomRouter:
    """Delivers frames to single connections or whole project rooms."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    def send(self, connection_id: str, frame: dict) -> bool:
        """Queue *frame* for one connection. Returns False if it was not queued."""
        connection = self._registry.get(connection_id)
        if connection is None or connection.outbox is None:
            return False
        return connection.outbox.put(frame)

    def broadcast(
        self,
        project_id: int,
        frame: dict,
        exclude: Optional[Iterable[str]] = None,
    ) -> int:
        """Queue *frame* for every member of the project's room.

        Args:
            project_id: Room to deliver to.
            frame: JSON-serializable outbound frame.
            exclude: Connection ids to skip (e.g. the sender of a typing event).

        Returns:
            Number of connections the frame was queued for.
        """
        skipped = set(exclude or ())
        delivered = 0
        for connection_id in self._registry.members_of(project_id):
            if connection_id in skipped:
                continue
            if self.send(connection_id, frame):
                delivered += 1
        logger.debug(
            "[Rooms] %s -> project %s: queued for %d connection(s)",
            frame.get("type"), project_id, delivered,
        )
        return delivered
