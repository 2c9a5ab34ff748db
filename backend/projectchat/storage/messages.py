"""Message storage: the MessageStore interface and its DuckDB implementation.

The chat core only talks to :class:`MessageStore`. The shipped implementation
keeps messages in DuckDB, an embedded database, so a single process can run
without any external service.

Database Schema:
    messages table:
        - id: Auto-incrementing primary key (messages_seq)
        - project_id: Project the conversation belongs to
        - sender_id: Author user ID
        - receiver_id: Addressed user ID (NULL = all project participants)
        - content: Message text
        - message_type: 'text', 'quote' or 'system'
        - attachments: JSON-encoded payload or NULL
        - is_read: Read flag (only ever flipped to TRUE)
        - created_at: Creation time (UTC)

Thread Safety:
    Calls are synchronous inside ``async def`` methods: DuckDB is embedded and
    fast for this volume, and running on the event loop thread keeps every
    access to the connection on one thread.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import duckdb

from .database import utcnow
from .schemas import Message, MessageType

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """Durable storage of chat messages keyed by project."""

    @abstractmethod
    async def create(
        self,
        project_id: int,
        sender_id: int,
        receiver_id: Optional[int],
        content: str,
        message_type: MessageType = MessageType.TEXT,
        attachments: Optional[Any] = None,
    ) -> Message:
        """Persist a new message; the store assigns id and createdAt."""

    @abstractmethod
    async def list_by_project(self, project_id: int) -> List[Message]:
        """All messages of a project, oldest first."""

    @abstractmethod
    async def get(self, message_id: int) -> Optional[Message]:
        """A single message, or None if it does not exist."""

    @abstractmethod
    async def mark_read(self, message_id: int) -> bool:
        """Set the read flag.

        Returns:
            True if the flag changed, False if the message was already read
            or does not exist.
        """

    @abstractmethod
    async def mark_all_read(self, project_id: int, reader_id: int) -> List[int]:
        """Mark every unread message in the project not sent by *reader_id* as read.

        Returns:
            Ids of the messages whose flag changed, ascending.
        """

    @abstractmethod
    async def unread_count(self, project_id: int, reader_id: int) -> int:
        """Unread messages in the project that *reader_id* did not send."""


_COLUMNS = (
    "id, project_id, sender_id, receiver_id, content, message_type, "
    "attachments, is_read, created_at"
)


class DuckDBMessageStore(MessageStore):
    """MessageStore backed by a DuckDB connection."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn
        self._initialize_db()

    def _initialize_db(self) -> None:
        """Create the sequence, table and index. Safe to call repeatedly."""
        self._conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER DEFAULT nextval('messages_seq') PRIMARY KEY,
                project_id INTEGER NOT NULL,
                sender_id INTEGER NOT NULL,
                receiver_id INTEGER,
                content VARCHAR NOT NULL,
                message_type VARCHAR NOT NULL DEFAULT 'text',
                attachments VARCHAR,
                is_read BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMP NOT NULL
            )
        """)
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_project ON messages(project_id)"
        )

    async def create(
        self,
        project_id: int,
        sender_id: int,
        receiver_id: Optional[int],
        content: str,
        message_type: MessageType = MessageType.TEXT,
        attachments: Optional[Any] = None,
    ) -> Message:
        created_at = utcnow()
        encoded = json.dumps(attachments) if attachments is not None else None
        row = self._conn.execute(
            f"""
            INSERT INTO messages
              (project_id, sender_id, receiver_id, content, message_type,
               attachments, is_read, created_at)
            VALUES (?, ?, ?, ?, ?, ?, FALSE, ?)
            RETURNING {_COLUMNS}
            """,
            [
                project_id,
                sender_id,
                receiver_id,
                content,
                MessageType(message_type).value,
                encoded,
                created_at,
            ],
        ).fetchone()
        message = self._row_to_message(row)
        logger.debug("[MessageStore] Created message %s in project %s", message.id, project_id)
        return message

    async def list_by_project(self, project_id: int) -> List[Message]:
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS}
            FROM messages
            WHERE project_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            [project_id],
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    async def get(self, message_id: int) -> Optional[Message]:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?",
            [message_id],
        ).fetchone()
        return self._row_to_message(row) if row else None

    async def mark_read(self, message_id: int) -> bool:
        changed = self._conn.execute(
            """
            UPDATE messages SET is_read = TRUE
            WHERE id = ? AND is_read = FALSE
            RETURNING id
            """,
            [message_id],
        ).fetchall()
        return len(changed) > 0

    async def mark_all_read(self, project_id: int, reader_id: int) -> List[int]:
        changed = self._conn.execute(
            """
            UPDATE messages SET is_read = TRUE
            WHERE project_id = ? AND sender_id <> ? AND is_read = FALSE
            RETURNING id
            """,
            [project_id, reader_id],
        ).fetchall()
        ids = sorted(row[0] for row in changed)
        logger.debug("[MessageStore] Marked %d message(s) read in project %s", len(ids), project_id)
        return ids

    async def unread_count(self, project_id: int, reader_id: int) -> int:
        row = self._conn.execute(
            """
            SELECT COUNT(*) FROM messages
            WHERE project_id = ? AND sender_id <> ? AND is_read = FALSE
            """,
            [project_id, reader_id],
        ).fetchone()
        return row[0]

    @staticmethod
    def _row_to_message(row: tuple) -> Message:
        return Message(
            id=row[0],
            projectId=row[1],
            senderId=row[2],
            receiverId=row[3],
            content=row[4],
            messageType=MessageType(row[5]),
            attachments=json.loads(row[6]) if row[6] is not None else None,
            isRead=row[7],
            createdAt=row[8],
        )
