"""DuckDB-backed quote records.

The quotes table is the source of truth for a contractor's priced proposal.
The chat only mirrors a quote as a ``quote`` message; ``chat_message_id``
links the two once the notification has been posted.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import duckdb

from .database import utcnow
from .schemas import Quote, QuoteStatus

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, project_id, service_provider_id, amount, description, timeline, "
    "valid_until, status, chat_message_id, created_at"
)


class QuoteStore:
    """CRUD over the quotes table."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn
        self._conn.execute("CREATE SEQUENCE IF NOT EXISTS quotes_seq START 1")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS quotes (
                id INTEGER DEFAULT nextval('quotes_seq') PRIMARY KEY,
                project_id INTEGER NOT NULL,
                service_provider_id INTEGER NOT NULL,
                amount DECIMAL(10, 2) NOT NULL,
                description VARCHAR NOT NULL DEFAULT '',
                timeline VARCHAR NOT NULL DEFAULT '',
                valid_until TIMESTAMP,
                status VARCHAR NOT NULL DEFAULT 'pending',
                chat_message_id INTEGER,
                created_at TIMESTAMP NOT NULL
            )
        """)

    def create(
        self,
        project_id: int,
        service_provider_id: int,
        amount: Decimal,
        description: str = "",
        timeline: str = "",
        valid_until: Optional[datetime] = None,
    ) -> Quote:
        row = self._conn.execute(
            f"""
            INSERT INTO quotes
              (project_id, service_provider_id, amount, description, timeline,
               valid_until, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING {_COLUMNS}
            """,
            [
                project_id,
                service_provider_id,
                amount,
                description,
                timeline,
                valid_until,
                QuoteStatus.PENDING.value,
                utcnow(),
            ],
        ).fetchone()
        return self._row_to_quote(row)

    def get(self, quote_id: int) -> Optional[Quote]:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM quotes WHERE id = ?", [quote_id]
        ).fetchone()
        return self._row_to_quote(row) if row else None

    def list_by_project(self, project_id: int) -> List[Quote]:
        """Quotes for a project, newest first."""
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM quotes WHERE project_id = ? ORDER BY created_at DESC, id DESC",
            [project_id],
        ).fetchall()
        return [self._row_to_quote(row) for row in rows]

    def list_unannounced(self) -> List[Quote]:
        """Quotes whose chat notification was never posted, oldest first."""
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM quotes WHERE chat_message_id IS NULL ORDER BY id ASC"
        ).fetchall()
        return [self._row_to_quote(row) for row in rows]

    def link_message(self, quote_id: int, message_id: int) -> None:
        self._conn.execute(
            "UPDATE quotes SET chat_message_id = ? WHERE id = ?",
            [message_id, quote_id],
        )

    @staticmethod
    def _row_to_quote(row: tuple) -> Quote:
        return Quote(
            id=row[0],
            projectId=row[1],
            serviceProviderId=row[2],
            amount=row[3],
            description=row[4],
            timeline=row[5],
            validUntil=row[6],
            status=QuoteStatus(row[7]),
            chatMessageId=row[8],
            createdAt=row[9],
        )
