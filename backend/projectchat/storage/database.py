"""DuckDB connection helpers shared by the storage services."""
import logging
from datetime import datetime, timezone

import duckdb

logger = logging.getLogger(__name__)


def open_database(db_path: str) -> duckdb.DuckDBPyConnection:
    """Open (or create) the DuckDB database at *db_path*.

    Pass ``":memory:"`` for a throwaway database.
    """
    conn = duckdb.connect(db_path)
    logger.info("[Storage] Opened DuckDB database at %s", db_path)
    return conn


def utcnow() -> datetime:
    """Naive UTC timestamp, the form DuckDB TIMESTAMP columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
