"""User and project directories.

The chat needs only two things from the marketplace's account and project
data: a presentable identity for a user id, and whether a project exists
(plus who owns it). Both live in small DuckDB tables that the surrounding
application populates; :meth:`add_user` / :meth:`add_project` exist for
seeding and tests.
"""
import logging
from typing import Dict, Optional

import duckdb

from .schemas import ProjectRef, UserProfile

logger = logging.getLogger(__name__)


def _initials(first_name: Optional[str], last_name: Optional[str], username: str) -> str:
    letters = "".join(part[0] for part in (first_name, last_name) if part)
    if not letters and username:
        letters = username[0]
    return letters.upper() or "U"


class UserDirectory:
    """Resolves user ids to :class:`UserProfile` objects.

    Profiles are cached per process; call :meth:`invalidate` after editing the
    users table out of band.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn
        self._cache: Dict[int, UserProfile] = {}
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY,
                username VARCHAR NOT NULL,
                first_name VARCHAR,
                last_name VARCHAR,
                user_type VARCHAR NOT NULL DEFAULT 'homeowner'
            )
        """)

    def add_user(
        self,
        user_id: int,
        username: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        user_type: str = "homeowner",
    ) -> UserProfile:
        self._conn.execute(
            "INSERT INTO users (id, username, first_name, last_name, user_type) VALUES (?, ?, ?, ?, ?)",
            [user_id, username, first_name, last_name, user_type],
        )
        self._cache.pop(user_id, None)
        return self.get(user_id)

    def get(self, user_id: int) -> Optional[UserProfile]:
        """Profile for *user_id*, or None for unknown users."""
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached

        row = self._conn.execute(
            "SELECT id, username, first_name, last_name, user_type FROM users WHERE id = ?",
            [user_id],
        ).fetchone()
        if row is None:
            return None

        _, username, first_name, last_name, user_type = row
        full_name = " ".join(part for part in (first_name, last_name) if part)
        profile = UserProfile(
            id=user_id,
            displayName=full_name or username,
            initials=_initials(first_name, last_name, username),
            userType=user_type,
        )
        self._cache[user_id] = profile
        return profile

    def invalidate(self, user_id: Optional[int] = None) -> None:
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)


class ProjectDirectory:
    """Looks up projects by id."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id INTEGER PRIMARY KEY,
                homeowner_id INTEGER NOT NULL,
                title VARCHAR NOT NULL DEFAULT '',
                status VARCHAR NOT NULL DEFAULT 'active'
            )
        """)

    def add_project(
        self, project_id: int, homeowner_id: int, title: str = "", status: str = "active"
    ) -> ProjectRef:
        self._conn.execute(
            "INSERT INTO projects (id, homeowner_id, title, status) VALUES (?, ?, ?, ?)",
            [project_id, homeowner_id, title, status],
        )
        return ProjectRef(id=project_id, homeownerId=homeowner_id, title=title, status=status)

    def get(self, project_id: int) -> Optional[ProjectRef]:
        row = self._conn.execute(
            "SELECT id, homeowner_id, title, status FROM projects WHERE id = ?",
            [project_id],
        ).fetchone()
        if row is None:
            return None
        return ProjectRef(id=row[0], homeownerId=row[1], title=row[2], status=row[3])

    def exists(self, project_id: int) -> bool:
        return self.get(project_id) is not None
