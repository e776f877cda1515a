"""
SQLite database module for the member directory.

Provides persistent storage for member profiles and HubSpot list settings
(including the last discovered field mapping).
"""

import json
import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from member_sync.sync.member import LocalProfile

# SQL Schema for member profiles and list settings
SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
    record_id TEXT PRIMARY KEY,
    first_name TEXT,
    last_name TEXT,
    full_name TEXT,
    email TEXT,
    company_name TEXT,
    job_title TEXT,
    phone_number TEXT,
    industry TEXT,
    state_region TEXT,
    city TEXT,
    bio TEXT,
    linkedin TEXT,
    headshot TEXT,
    membership TEXT,
    email_domain TEXT,
    active BOOLEAN NOT NULL DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_profiles_active ON profiles(active);
CREATE INDEX IF NOT EXISTS idx_profiles_email_domain ON profiles(email_domain);

CREATE TABLE IF NOT EXISTS list_settings (
    id INTEGER PRIMARY KEY,
    list_id TEXT NOT NULL,
    list_name TEXT,
    field_mappings TEXT,
    last_sync_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(list_id)
);
"""

# Columns callers may change through update_profile_fields()
UPDATABLE_COLUMNS = frozenset(
    name for name in LocalProfile.column_names() if name != "record_id"
)


class ProfileStoreError(Exception):
    """Raised when a profile store operation fails."""

    pass


def _utc_now() -> str:
    # Naive UTC text so PARSE_DECLTYPES can convert it back to datetime
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(sep=" ")


class ProfileDatabase:
    """
    SQLite store for member profiles, keyed by HubSpot record id.

    Provides methods for:
    - Reading one profile (absence returns None)
    - Upserting a profile (insert the first time, replace afterwards)
    - Updating a subset of a profile's fields
    - Persisting the HubSpot list settings and discovered field mapping

    Usage:
        db = ProfileDatabase('/path/to/directory.db')
        db.initialize()

        # Or use in-memory for testing:
        db = ProfileDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:'
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None
        # Serializes use of the shared in-memory connection across threads
        self._shared_lock = threading.RLock()

    @property
    def _is_shared(self) -> bool:
        return self.db_path == ":memory:"

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        In-memory databases share one connection so the schema persists;
        file databases get a fresh connection per operation.
        """
        if self._is_shared:
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(
                    ":memory:",
                    detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
                    check_same_thread=False,
                )
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            timeout=30.0,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success, rolls back on error. sqlite3 errors are
        re-raised as ProfileStoreError.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM profiles")
        """
        lock = self._shared_lock if self._is_shared else None
        if lock is not None:
            lock.acquire()
        try:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                if not self._is_shared:
                    conn.close()
        except sqlite3.Error as e:
            raise ProfileStoreError(f"Database error: {e}") from e
        finally:
            if lock is not None:
                lock.release()

    def initialize(self) -> None:
        """Create the profiles and list_settings tables if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    def close(self) -> None:
        """Close the shared in-memory connection, discarding its data."""
        with self._shared_lock:
            if self._shared_connection is not None:
                self._shared_connection.close()
                self._shared_connection = None

    # =========================================================================
    # Profile Operations
    # =========================================================================

    def get_profile(self, record_id: str) -> Optional[LocalProfile]:
        """
        Get a profile by record id.

        Returns:
            The stored profile, or None if the member is unknown
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM profiles WHERE record_id = ?", (str(record_id),)
            )
            row = cursor.fetchone()
            if row:
                return LocalProfile.from_row(row)
            return None

    def upsert_profile(self, profile: LocalProfile) -> None:
        """
        Insert a profile, or replace every stored field of an existing one.

        created_at is kept from the first insert.
        """
        columns = LocalProfile.column_names()
        values = [getattr(profile, name) for name in columns]
        placeholders = ", ".join("?" for _ in columns)
        assignments = ", ".join(
            f"{name} = excluded.{name}" for name in columns if name != "record_id"
        )

        with self.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO profiles ({", ".join(columns)}, updated_at)
                VALUES ({placeholders}, ?)
                ON CONFLICT(record_id) DO UPDATE SET
                    {assignments},
                    updated_at = excluded.updated_at
                """,
                (*values, _utc_now()),
            )

    def update_profile_fields(self, record_id: str, **values: Any) -> bool:
        """
        Update a subset of a profile's fields, leaving the rest untouched.

        Args:
            record_id: The member's record id
            **values: Column name to new value

        Returns:
            True if a profile was updated, False if none exists

        Raises:
            ValueError: If no values are given or a column is unknown
        """
        if not values:
            raise ValueError("update_profile_fields requires at least one field")

        unknown = set(values) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

        names = sorted(values)
        assignments = ", ".join(f"{name} = ?" for name in names)
        params = [values[name] for name in names]

        with self.connection() as conn:
            cursor = conn.execute(
                f"UPDATE profiles SET {assignments}, updated_at = ? "
                "WHERE record_id = ?",
                (*params, _utc_now(), str(record_id)),
            )
            return cursor.rowcount > 0

    def list_profiles(self, active_only: bool = False) -> list[LocalProfile]:
        """List profiles ordered by last then first name."""
        query = "SELECT * FROM profiles"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY last_name COLLATE NOCASE, first_name COLLATE NOCASE"

        with self.connection() as conn:
            return [LocalProfile.from_row(row) for row in conn.execute(query)]

    def list_record_ids(self, active_only: bool = False) -> list[str]:
        """List every stored record id."""
        query = "SELECT record_id FROM profiles"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY record_id"

        with self.connection() as conn:
            return [row["record_id"] for row in conn.execute(query)]

    def count_profiles(self) -> dict[str, int]:
        """
        Count stored profiles.

        Returns:
            Dictionary with total, active and inactive counts
        """
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN active THEN 1 ELSE 0 END), 0) AS active
                FROM profiles
                """
            ).fetchone()
        total = row["total"]
        active = row["active"]
        return {"total": total, "active": active, "inactive": total - active}

    # =========================================================================
    # List Settings Operations
    # =========================================================================

    def get_list_settings(self, list_id: str) -> Optional[dict[str, Any]]:
        """
        Get the stored settings for a HubSpot list.

        Returns:
            Dictionary with list_id, list_name, field_mappings (dict),
            last_sync_at and updated_at, or None if the list is unknown
        """
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT list_id, list_name, field_mappings, last_sync_at, updated_at
                FROM list_settings
                WHERE list_id = ?
                """,
                (str(list_id),),
            ).fetchone()

        if not row:
            return None

        settings = dict(row)
        settings["field_mappings"] = (
            json.loads(row["field_mappings"]) if row["field_mappings"] else {}
        )
        return settings

    def save_field_mapping(
        self, list_id: str, list_name: Optional[str], mapping: dict[str, str]
    ) -> None:
        """
        Store the field mapping discovered for a list, replacing the old one.
        """
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO list_settings (list_id, list_name, field_mappings, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(list_id) DO UPDATE SET
                    list_name = excluded.list_name,
                    field_mappings = excluded.field_mappings,
                    updated_at = excluded.updated_at
                """,
                (str(list_id), list_name, json.dumps(mapping), _utc_now()),
            )

    def record_sync(self, list_id: str, synced_at: Optional[datetime] = None) -> None:
        """
        Record the completion time of a sync run for a list.

        Args:
            list_id: HubSpot list id
            synced_at: Naive UTC timestamp (defaults to now)
        """
        timestamp = synced_at.isoformat(sep=" ") if synced_at else _utc_now()
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO list_settings (list_id, last_sync_at, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(list_id) DO UPDATE SET
                    last_sync_at = excluded.last_sync_at,
                    updated_at = excluded.updated_at
                """,
                (str(list_id), timestamp, _utc_now()),
            )

    def __repr__(self) -> str:
        return f"ProfileDatabase(db_path={self.db_path!r})"
