"""
Relational store for Punt data.

This module provides the Store class, an explicit handle on the SQLite
database that holds every Punt collection. Backup import and export receive
a Store instead of reaching for a global connection, so each caller (and
each test) can work against its own database file.

Design Decisions:
    - SQLite with PRAGMA foreign_keys = ON; constraints are checked
      immediately, so rows must be written in dependency order
    - No ON DELETE CASCADE: wiping must also follow dependency order
    - Timestamps are TEXT in ISO-8601 UTC, booleans are INTEGER 0/1,
      JSON columns are TEXT
    - Writes happen inside Transaction objects with an optional deadline

Thread Safety:
    Connection-per-operation. A Store also carries an import lock so that two
    imports against the same store cannot interleave their wipe and insert
    steps.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Generator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage errors."""

    pass


class TransactionTimeoutError(StorageError):
    """Raised when a transaction runs past its deadline."""

    pass


# Database schema version for migrations
SCHEMA_VERSION = 1

# Seconds to wait for another writer's lock before giving up
DEFAULT_BUSY_TIMEOUT = 30.0


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Singleton, survives a wipe
CREATE TABLE IF NOT EXISTS system_settings (
    id TEXT PRIMARY KEY,
    updated_at TEXT NOT NULL,
    updated_by TEXT,
    app_name TEXT NOT NULL,
    logo_url TEXT,
    logo_letter TEXT NOT NULL,
    logo_gradient_from TEXT NOT NULL,
    logo_gradient_to TEXT NOT NULL,
    max_image_size_mb REAL NOT NULL,
    max_video_size_mb REAL NOT NULL,
    max_document_size_mb REAL NOT NULL,
    max_attachments_per_ticket INTEGER NOT NULL,
    allowed_image_types TEXT NOT NULL,
    allowed_video_types TEXT NOT NULL,
    allowed_document_types TEXT NOT NULL,
    email_enabled INTEGER NOT NULL,
    email_provider TEXT NOT NULL,
    email_from_address TEXT NOT NULL,
    email_from_name TEXT NOT NULL,
    smtp_host TEXT NOT NULL,
    smtp_port INTEGER NOT NULL,
    smtp_username TEXT NOT NULL,
    smtp_secure INTEGER NOT NULL,
    email_password_reset INTEGER NOT NULL,
    email_welcome INTEGER NOT NULL,
    email_verification INTEGER NOT NULL,
    email_invitations INTEGER NOT NULL,
    default_role_permissions TEXT
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    email TEXT UNIQUE,
    name TEXT NOT NULL,
    avatar TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_login_at TEXT,
    password_hash TEXT,
    password_changed_at TEXT,
    email_verified TEXT,
    is_system_admin INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1
);

-- Authentication state; wiped on import, never exported
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    provider TEXT NOT NULL,
    provider_account_id TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    session_token TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL REFERENCES users(id),
    expires TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS password_reset_tokens (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    token_hash TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS email_verification_tokens (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    token_hash TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    key TEXT NOT NULL UNIQUE,
    description TEXT,
    color TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS invitations (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    role TEXT NOT NULL,
    token TEXT NOT NULL UNIQUE,
    expires_at TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    sender_id TEXT REFERENCES users(id),
    project_id TEXT NOT NULL REFERENCES projects(id)
);

CREATE TABLE IF NOT EXISTS roles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    color TEXT NOT NULL,
    description TEXT,
    permissions TEXT NOT NULL,
    is_default INTEGER NOT NULL,
    position INTEGER NOT NULL,
    project_id TEXT NOT NULL REFERENCES projects(id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS board_columns (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    sort_order INTEGER NOT NULL,
    project_id TEXT NOT NULL REFERENCES projects(id)
);

CREATE TABLE IF NOT EXISTS labels (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    color TEXT NOT NULL,
    project_id TEXT NOT NULL REFERENCES projects(id)
);

CREATE TABLE IF NOT EXISTS sprints (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    goal TEXT,
    start_date TEXT,
    end_date TEXT,
    budget REAL,
    status TEXT NOT NULL,
    completed_at TEXT,
    completed_by_id TEXT REFERENCES users(id),
    completed_ticket_count INTEGER,
    incomplete_ticket_count INTEGER,
    completed_story_points REAL,
    incomplete_story_points REAL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    project_id TEXT NOT NULL REFERENCES projects(id)
);

CREATE TABLE IF NOT EXISTS project_members (
    id TEXT PRIMARY KEY,
    role_id TEXT NOT NULL REFERENCES roles(id),
    overrides TEXT,
    user_id TEXT NOT NULL REFERENCES users(id),
    project_id TEXT NOT NULL REFERENCES projects(id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, project_id)
);

CREATE TABLE IF NOT EXISTS project_sprint_settings (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL UNIQUE REFERENCES projects(id),
    default_sprint_duration INTEGER NOT NULL,
    auto_carry_over_incomplete INTEGER NOT NULL,
    done_column_ids TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tickets (
    id TEXT PRIMARY KEY,
    number INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    type TEXT NOT NULL,
    priority TEXT NOT NULL,
    sort_order REAL NOT NULL,
    story_points REAL,
    estimate TEXT,
    start_date TEXT,
    due_date TEXT,
    resolved_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    environment TEXT,
    affected_version TEXT,
    fix_version TEXT,
    project_id TEXT NOT NULL REFERENCES projects(id),
    column_id TEXT NOT NULL REFERENCES board_columns(id),
    assignee_id TEXT REFERENCES users(id),
    creator_id TEXT REFERENCES users(id),
    sprint_id TEXT REFERENCES sprints(id),
    is_carried_over INTEGER NOT NULL DEFAULT 0,
    carried_from_sprint_id TEXT REFERENCES sprints(id),
    carried_over_count INTEGER NOT NULL DEFAULT 0,
    parent_id TEXT REFERENCES tickets(id),
    UNIQUE (project_id, number)
);

CREATE INDEX IF NOT EXISTS idx_tickets_parent ON tickets(parent_id);

CREATE TABLE IF NOT EXISTS ticket_labels (
    ticket_id TEXT NOT NULL REFERENCES tickets(id),
    label_id TEXT NOT NULL REFERENCES labels(id),
    PRIMARY KEY (ticket_id, label_id)
);

CREATE TABLE IF NOT EXISTS ticket_links (
    id TEXT PRIMARY KEY,
    link_type TEXT NOT NULL,
    from_ticket_id TEXT NOT NULL REFERENCES tickets(id),
    to_ticket_id TEXT NOT NULL REFERENCES tickets(id),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ticket_watchers (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    ticket_id TEXT NOT NULL REFERENCES tickets(id),
    user_id TEXT NOT NULL REFERENCES users(id),
    UNIQUE (ticket_id, user_id)
);

CREATE TABLE IF NOT EXISTS comments (
    id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    ticket_id TEXT NOT NULL REFERENCES tickets(id),
    author_id TEXT NOT NULL REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS ticket_edits (
    id TEXT PRIMARY KEY,
    field TEXT NOT NULL,
    old_value TEXT,
    new_value TEXT,
    created_at TEXT NOT NULL,
    ticket_id TEXT NOT NULL REFERENCES tickets(id),
    user_id TEXT NOT NULL REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS ticket_activities (
    id TEXT PRIMARY KEY,
    ticket_id TEXT NOT NULL REFERENCES tickets(id),
    user_id TEXT REFERENCES users(id),
    action TEXT NOT NULL,
    field TEXT,
    old_value TEXT,
    new_value TEXT,
    group_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS attachments (
    id TEXT PRIMARY KEY,
    filename TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    size INTEGER NOT NULL,
    url TEXT NOT NULL,
    created_at TEXT NOT NULL,
    ticket_id TEXT NOT NULL REFERENCES tickets(id),
    uploader_id TEXT REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS ticket_sprint_history (
    id TEXT PRIMARY KEY,
    ticket_id TEXT NOT NULL REFERENCES tickets(id),
    sprint_id TEXT NOT NULL REFERENCES sprints(id),
    added_at TEXT NOT NULL,
    removed_at TEXT,
    entry_type TEXT NOT NULL,
    exit_status TEXT,
    carried_from_sprint_id TEXT REFERENCES sprints(id)
);
"""

# Parents before children. Wiping walks this tuple backwards.
DEPENDENCY_ORDER: tuple[str, ...] = (
    "users",
    "accounts",
    "sessions",
    "password_reset_tokens",
    "email_verification_tokens",
    "projects",
    "invitations",
    "roles",
    "board_columns",
    "labels",
    "sprints",
    "project_members",
    "project_sprint_settings",
    "tickets",
    "ticket_labels",
    "ticket_links",
    "ticket_watchers",
    "comments",
    "ticket_edits",
    "ticket_activities",
    "attachments",
    "ticket_sprint_history",
)


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 text."""
    return datetime.now(UTC).isoformat()


class Transaction:
    """
    An open write transaction on one connection.

    Every statement checks the deadline first, so a long import fails with
    TransactionTimeoutError between statements rather than running on.
    Obtain instances from Store.transaction().
    """

    def __init__(self, conn: sqlite3.Connection, deadline: float | None = None) -> None:
        self.conn = conn
        self.deadline = deadline

    def check_deadline(self) -> None:
        """Raise TransactionTimeoutError if the deadline has passed."""
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise TransactionTimeoutError("Transaction exceeded its time limit")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        self.check_deadline()
        return self.conn.execute(sql, params)

    def insert(self, table: str, row: Mapping[str, Any]) -> None:
        """Insert one row given as a column -> value mapping."""
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        self.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",  # noqa: S608
            tuple(row.values()),
        )

    def upsert(self, table: str, row: Mapping[str, Any], key: str = "id") -> None:
        """Insert one row, or update every other column if the key exists."""
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        updates = ", ".join(f"{col} = excluded.{col}" for col in row if col != key)
        self.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) "  # noqa: S608
            f"ON CONFLICT({key}) DO UPDATE SET {updates}",
            tuple(row.values()),
        )

    def delete_all(self, table: str) -> int:
        """Delete every row of a table and return how many were removed."""
        cursor = self.execute(f"DELETE FROM {table}")  # noqa: S608
        return cursor.rowcount


class Store:
    """
    Handle on a Punt SQLite database.

    Example:
        store = Store(Path("./data/punt.db"))

        with store.transaction(timeout_seconds=120) as tx:
            tx.insert("projects", {...})

        rows = store.fetch_all("projects", order_by="created_at")

    Attributes:
        db_path: Path to the SQLite database file.
        busy_timeout: Seconds to wait for a competing writer's lock.
        import_lock: Held for the duration of an import.
    """

    def __init__(
        self,
        db_path: Path | str,
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
    ) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self.import_lock = threading.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

    def _init_database(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(CREATE_TABLES_SQL)

            cursor = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()

            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, utc_now_iso()),
                )
                logger.info(f"Initialized database schema version {SCHEMA_VERSION}")
            elif row[0] < SCHEMA_VERSION:
                logger.warning(
                    f"Database schema version {row[0]} is older than "
                    f"expected version {SCHEMA_VERSION}"
                )

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with row factory set and foreign keys enforced.
        """
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout,
            isolation_level=None,  # Autocommit mode, we manage transactions manually
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self, timeout_seconds: float | None = None
    ) -> Generator[Transaction, None, None]:
        """
        Open a write transaction that commits on success and rolls back on
        any exception.

        BEGIN IMMEDIATE takes SQLite's write lock up front, which serializes
        writers across processes as well.

        Args:
            timeout_seconds: Deadline for the whole transaction. Exceeding it
                raises TransactionTimeoutError and rolls back.
        """
        deadline = None
        if timeout_seconds is not None:
            deadline = time.monotonic() + timeout_seconds

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            tx = Transaction(conn, deadline)
            try:
                yield tx
                tx.check_deadline()
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

    def fetch_all(
        self,
        table: str,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        """Read every row of a table as plain dictionaries."""
        sql = f"SELECT * FROM {table}"  # noqa: S608
        if order_by:
            sql += f" ORDER BY {order_by}"
        with self._get_connection() as conn:
            cursor = conn.execute(sql)
            return [dict(row) for row in cursor.fetchall()]

    def fetch_one(self, table: str, row_id: str) -> dict[str, Any] | None:
        """Read a single row by primary key."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT * FROM {table} WHERE id = ?", (row_id,)  # noqa: S608
            )
            row = cursor.fetchone()
            return dict(row) if row else None

    def count_rows(self, table: str) -> int:
        with self._get_connection() as conn:
            (count,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()  # noqa: S608
            return int(count)

    def get_statistics(self) -> dict[str, int]:
        """Row count for every data table, in dependency order."""
        stats = {table: self.count_rows(table) for table in DEPENDENCY_ORDER}
        stats["system_settings"] = self.count_rows("system_settings")
        return stats
