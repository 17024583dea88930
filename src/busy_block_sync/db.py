"""
SQLite state persistence: run lock and run history.
"""

import logging
import sqlite3
import time
from pathlib import Path

from busy_block_sync.models import CalendarSyncError
from busy_block_sync.models import SyncAlreadyRunningError
from busy_block_sync.models import SyncStats

logger = logging.getLogger(__name__)


class StateDatabase:
    """Run lock and run history for one (source, target) calendar pair.

    The lock is a SQLite write transaction (``BEGIN IMMEDIATE``) held from
    ``begin_run()`` until ``finish_run()`` commits.  A second process trying
    to start a run meanwhile fails immediately instead of racing the first
    one's deletions.  The lock is released automatically if the holding
    process dies.
    """

    def __init__(self, db_path: Path, source_calendar_id: str, target_calendar_id: str):
        self.db_path = db_path
        self.source_calendar_id = source_calendar_id
        self.target_calendar_id = target_calendar_id
        self.conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the state database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # timeout=0: a held run lock is reported at once, never waited on.
        # isolation_level=None: transactions are managed explicitly below.
        self.conn = sqlite3.connect(str(self.db_path), timeout=0, isolation_level=None)
        self.conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            self._init_schema()
        except sqlite3.OperationalError as e:
            self.close()
            if _is_locked(e):
                raise SyncAlreadyRunningError(
                    f"Another sync run holds the lock on {self.db_path}"
                ) from e
            raise CalendarSyncError(f"Cannot initialise state database {self.db_path}: {e}")

    def _init_schema(self):
        """Create the sync_runs table if it doesn't exist."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_calendar_id TEXT NOT NULL,
                target_calendar_id TEXT NOT NULL,
                strategy TEXT NOT NULL,
                mode TEXT NOT NULL,
                dry_run INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                started_at INTEGER NOT NULL,
                finished_at INTEGER,
                created INTEGER NOT NULL DEFAULT 0,
                updated INTEGER NOT NULL DEFAULT 0,
                deleted INTEGER NOT NULL DEFAULT 0,
                duplicates INTEGER NOT NULL DEFAULT 0,
                orphans INTEGER NOT NULL DEFAULT 0,
                errors INTEGER NOT NULL DEFAULT 0,
                message TEXT
            )
        """)

    @property
    def in_run(self) -> bool:
        return self.conn is not None and self.conn.in_transaction

    def begin_run(self, strategy: str, mode: str, dry_run: bool = False) -> int:
        """Acquire the run lock and record a new 'running' row; returns its id."""
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            if _is_locked(e):
                raise SyncAlreadyRunningError(
                    "Another sync run is in progress "
                    f"({self.source_calendar_id} → {self.target_calendar_id})"
                ) from e
            raise CalendarSyncError(f"Cannot acquire run lock: {e}")

        cursor = self.conn.execute(
            "INSERT INTO sync_runs "
            "(source_calendar_id, target_calendar_id, strategy, mode, dry_run, "
            " status, started_at) "
            "VALUES (?, ?, ?, ?, ?, 'running', ?)",
            (
                self.source_calendar_id,
                self.target_calendar_id,
                strategy,
                mode,
                int(dry_run),
                int(time.time()),
            ),
        )
        logger.debug("Acquired run lock on %s (run %s)", self.db_path, cursor.lastrowid)
        return cursor.lastrowid

    def finish_run(self, run_id: int, stats: SyncStats, status: str, message: str | None = None):
        """Store the run outcome and release the run lock."""
        self.conn.execute(
            "UPDATE sync_runs "
            "SET status = ?, finished_at = ?, created = ?, updated = ?, deleted = ?, "
            "    duplicates = ?, orphans = ?, errors = ?, message = ? "
            "WHERE id = ?",
            (
                status,
                int(time.time()),
                stats.created,
                stats.updated,
                stats.deleted,
                stats.duplicates,
                stats.orphans,
                stats.errors,
                message,
                run_id,
            ),
        )
        self.commit()

    def last_run(self) -> sqlite3.Row | None:
        """Most recent run record for this calendar pair."""
        cursor = self.conn.execute(
            "SELECT * FROM sync_runs "
            "WHERE source_calendar_id = ? AND target_calendar_id = ? "
            "ORDER BY id DESC LIMIT 1",
            (self.source_calendar_id, self.target_calendar_id),
        )
        return cursor.fetchone()

    def commit(self):
        """Commit the open run transaction, releasing the lock."""
        if self.conn and self.conn.in_transaction:
            self.conn.execute("COMMIT")

    def close(self):
        """Close the database connection (an unfinished run is rolled back)."""
        if self.conn:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            self.conn.close()
            self.conn = None


def _is_locked(e: sqlite3.OperationalError) -> bool:
    msg = str(e).lower()
    return "locked" in msg or "busy" in msg


def query_recent_runs(db_path: Path, limit: int = 10) -> list:
    """
    Return the most recent run rows across all calendar pairs, newest first.

    Returns an empty list when the DB file does not exist or has no
    sync_runs table yet.
    """
    if not db_path.exists():
        return []
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        if "sync_runs" not in tables:
            return []
        cursor = conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        return cursor.fetchall()
    finally:
        conn.close()
