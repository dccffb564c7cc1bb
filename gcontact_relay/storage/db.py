"""
SQLite storage for the shared buffer and the run log.

Both parties open the same database file (on a shared filesystem). The
buffer table holds one row per published record; the run log holds one row
per run and is trimmed to a configured number of rows.
"""

import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from gcontact_relay.sync.record import BufferRow, RowStatus
from gcontact_relay.sync.stats import RunLogEntry

logger = logging.getLogger(__name__)

# SQL Schema for the buffer and run log tables
SCHEMA = """
CREATE TABLE IF NOT EXISTS buffer_rows (
    id INTEGER PRIMARY KEY,
    fingerprint TEXT NOT NULL,
    source TEXT NOT NULL,
    data TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT '',
    hash TEXT NOT NULL DEFAULT '',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(fingerprint)
);

CREATE INDEX IF NOT EXISTS idx_buffer_rows_source ON buffer_rows(source);

CREATE TABLE IF NOT EXISTS run_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    account TEXT NOT NULL,
    direction TEXT NOT NULL,
    pushed INTEGER NOT NULL DEFAULT 0,
    new INTEGER NOT NULL DEFAULT 0,
    merged INTEGER NOT NULL DEFAULT 0,
    failed INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT ''
);
"""


class BufferDatabase:
    """
    SQLite implementation of the buffer and run log collaborators.

    Usage:
        db = BufferDatabase('/path/to/buffer.db', log_retention_rows=500)
        db.initialize()

        rows = db.read_all()
        db.upsert(row.fingerprint, row)
        db.mark_consumed(row.fingerprint)

        # Or use in-memory for testing:
        db = BufferDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str, log_retention_rows: int = 500):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
            log_retention_rows: Run log rows kept after each append
                (0 keeps every row)
        """
        self.db_path = str(db_path)
        self.log_retention_rows = log_retention_rows
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection to ensure
        schema persists across operations. For file databases, creates
        a new connection each time.

        Returns:
            sqlite3.Connection: Database connection
        """
        if self.db_path == ":memory:":
            # For in-memory, use shared connection so schema persists
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(
                    ":memory:", check_same_thread=False
                )
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection
        else:
            # Waits for the other party's write transaction instead of failing
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection

        Usage:
            with db.connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT * FROM buffer_rows")
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            # Only close if not using shared connection
            if not is_shared:
                conn.close()

    def initialize(self) -> None:
        """Create the buffer_rows and run_log tables if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # =========================================================================
    # Buffer Operations
    # =========================================================================

    def read_all(self) -> list[BufferRow]:
        """
        Read every buffer row, in insertion order.

        Returns:
            List of BufferRow
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT fingerprint, source, data, status, hash
                FROM buffer_rows
                ORDER BY id
                """
            )
            return [
                BufferRow.from_list(
                    [r["fingerprint"], r["source"], r["data"], r["status"], r["hash"]]
                )
                for r in cursor.fetchall()
            ]

    def upsert(self, fingerprint: str, row: BufferRow) -> None:
        """
        Insert a row, or overwrite the row with the same fingerprint in place.

        Args:
            fingerprint: Key of the row to write
            row: New row contents
        """
        now = datetime.now(timezone.utc).isoformat()
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO buffer_rows
                    (fingerprint, source, data, status, hash, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(fingerprint) DO UPDATE SET
                    source = excluded.source,
                    data = excluded.data,
                    status = excluded.status,
                    hash = excluded.hash,
                    updated_at = excluded.updated_at
                """,
                (
                    fingerprint,
                    row.source,
                    row.data,
                    row.status.value,
                    row.hash,
                    now,
                ),
            )

    def mark_consumed(self, fingerprint: str) -> None:
        """
        Set a row's status to Consumed.

        Args:
            fingerprint: Key of the row

        Raises:
            KeyError: If no row has this fingerprint
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE buffer_rows SET status = ?, updated_at = ? "
                "WHERE fingerprint = ?",
                (
                    RowStatus.CONSUMED.value,
                    datetime.now(timezone.utc).isoformat(),
                    fingerprint,
                ),
            )
            if cursor.rowcount == 0:
                raise KeyError(f"No buffer row with fingerprint {fingerprint!r}")

    def get_status_counts(self) -> dict[str, dict[str, int]]:
        """
        Count Pending and Consumed rows per source party.

        Returns:
            Mapping of source -> {"pending": n, "consumed": n}
        """
        counts: dict[str, dict[str, int]] = {}
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT source, status, COUNT(*) AS n FROM buffer_rows "
                "GROUP BY source, status"
            )
            for r in cursor.fetchall():
                entry = counts.setdefault(r["source"], {"pending": 0, "consumed": 0})
                key = "consumed" if r["status"] == RowStatus.CONSUMED.value else "pending"
                entry[key] += r["n"]
        return counts

    # =========================================================================
    # Run Log Operations
    # =========================================================================

    def append(self, entry: RunLogEntry) -> None:
        """
        Append a run log row and trim the log to the retention limit.

        Args:
            entry: Run log entry to record
        """
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO run_log
                    (timestamp, account, direction, pushed, new, merged, failed, errors)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                entry.as_list(),
            )
            if self.log_retention_rows > 0:
                cursor = conn.execute(
                    """
                    DELETE FROM run_log WHERE id NOT IN (
                        SELECT id FROM run_log ORDER BY id DESC LIMIT ?
                    )
                    """,
                    (self.log_retention_rows,),
                )
                if cursor.rowcount > 0:
                    logger.debug(f"Trimmed {cursor.rowcount} old run log rows")

    def get_run_log(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """
        Get run log rows, newest first.

        Args:
            limit: Maximum number of rows to return (all if None)

        Returns:
            List of dictionaries keyed by run log column
        """
        query = (
            "SELECT timestamp, account, direction, pushed, new, merged, failed, "
            "errors FROM run_log ORDER BY id DESC"
        )
        params: tuple[int, ...] = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)

        with self.connection() as conn:
            cursor = conn.execute(query, params)
            return [dict(r) for r in cursor.fetchall()]

    def get_run_log_count(self) -> int:
        """Number of rows currently in the run log."""
        with self.connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM run_log")
            result = cursor.fetchone()
            return result[0] if result else 0
