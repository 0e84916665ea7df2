"""
SQLite database handle shared by the local store and the mutation buffer.

All writes go through :meth:`Database.transaction`, which serializes callers
with a lock and commits or rolls back as a unit, so readers only ever observe
the state before or after a transaction.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from rentcache.exceptions import StorageError

logger = logging.getLogger(__name__)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS records (
        collection TEXT NOT NULL,
        id TEXT NOT NULL,
        payload TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (collection, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_state (
        key TEXT PRIMARY KEY,
        value INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pending_mutations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        collection TEXT NOT NULL,
        record_id TEXT NOT NULL,
        operation TEXT NOT NULL,
        payload TEXT NOT NULL,
        created_at TEXT NOT NULL,
        retry_count INTEGER DEFAULT 0,
        last_error TEXT,
        last_retry_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_pending_record
    ON pending_mutations(collection, record_id)
    """,
)


class Database:
    """
    SQLite connection manager.

    File databases open a fresh connection per transaction; ``:memory:``
    databases reuse one shared connection so the data outlives the call.
    """

    DEFAULT_DB_PATH = "rentcache.db"

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the database and create the schema if missing.

        Args:
            db_path: Path to the SQLite database file. If None, uses default.
                     Use ":memory:" for in-memory database (useful for testing).
        """
        self.db_path = db_path or self.DEFAULT_DB_PATH
        self._lock = threading.Lock()
        self._is_memory = self.db_path == ":memory:"
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._init_schema()

    def _init_schema(self) -> None:
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    def _get_connection(self) -> sqlite3.Connection:
        if self._is_memory:
            if self._shared_conn is None:
                self._shared_conn = sqlite3.connect(":memory:", check_same_thread=False)
                self._shared_conn.row_factory = sqlite3.Row
            return self._shared_conn

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _release(self, conn: sqlite3.Connection) -> None:
        if not self._is_memory:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements as one transaction.

        Raises:
            StorageError: if SQLite fails; nothing from the block is committed.
        """
        with self._lock:
            try:
                conn = self._get_connection()
            except sqlite3.Error as e:
                raise StorageError(f"Cannot open {self.db_path}: {e}") from e
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.error(f"Transaction rolled back: {e}")
                raise StorageError(str(e)) from e
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._release(conn)

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        """Read-only access; waits for any in-flight transaction to finish."""
        with self._lock:
            try:
                conn = self._get_connection()
            except sqlite3.Error as e:
                raise StorageError(f"Cannot open {self.db_path}: {e}") from e
            try:
                yield conn
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e
            finally:
                self._release(conn)

    def close(self) -> None:
        """Close any open shared connection."""
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None
