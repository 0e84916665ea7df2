"""
Local persistent store for synced records and the sync checkpoint.

Records are JSON documents keyed by ``(collection, id)``. Change sets are
applied with upsert semantics so re-applying a pulled range after a crash
leaves the store unchanged.
"""

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from rentcache.exceptions import NotFoundError, StorageError
from rentcache.models import COLLECTIONS, ChangeSet

from .database import Database
from .mutation_buffer import UPDATED, MutationBuffer

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class LocalStore:
    """
    Collection store backed by SQLite.

    Reads never touch the network. Writes are serialized by the underlying
    :class:`Database`, so callers need no locking of their own.
    """

    CHECKPOINT_KEY = "last_pulled_at"

    def __init__(self, database: Database, collections: tuple = COLLECTIONS):
        self.database = database
        self.collections = tuple(collections)
        self.mutations = MutationBuffer(database)

    def _check_collection(self, collection: str) -> None:
        if collection not in self.collections:
            raise StorageError(f"Unknown collection: {collection}", collection=collection)

    def get(self, collection: str, record_id: str) -> Record:
        """
        Fetch one record.

        Raises:
            NotFoundError: if no record with that id is stored
        """
        self._check_collection(collection)
        with self.database.reading() as conn:
            row = conn.execute(
                "SELECT payload FROM records WHERE collection = ? AND id = ?",
                (collection, str(record_id))
            ).fetchone()
        if row is None:
            raise NotFoundError(collection, str(record_id))
        return json.loads(row['payload'])

    def query(self, collection: str, predicate: Optional[Callable[[Record], bool]] = None) -> List[Record]:
        """Return the records of a collection, optionally filtered. Order is unspecified."""
        self._check_collection(collection)
        with self.database.reading() as conn:
            rows = conn.execute(
                "SELECT payload FROM records WHERE collection = ?",
                (collection,)
            ).fetchall()
        records = [json.loads(row['payload']) for row in rows]
        if predicate is None:
            return records
        return [record for record in records if predicate(record)]

    def count(self, collection: str) -> int:
        self._check_collection(collection)
        with self.database.reading() as conn:
            return conn.execute(
                "SELECT COUNT(*) AS count FROM records WHERE collection = ?",
                (collection,)
            ).fetchone()['count']

    def _upsert(self, conn: sqlite3.Connection, collection: str, record: Record) -> None:
        if not isinstance(record, dict):
            raise StorageError(f"Record in {collection} is not an object", collection=collection)
        if 'id' not in record or record['id'] in (None, ""):
            raise StorageError(f"Record without id in {collection}", collection=collection)
        conn.execute(
            """
            INSERT INTO records (collection, id, payload, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection, id) DO UPDATE SET
                payload = excluded.payload,
                updated_at = excluded.updated_at
            """,
            (collection, str(record['id']), json.dumps(record), datetime.utcnow().isoformat())
        )

    def _delete(self, conn: sqlite3.Connection, collection: str, record_id: str) -> None:
        conn.execute(
            "DELETE FROM records WHERE collection = ? AND id = ?",
            (collection, str(record_id))
        )

    def _apply_in(self, conn: sqlite3.Connection, collection: str, change_set: ChangeSet) -> None:
        for record in change_set.created:
            self._upsert(conn, collection, record)
        for record in change_set.updated:
            self._upsert(conn, collection, record)
        for record_id in change_set.deleted:
            self._delete(conn, collection, record_id)

    def apply_change_set(self, collection: str, change_set: ChangeSet) -> None:
        """
        Apply one collection's change set atomically.

        Creates and updates are both upserts keyed by id; deleting a missing
        id is a no-op.

        Raises:
            StorageError: on any failure; nothing from the change set is kept.
        """
        self._check_collection(collection)
        with self.database.transaction() as conn:
            self._apply_in(conn, collection, change_set)
        logger.debug(f"Applied {len(change_set)} changes to {collection}")

    def apply_changes(self, changes: Dict[str, ChangeSet]) -> int:
        """
        Apply the change sets of one pull in a single transaction.

        Pending local mutations for every record the pull touches are
        discarded in the same transaction: the server version wins.

        Returns:
            Number of superseded local mutations discarded

        Raises:
            StorageError: on any failure; no collection is modified.
        """
        discarded = 0
        with self.database.transaction() as conn:
            for collection, change_set in changes.items():
                if collection not in self.collections:
                    logger.warning(f"Skipping changes for unknown collection {collection}")
                    continue
                self._apply_in(conn, collection, change_set)
                discarded += self.mutations.discard_for_records_in(conn, collection, change_set.record_ids())
        if discarded:
            logger.info(f"Discarded {discarded} local mutations superseded by the server")
        return discarded

    def write_local(self, collection: str, record: Record, operation: str = UPDATED) -> int:
        """
        Store a local edit and queue it for the next push.

        Returns:
            The ID of the queued mutation
        """
        self._check_collection(collection)
        with self.database.transaction() as conn:
            self._upsert(conn, collection, record)
            return self.mutations.add_in(conn, collection, record, operation)

    def read_checkpoint(self) -> Optional[int]:
        with self.database.reading() as conn:
            row = conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (self.CHECKPOINT_KEY,)
            ).fetchone()
        return None if row is None else row['value']

    def write_checkpoint(self, version: int) -> Optional[int]:
        """
        Durably advance the checkpoint. A lower value than the stored one is ignored.

        Returns:
            The checkpoint stored after the call

        Raises:
            StorageError: if the write fails
        """
        version = int(version)
        with self.database.transaction() as conn:
            row = conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (self.CHECKPOINT_KEY,)
            ).fetchone()
            current = None if row is None else row['value']
            if current is not None and version < current:
                logger.warning(f"Ignoring checkpoint {version} lower than stored {current}")
                return current
            conn.execute(
                """
                INSERT INTO sync_state (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (self.CHECKPOINT_KEY, version)
            )
        return version

    def reset(self) -> None:
        """Drop every record, pending mutation and the checkpoint."""
        with self.database.transaction() as conn:
            conn.execute("DELETE FROM records")
            conn.execute("DELETE FROM pending_mutations")
            conn.execute("DELETE FROM sync_state")
        logger.info("Local store reset")

    def close(self) -> None:
        self.database.close()
