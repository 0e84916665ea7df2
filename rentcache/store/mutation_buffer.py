"""
Durable buffer of local writes that the server has not acknowledged yet.

Mutations are queued together with the local record write, pushed on the
next sync cycle and removed only once the push succeeds. Failed pushes keep
them in place with their retry count and last error.
"""

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List

from rentcache.models import ChangeSet

from .database import Database

CREATED = "created"
UPDATED = "updated"
OPERATIONS = (CREATED, UPDATED)


class MutationBuffer:
    """
    FIFO queue of pending local mutations.

    Methods whose name ends in ``_in`` take the caller's open transaction so
    that queueing or discarding commits together with the record write.
    """

    def __init__(self, database: Database):
        self.database = database

    def add_in(
        self,
        conn: sqlite3.Connection,
        collection: str,
        record: Dict[str, Any],
        operation: str = UPDATED
    ) -> int:
        """
        Queue a mutation inside an open transaction.

        Returns:
            The ID of the inserted mutation
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unsupported local operation: {operation}")
        cursor = conn.execute(
            """
            INSERT INTO pending_mutations (collection, record_id, operation, payload, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (collection, str(record['id']), operation, json.dumps(record), datetime.utcnow().isoformat())
        )
        return cursor.lastrowid

    def discard_for_records_in(
        self,
        conn: sqlite3.Connection,
        collection: str,
        record_ids: Iterable[str]
    ) -> int:
        """
        Drop pending mutations superseded by server versions of the same records.

        Returns:
            Number of mutations discarded
        """
        ids = list(record_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        cursor = conn.execute(
            f"DELETE FROM pending_mutations WHERE collection = ? AND record_id IN ({placeholders})",
            (collection, *ids)
        )
        return cursor.rowcount

    def get_pending(self, collection: str, limit: int = 100) -> List[Dict[str, Any]]:
        """
        Get pending mutations of a collection in FIFO order.

        Args:
            collection: Collection to read
            limit: Maximum number of mutations to return

        Returns:
            List of pending mutation records with id, payload, and metadata
        """
        with self.database.reading() as conn:
            cursor = conn.execute(
                """
                SELECT id, collection, record_id, operation, payload, created_at, retry_count, last_error
                FROM pending_mutations
                WHERE collection = ?
                ORDER BY id ASC
                LIMIT ?
                """,
                (collection, limit)
            )
            return [
                {
                    'id': row['id'],
                    'collection': row['collection'],
                    'record_id': row['record_id'],
                    'operation': row['operation'],
                    'payload': json.loads(row['payload']),
                    'created_at': row['created_at'],
                    'retry_count': row['retry_count'],
                    'last_error': row['last_error']
                }
                for row in cursor.fetchall()
            ]

    @staticmethod
    def to_change_set(pending: List[Dict[str, Any]]) -> ChangeSet:
        """
        Fold pending mutations into one change set, latest write per record.

        A record first created locally stays in ``created`` even when edited
        again before the push.
        """
        latest: Dict[str, Dict[str, Any]] = {}
        created_ids = set()
        for mutation in pending:
            latest[mutation['record_id']] = mutation['payload']
            if mutation['operation'] == CREATED:
                created_ids.add(mutation['record_id'])

        change_set = ChangeSet()
        for record_id, payload in latest.items():
            if record_id in created_ids:
                change_set.created.append(payload)
            else:
                change_set.updated.append(payload)
        return change_set

    def mark_sent(self, mutation_ids: Iterable[int]) -> int:
        """
        Remove acknowledged mutations from the buffer.

        Returns:
            Number of mutations removed
        """
        ids = list(mutation_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self.database.transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM pending_mutations WHERE id IN ({placeholders})",
                ids
            )
            return cursor.rowcount

    def mark_failed(self, mutation_ids: Iterable[int], error: str) -> None:
        """Record a failed push attempt on each mutation."""
        ids = list(mutation_ids)
        if not ids:
            return
        placeholders = ", ".join("?" for _ in ids)
        with self.database.transaction() as conn:
            conn.execute(
                f"""
                UPDATE pending_mutations
                SET retry_count = retry_count + 1,
                    last_error = ?,
                    last_retry_at = ?
                WHERE id IN ({placeholders})
                """,
                (error, datetime.utcnow().isoformat(), *ids)
            )

    def count_pending(self, collection: str = None) -> int:
        """
        Get the count of pending mutations.

        Args:
            collection: Restrict the count to one collection

        Returns:
            Number of pending mutations
        """
        with self.database.reading() as conn:
            if collection is None:
                cursor = conn.execute("SELECT COUNT(*) AS count FROM pending_mutations")
            else:
                cursor = conn.execute(
                    "SELECT COUNT(*) AS count FROM pending_mutations WHERE collection = ?",
                    (collection,)
                )
            return cursor.fetchone()['count']

    def clear(self) -> int:
        """
        Clear all pending mutations.

        Returns:
            Number of mutations deleted
        """
        with self.database.transaction() as conn:
            cursor = conn.execute("DELETE FROM pending_mutations")
            return cursor.rowcount
