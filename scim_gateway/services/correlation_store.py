"""
Correlation Store Service

Maintains the persistent mapping between the gateway's internal ids, the
upstream externalIds and the downstream user ids. This is the only durable
state of the gateway.
"""

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..errors import ConflictError, StorageError
from ..models import CorrelationRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS correlation_records (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    internal_id TEXT NOT NULL UNIQUE,
    upstream_external_id TEXT UNIQUE,
    downstream_id TEXT NOT NULL UNIQUE,
    downstream_user_name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_correlation_user_name
    ON correlation_records(downstream_user_name);
"""

COLUMNS = (
    "internal_id, upstream_external_id, downstream_id, "
    "downstream_user_name, created_at, updated_at"
)


class CorrelationStore:
    """
    Persistent storage for identity correlation records.

    Records live in a single SQLite table. Uniqueness of the internal id, the
    upstream externalId and the downstream id is enforced by UNIQUE
    constraints, so two concurrent creates for the same externalId cannot
    both succeed. A single connection is shared and serialized with a lock.

    Example usage:
        store = CorrelationStore("/data/scim-gateway.db")

        record = store.create(
            internal_id="3f0c...",
            upstream_external_id="00u1a2b3",
            downstream_id="ld-5f2a",
            downstream_user_name="jane@example.com",
        )

        store.find_by_upstream_external_id("00u1a2b3")
        store.update("3f0c...", downstream_user_name="jane.doe@example.com")
        store.delete("3f0c...")
    """

    def __init__(self, database_path):
        """
        Open (and initialize if needed) the correlation database.

        Args:
            database_path: Path to the SQLite file, or ":memory:"
        """
        self.database_path = str(database_path)
        self._lock = threading.Lock()

        if self.database_path != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(
                self.database_path, check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            if self.database_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open correlation store: {e}") from e

        logger.info(f"Correlation store initialized at {self.database_path}")

    def create(
        self,
        internal_id: str,
        upstream_external_id: Optional[str],
        downstream_id: str,
        downstream_user_name: str,
    ) -> CorrelationRecord:
        """
        Insert a new correlation record.

        Raises:
            ConflictError: If the internal id, externalId or downstream id is
                already correlated
            StorageError: On any other database failure
        """
        now = _timestamp()
        with self._lock:
            try:
                self._conn.execute(
                    f"INSERT INTO correlation_records ({COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        internal_id,
                        upstream_external_id,
                        downstream_id,
                        downstream_user_name,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as e:
                logger.warning(f"Correlation conflict for internal id {internal_id}: {e}")
                raise ConflictError(_conflict_detail(str(e))) from e
            except sqlite3.Error as e:
                raise StorageError(f"Failed to create correlation record: {e}") from e

            return self._fetch_one("internal_id", internal_id)

    def find_by_internal_id(self, internal_id: str) -> Optional[CorrelationRecord]:
        with self._lock:
            return self._fetch_one("internal_id", internal_id)

    def find_by_upstream_external_id(self, external_id: str) -> Optional[CorrelationRecord]:
        with self._lock:
            return self._fetch_one("upstream_external_id", external_id)

    def find_by_downstream_id(self, downstream_id: str) -> Optional[CorrelationRecord]:
        with self._lock:
            return self._fetch_one("downstream_id", downstream_id)

    def update(
        self,
        internal_id: str,
        downstream_id: Optional[str] = None,
        downstream_user_name: Optional[str] = None,
    ) -> Optional[CorrelationRecord]:
        """
        Update the mutable fields of a record.

        The upstream externalId is immutable once correlated.

        Returns:
            The updated record, or None if no record has this internal id
        """
        assignments = ["updated_at = ?"]
        values: list = [_timestamp()]
        if downstream_id is not None:
            assignments.append("downstream_id = ?")
            values.append(downstream_id)
        if downstream_user_name is not None:
            assignments.append("downstream_user_name = ?")
            values.append(downstream_user_name)
        values.append(internal_id)

        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"UPDATE correlation_records SET {', '.join(assignments)} WHERE internal_id = ?",
                    values,
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(_conflict_detail(str(e))) from e
            except sqlite3.Error as e:
                raise StorageError(f"Failed to update correlation record: {e}") from e

            if cursor.rowcount == 0:
                return None
            return self._fetch_one("internal_id", internal_id)

    def delete(self, internal_id: str) -> bool:
        """
        Remove a record.

        Returns:
            True if a record was found and deleted, False otherwise
        """
        with self._lock:
            try:
                cursor = self._conn.execute(
                    "DELETE FROM correlation_records WHERE internal_id = ?", (internal_id,)
                )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to delete correlation record: {e}") from e
            return cursor.rowcount > 0

    def list_all(self) -> List[CorrelationRecord]:
        """List all records, most recently created first."""
        with self._lock:
            try:
                rows = self._conn.execute(
                    f"SELECT {COLUMNS} FROM correlation_records ORDER BY seq DESC"
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to list correlation records: {e}") from e
            return [_row_to_record(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.info("Correlation store closed")

    def _fetch_one(self, column: str, value: str) -> Optional[CorrelationRecord]:
        # Caller holds self._lock; column is one of the fixed lookup columns
        try:
            row = self._conn.execute(
                f"SELECT {COLUMNS} FROM correlation_records WHERE {column} = ?", (value,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read correlation record: {e}") from e
        return _row_to_record(row) if row else None


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_record(row: sqlite3.Row) -> CorrelationRecord:
    return CorrelationRecord(
        internal_id=row["internal_id"],
        upstream_external_id=row["upstream_external_id"],
        downstream_id=row["downstream_id"],
        downstream_user_name=row["downstream_user_name"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _conflict_detail(message: str) -> str:
    if "upstream_external_id" in message:
        return "User already exists"
    if "downstream_id" in message:
        return "Downstream user is already linked to another resource"
    return "Correlation record already exists"
