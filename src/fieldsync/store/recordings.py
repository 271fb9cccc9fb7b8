"""SQLite-backed local store for captured recordings."""

import json
import logging
import sqlite3

from fieldsync.errors import StoreError
from fieldsync.models import OwnerInfo, Recording, RecordingStatus
from fieldsync.store.base import SQLiteStore

logger = logging.getLogger(__name__)


class RecordingStore(SQLiteStore):
    """Durable per-device storage of recordings and their upload status.

    Records survive app restarts. ``update`` is a full upsert keyed by id.

    A record is only ever ``uploading`` while an upload started through this
    store instance is running. Any other ``uploading`` row is the leftover of
    an interrupted attempt and is reset to ``pending`` when read.
    """

    TABLE = "recordings"
    COLUMNS = {
        "appointment_id": "TEXT NOT NULL DEFAULT ''",
        "created_at": "TEXT NOT NULL DEFAULT ''",
        "status": "TEXT NOT NULL DEFAULT 'pending'",
        "artifact": "BLOB",
        "content_type": "TEXT",
        "duration_seconds": "REAL",
        "remote_key": "TEXT",
        "last_error": "TEXT",
        "device_id": "TEXT NOT NULL DEFAULT ''",
        "owner_json": "TEXT",
    }

    def __init__(self, db_path) -> None:
        self._claimed: set[str] = set()
        super().__init__(db_path)

    def _create_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS recordings (
                id TEXT PRIMARY KEY,
                appointment_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                artifact BLOB NOT NULL,
                content_type TEXT,
                duration_seconds REAL,
                remote_key TEXT,
                last_error TEXT,
                device_id TEXT NOT NULL,
                owner_json TEXT
            )
        """)
        self._conn.commit()

    @staticmethod
    def _validate(record: Recording) -> None:
        if record.status == RecordingStatus.UPLOADED and not record.remote_key:
            raise ValueError(f"Recording {record.id} cannot be uploaded without a remote key")

    @staticmethod
    def _params(record: Recording) -> tuple:
        return (
            record.id,
            record.appointment_id,
            record.created_at,
            RecordingStatus(record.status).value,
            sqlite3.Binary(record.artifact),
            record.content_type,
            record.duration_seconds,
            record.remote_key,
            record.last_error,
            record.device_id,
            json.dumps(record.owner.to_dict()) if record.owner else None,
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Recording:
        return Recording(
            id=row["id"],
            appointment_id=row["appointment_id"],
            created_at=row["created_at"],
            status=RecordingStatus(row["status"]),
            artifact=bytes(row["artifact"] or b""),
            content_type=row["content_type"] or "audio/mp4",
            duration_seconds=row["duration_seconds"],
            remote_key=row["remote_key"],
            last_error=row["last_error"],
            device_id=row["device_id"],
            owner=OwnerInfo.from_dict(json.loads(row["owner_json"])) if row["owner_json"] else None,
        )

    def _track(self, record: Recording) -> None:
        if record.status == RecordingStatus.UPLOADING:
            self._claimed.add(record.id)
        else:
            self._claimed.discard(record.id)

    def create(self, record: Recording) -> Recording:
        """Insert a new recording.

        Raises:
            StoreError: If a recording with the same id already exists
        """
        self._validate(record)

        def operation() -> None:
            self._conn.execute(
                """
                INSERT INTO recordings (
                    id, appointment_id, created_at, status, artifact, content_type,
                    duration_seconds, remote_key, last_error, device_id, owner_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._params(record),
            )
            self._conn.commit()

        try:
            self._run(operation)
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            raise StoreError(f"Recording {record.id} already exists") from e
        self._track(record)
        return record

    def update(self, record: Recording) -> Recording:
        """Write the full record, inserting it if missing (last write wins)."""
        self._validate(record)

        def operation() -> None:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO recordings (
                    id, appointment_id, created_at, status, artifact, content_type,
                    duration_seconds, remote_key, last_error, device_id, owner_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._params(record),
            )
            self._conn.commit()

        self._run(operation)
        self._track(record)
        return record

    def _recover(self, record: Recording) -> Recording:
        """Reset an interrupted upload so it is retried rather than trusted."""
        if record.status == RecordingStatus.UPLOADING and record.id not in self._claimed:
            logger.info("Recovering interrupted upload: recording_id=%s", record.id)
            record.status = RecordingStatus.PENDING
            self.update(record)
        return record

    def get_all(self) -> list[Recording]:
        """Return every recording regardless of status, oldest first."""

        def operation() -> list[sqlite3.Row]:
            cursor = self._conn.execute(
                f"SELECT {self._column_list} FROM recordings ORDER BY created_at ASC"
            )
            return cursor.fetchall()

        return [self._recover(self._from_row(row)) for row in self._run(operation)]

    def get(self, record_id: str) -> Recording | None:
        """Return one recording by id, or None."""

        def operation() -> sqlite3.Row | None:
            cursor = self._conn.execute(
                f"SELECT {self._column_list} FROM recordings WHERE id = ?", (record_id,)
            )
            return cursor.fetchone()

        row = self._run(operation)
        return self._recover(self._from_row(row)) if row else None

    def delete_by_id(self, record_id: str) -> bool:
        """Delete a recording and its artifact.

        Returns:
            True if a row was removed
        """

        def operation() -> int:
            cursor = self._conn.execute("DELETE FROM recordings WHERE id = ?", (record_id,))
            self._conn.commit()
            return cursor.rowcount

        removed = self._run(operation)
        self._claimed.discard(record_id)
        return removed > 0

    def get_stats(self) -> dict[str, int]:
        """Get counts by status."""

        def operation() -> list[sqlite3.Row]:
            cursor = self._conn.execute(
                "SELECT status, COUNT(*) AS count FROM recordings GROUP BY status"
            )
            return cursor.fetchall()

        stats = {status.value: 0 for status in RecordingStatus}
        stats["total"] = 0
        for row in self._run(operation):
            stats[row["status"]] = row["count"]
            stats["total"] += row["count"]
        return stats
