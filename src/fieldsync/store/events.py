"""SQLite-backed outbound queue of status events."""

import json
import sqlite3

from fieldsync.models import EventStatus, OwnerInfo, StatusEvent, utc_now_iso
from fieldsync.store.base import SQLiteStore


class StatusEventStore(SQLiteStore):
    """Persistent append-only queue of status events.

    Events are queued locally whatever the connectivity and delivered in
    insertion order by the dispatcher. A completed event is never reopened.
    """

    TABLE = "status_events"
    COLUMNS = {
        "appointment_id": "TEXT NOT NULL DEFAULT ''",
        "event_type": "TEXT NOT NULL DEFAULT ''",
        "status_value": "TEXT NOT NULL DEFAULT ''",
        "occurred_at": "TEXT NOT NULL DEFAULT ''",
        "created_at": "TEXT NOT NULL DEFAULT ''",
        "status": "TEXT NOT NULL DEFAULT 'pending'",
        "completed_at": "TEXT",
        "owner_json": "TEXT",
    }
    INDEXES = (
        "CREATE INDEX IF NOT EXISTS idx_status_events_status ON status_events (status)",
    )

    def _create_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS status_events (
                id TEXT PRIMARY KEY,
                appointment_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                status_value TEXT NOT NULL,
                occurred_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                completed_at TEXT,
                owner_json TEXT
            )
        """)
        self._conn.commit()

    @staticmethod
    def _from_row(row: sqlite3.Row) -> StatusEvent:
        return StatusEvent(
            id=row["id"],
            appointment_id=row["appointment_id"],
            event_type=row["event_type"],
            status_value=row["status_value"],
            occurred_at=row["occurred_at"],
            created_at=row["created_at"],
            status=EventStatus(row["status"]),
            completed_at=row["completed_at"],
            owner=OwnerInfo.from_dict(json.loads(row["owner_json"])) if row["owner_json"] else None,
        )

    def queue(self, event: StatusEvent) -> StatusEvent:
        """Append an event in ``pending`` state.

        Args:
            event: Event to store; its status is forced to pending

        Returns:
            The stored event
        """
        event.status = EventStatus.PENDING
        event.completed_at = None

        def operation() -> None:
            self._conn.execute(
                """
                INSERT INTO status_events (
                    id, appointment_id, event_type, status_value, occurred_at,
                    created_at, status, owner_json
                ) VALUES (?, ?, ?, ?, ?, ?, 'pending', ?)
                """,
                (
                    event.id,
                    event.appointment_id,
                    event.event_type,
                    event.status_value,
                    event.occurred_at,
                    event.created_at,
                    json.dumps(event.owner.to_dict()) if event.owner else None,
                ),
            )
            self._conn.commit()

        self._run(operation)
        return event

    def get_pending(self) -> list[StatusEvent]:
        """Get pending events, oldest first (insertion order)."""

        def operation() -> list[sqlite3.Row]:
            cursor = self._conn.execute(
                f"SELECT {self._column_list} FROM status_events "
                "WHERE status = 'pending' ORDER BY rowid ASC"
            )
            return cursor.fetchall()

        return [self._from_row(row) for row in self._run(operation)]

    def get_all(self) -> list[StatusEvent]:
        """Get every event in insertion order."""

        def operation() -> list[sqlite3.Row]:
            cursor = self._conn.execute(
                f"SELECT {self._column_list} FROM status_events ORDER BY rowid ASC"
            )
            return cursor.fetchall()

        return [self._from_row(row) for row in self._run(operation)]

    def mark_completed(self, event_id: str) -> bool:
        """Mark a pending event completed.

        Returns:
            True if the event was pending and is now completed
        """

        def operation() -> int:
            cursor = self._conn.execute(
                """
                UPDATE status_events
                SET status = 'completed', completed_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (utc_now_iso(), event_id),
            )
            self._conn.commit()
            return cursor.rowcount

        return self._run(operation) > 0

    def delete(self, event_id: str) -> bool:
        """Hard-delete one event."""

        def operation() -> int:
            cursor = self._conn.execute("DELETE FROM status_events WHERE id = ?", (event_id,))
            self._conn.commit()
            return cursor.rowcount

        return self._run(operation) > 0

    def clear_pending(self) -> int:
        """Discard every pending event (manual queue reset).

        Returns:
            Number of events removed
        """

        def operation() -> int:
            cursor = self._conn.execute("DELETE FROM status_events WHERE status = 'pending'")
            self._conn.commit()
            return cursor.rowcount

        return self._run(operation)

    def clear_all(self) -> int:
        """Remove every event, completed ones included."""

        def operation() -> int:
            cursor = self._conn.execute("DELETE FROM status_events")
            self._conn.commit()
            return cursor.rowcount

        return self._run(operation)

    def get_stats(self) -> dict[str, int]:
        """Get counts by status."""

        def operation() -> list[sqlite3.Row]:
            cursor = self._conn.execute(
                "SELECT status, COUNT(*) AS count FROM status_events GROUP BY status"
            )
            return cursor.fetchall()

        stats = {"pending": 0, "completed": 0, "total": 0}
        for row in self._run(operation):
            stats[row["status"]] = row["count"]
            stats["total"] += row["count"]
        return stats
