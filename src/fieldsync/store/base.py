"""SQLite store base with additive schema migration."""

import logging
import sqlite3
from pathlib import Path
from typing import Callable, TypeVar

from fieldsync.errors import StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_missing_schema(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return any(
        marker in message for marker in ("no such table", "no such column", "has no column named")
    )


class SQLiteStore:
    """Durable per-device table backed by a single SQLite file.

    Subclasses define ``_create_schema`` and list in ``COLUMNS`` every column
    besides the primary key, with the definition used to add it to a table
    written by an older app version. The schema is brought up to date when
    the store opens, and again if an operation reports a missing table or
    column; the operation is then retried exactly once before the error is
    surfaced. Migration only ever adds, so existing rows are kept.
    """

    TABLE: str = ""
    COLUMNS: dict[str, str] = {}
    INDEXES: tuple[str, ...] = ()

    def __init__(self, db_path: Path) -> None:
        """Open (and create or migrate if needed) the store.

        Args:
            db_path: Path to the SQLite database file

        Raises:
            StoreError: If the schema cannot be brought up to date
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        try:
            self._migrate_schema()
        except sqlite3.Error as e:
            raise StoreError(f"{self.TABLE}: cannot prepare schema: {e}") from e

    def _create_schema(self) -> None:
        raise NotImplementedError

    @property
    def _column_list(self) -> str:
        return ", ".join(["id", *self.COLUMNS])

    def _existing_columns(self) -> set[str]:
        rows = self._conn.execute(f"PRAGMA table_info({self.TABLE})").fetchall()
        return {row["name"] for row in rows}

    def _migrate_schema(self) -> None:
        """Create the table if missing and add the columns it lacks."""
        self._create_schema()
        existing = self._existing_columns()
        for name, definition in self.COLUMNS.items():
            if name not in existing:
                logger.warning("Adding missing column: table=%s, column=%s", self.TABLE, name)
                self._conn.execute(f"ALTER TABLE {self.TABLE} ADD COLUMN {name} {definition}")
        for statement in self.INDEXES:
            self._conn.execute(statement)
        self._conn.commit()

    def _heal_schema(self) -> None:
        self._conn.rollback()
        self._migrate_schema()

    def _run(self, operation: Callable[[], T]) -> T:
        """Run a storage operation, healing a missing schema once."""
        try:
            return operation()
        except sqlite3.OperationalError as e:
            if not _is_missing_schema(e):
                raise StoreError(f"{self.TABLE}: {e}") from e
            logger.warning("Schema incomplete for %s, migrating: %s", self.TABLE, e)

        try:
            self._heal_schema()
            return operation()
        except sqlite3.Error as e:
            raise StoreError(f"{self.TABLE} still failing after schema migration: {e}") from e

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
