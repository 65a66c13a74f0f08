"""SQLite database layer for relstore.

SqliteDatabase wraps one sqlite3 connection and is the only place that talks
to the engine. Stores borrow it; they never open or close connections
themselves. All statements use parameterized placeholders; identifiers are
validated and quoted by relstore.mapping.quote_identifier.

Every unit of work runs inside transaction(): commit on success, rollback on
any exception, cursor closed on every exit path. sqlite3 failures surface
as StorageError with the driver exception chained as __cause__.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Sequence

from .errors import StorageError, ValidationError
from .mapping import quote_identifier

logger = logging.getLogger(__name__)

_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}


class SqliteDatabase:
    """Manages a SQLite database file and its connection."""

    # Directory used by SqliteDatabase.named(); tests redirect it
    base_dir = str(Path.home() / ".relstore" / "data")

    def __init__(
        self,
        db_path: str,
        journal_mode: str = "WAL",
        foreign_keys: bool = True,
        timeout: float = 5.0,
    ):
        """Open a database connection.

        Args:
            db_path: Path to the database file, or ":memory:"
            journal_mode: SQLite journal mode (WAL by default)
            foreign_keys: Enforce foreign key constraints
            timeout: Seconds to wait on a locked database
        """
        journal_mode = journal_mode.upper()
        if journal_mode not in _JOURNAL_MODES:
            raise ValidationError(f"Unknown journal mode: {journal_mode}")

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        try:
            self.conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row

        # The first statement is where a non-SQLite file is detected
        try:
            self.conn.execute(f"PRAGMA journal_mode={journal_mode}")
            self.conn.execute(f"PRAGMA foreign_keys={'ON' if foreign_keys else 'OFF'}")
        except sqlite3.Error as e:
            self.conn.close()
            raise StorageError(f"Cannot open database {db_path}: {e}") from e
        logger.debug("Opened %s (journal_mode=%s)", db_path, journal_mode)

    @classmethod
    def named(cls, name: str, **kwargs) -> "SqliteDatabase":
        """Open <base_dir>/<name>.db."""
        if not name or Path(name).name != name:
            raise ValidationError(f"Invalid database name: {name!r}")
        return cls(str(Path(cls.base_dir) / f"{name}.db"), **kwargs)

    @property
    def db_file_path(self) -> str:
        return self.db_path

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Scope one unit of work.

        Yields a cursor. Commits when the block exits normally and rolls back
        when it raises. sqlite3 errors are re-raised as StorageError; any
        other exception propagates unchanged after the rollback.
        """
        cursor = self.conn.cursor()
        try:
            with self.conn:
                yield cursor
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            cursor.close()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run one statement in its own transaction.

        Returns:
            Number of rows affected
        """
        with self.transaction() as cursor:
            cursor.execute(sql, params)
            return cursor.rowcount

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Run a SELECT and return all rows."""
        cursor = self.conn.cursor()
        try:
            cursor.execute(sql, params)
            return cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            cursor.close()

    def transact_ddl(self, sql: str) -> None:
        """Run one or more DDL statements atomically.

        sqlite3's executescript() commits on its own, so the script is split
        into complete statements and executed inside one transaction.
        """
        statements = []
        buffer = ""
        for line in sql.splitlines(keepends=True):
            buffer += line
            if sqlite3.complete_statement(buffer):
                statements.append(buffer.strip())
                buffer = ""
        if buffer.strip():
            # Trailing statement without a semicolon
            statements.append(buffer.strip())

        with self.transaction() as cursor:
            if not self.conn.in_transaction:
                cursor.execute("BEGIN")
            for stmt in statements:
                cursor.execute(stmt)
        logger.debug("Applied %d DDL statements to %s", len(statements), self.db_path)

    def try_drop_table(self, table: str) -> bool:
        """Drop a table if it exists.

        Returns:
            True if a table was dropped, False if it did not exist
        """
        if not self.table_exists(table):
            return False
        self.execute(f"DROP TABLE {quote_identifier(table)}")
        logger.debug("Dropped table %s", table)
        return True

    def table_exists(self, table: str) -> bool:
        rows = self.query(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ? COLLATE NOCASE",
            (table,)
        )
        return bool(rows)

    def table_names(self) -> List[str]:
        """List user tables, excluding SQLite's internal ones."""
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row["name"] for row in rows]

    def table_columns(self, table: str) -> List[str]:
        rows = self.query(f"PRAGMA table_info({quote_identifier(table)})")
        return [row["name"] for row in rows]

    def uses_autoincrement(self, table: str) -> bool:
        """Whether the table was declared with AUTOINCREMENT.

        Only AUTOINCREMENT tables guarantee that deleted ids are never
        handed out again.
        """
        rows = self.query(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ? COLLATE NOCASE",
            (table,)
        )
        return bool(rows) and "AUTOINCREMENT" in (rows[0]["sql"] or "").upper()

    def close(self):
        """Close the database connection."""
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
