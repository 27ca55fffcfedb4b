"""
Migration Ledger for Tidemark
Records which migrations are applied and guards runs with an advisory lock.

This module provides:
- The ledger table: one row per applied migration, grouped by batch
- Ordered scans in true application order
- Batch numbering for migrate-up runs
- A run lock that fails fast when another run is in progress
"""

import json
import logging
import os
import re
import socket
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from ..errors import ConflictError, LockError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "tidemark_migrations"
DEFAULT_BUSY_TIMEOUT = 5.0

# Plain ASCII SQL identifier, safe to interpolate as a table name
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*\Z")


@dataclass
class MigrationRecord:
    """A ledger row for an applied migration."""
    name: str
    batch: int
    applied_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "batch": self.batch,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
        }


class MigrationLedger:
    """
    Migration Ledger - Persistent record of applied migrations

    Pattern: One SQLite table keyed by migration name, plus a sidecar lock file
    Lifetime: Persistent across runs; the ledger is the only authority on
              whether a migration is applied

    Features:
    - Idempotent storage provisioning
    - Insert/delete with invariant checks (ConflictError, NotFoundError)
    - Scans ordered by batch, then insertion sequence
    - Batch numbering
    - Exclusive run lock released on every exit path
    """

    def __init__(self,
                 db_path: Union[str, Path],
                 table: str = DEFAULT_TABLE,
                 lock_path: Optional[Union[str, Path]] = None,
                 busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
                 enable_wal: bool = True):
        """
        Initialize Migration Ledger.

        Args:
            db_path: Path to the SQLite database holding the ledger table
            table: Ledger table name (default: tidemark_migrations)
            lock_path: Sidecar lock database (default: {db_path}.lock)
            busy_timeout: Seconds to wait on a busy ledger database
            enable_wal: Enable WAL mode for the ledger database (default: True)
        """
        if not IDENTIFIER_PATTERN.match(table):
            raise ValueError(f"Invalid ledger table name: {table!r}")

        self.db_path = Path(db_path)
        self.table = table
        self.lock_path = Path(lock_path) if lock_path else self.db_path.with_name(
            self.db_path.name + ".lock"
        )
        self.holder_path = self.lock_path.with_name(self.lock_path.name + ".holder.json")
        self.busy_timeout = busy_timeout
        self._enable_wal = enable_wal

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_storage(self) -> None:
        """Create the ledger table and its index if they do not exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            if self._enable_wal:
                conn.execute("PRAGMA journal_mode=WAL")

            conn.executescript(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    batch INTEGER NOT NULL CHECK (batch > 0),
                    applied_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_{self.table}_order
                    ON {self.table}(batch, id);
            """)

    def applied_records(self) -> List[MigrationRecord]:
        """
        Get every applied migration in application order.

        Within a batch, records follow insertion sequence rather than
        applied_at, so a wall clock stepping backwards cannot reorder them.
        A database or table that does not exist yet reads as empty.

        Returns:
            Records ordered by batch, then insertion sequence, oldest first
        """
        if not self.db_path.exists():
            return []

        with self._connect() as conn:
            if not self._has_table(conn):
                return []
            cursor = conn.execute(f"""
                SELECT name, batch, applied_at FROM {self.table}
                ORDER BY batch ASC, id ASC
            """)
            return [self._row_to_record(row) for row in cursor]

    def _has_table(self, conn: sqlite3.Connection) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (self.table,)
        ).fetchone()
        return row is not None

    def get_record(self, name: str) -> Optional[MigrationRecord]:
        """
        Retrieve a ledger record by migration name.

        Returns:
            MigrationRecord or None if the migration is not applied
        """
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT name, batch, applied_at FROM {self.table} WHERE name = ?",
                (name,)
            ).fetchone()
            return self._row_to_record(row) if row else None

    def is_applied(self, name: str) -> bool:
        """Check whether a migration is currently applied."""
        return self.get_record(name) is not None

    def record_applied(self, name: str, batch: int) -> MigrationRecord:
        """
        Record a migration as applied.

        Args:
            name: Migration name
            batch: Batch number of the run that applied it (>= 1)

        Returns:
            The stored record

        Raises:
            ConflictError: If the migration is already recorded
            ValueError: If batch is not positive
        """
        if batch < 1:
            raise ValueError(f"Batch must be >= 1, got {batch}")

        applied_at = datetime.now(timezone.utc)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO {self.table} (name, batch, applied_at) VALUES (?, ?, ?)",
                    (name, batch, applied_at.isoformat(timespec="microseconds"))
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Migration {name} is already recorded as applied", name=name) from e

        return MigrationRecord(name=name, batch=batch, applied_at=applied_at)

    def remove_record(self, name: str) -> None:
        """
        Delete a migration's ledger record.

        Raises:
            NotFoundError: If the migration is not recorded
        """
        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {self.table} WHERE name = ?", (name,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Migration {name} is not recorded as applied", name=name)

    def latest_batch(self) -> int:
        """Highest batch number in the ledger, or 0 when empty."""
        with self._connect() as conn:
            row = conn.execute(f"SELECT MAX(batch) FROM {self.table}").fetchone()
            return row[0] or 0

    def next_batch(self) -> int:
        """Batch number for the next migrate-up run."""
        return self.latest_batch() + 1

    def count(self) -> int:
        """Number of applied migrations."""
        with self._connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0]

    @contextmanager
    def lock(self) -> Iterator[Dict[str, Any]]:
        """
        Hold the run lock for the duration of the block.

        The lock is an exclusive transaction on a sidecar database opened with
        no busy timeout, so a second holder fails at once and the operating
        system drops the lock if the process dies. While held, the holder's
        details sit in a JSON file next to the lock for lock_holder().

        Yields:
            Holder details (pid, host, acquired_at)

        Raises:
            LockError: If another run holds the lock
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.lock_path, timeout=0, isolation_level=None)
        try:
            try:
                conn.execute("CREATE TABLE IF NOT EXISTS run_lock (id INTEGER PRIMARY KEY)")
                conn.execute("BEGIN EXCLUSIVE")
            except sqlite3.OperationalError as e:
                raise LockError(self._lock_error_message()) from e

            holder = {
                "pid": os.getpid(),
                "host": socket.gethostname(),
                "acquired_at": datetime.now(timezone.utc).isoformat(),
            }
            logger.debug(f"Migration lock acquired by pid {holder['pid']}")
            try:
                self.holder_path.write_text(json.dumps(holder))
                yield holder
            finally:
                self.holder_path.unlink(missing_ok=True)
                conn.execute("ROLLBACK")
                logger.debug("Migration lock released")
        finally:
            conn.close()

    def lock_holder(self) -> Optional[Dict[str, Any]]:
        """
        Report who holds the run lock.

        Returns:
            Holder details (pid, host, acquired_at), or None when the lock is
            free or the holder has not written its details yet
        """
        if not self.holder_path.exists() or not self._lock_is_held():
            return None
        return self._read_holder()

    def _lock_is_held(self) -> bool:
        if not self.lock_path.exists():
            return False

        conn = sqlite3.connect(self.lock_path, timeout=0, isolation_level=None)
        try:
            conn.execute("BEGIN EXCLUSIVE")
            conn.execute("ROLLBACK")
            return False
        except sqlite3.OperationalError:
            return True
        finally:
            conn.close()

    def _read_holder(self) -> Optional[Dict[str, Any]]:
        try:
            return json.loads(self.holder_path.read_text())
        except (OSError, ValueError):
            return None

    def _lock_error_message(self) -> str:
        message = f"Another migration run holds the lock at {self.lock_path}"
        holder = self._read_holder()
        if holder:
            message += (
                f" (pid {holder.get('pid')} on {holder.get('host')}"
                f" since {holder.get('acquired_at')})"
            )
        return message

    @staticmethod
    def _row_to_record(row) -> MigrationRecord:
        return MigrationRecord(
            name=row[0],
            batch=row[1],
            applied_at=datetime.fromisoformat(row[2]) if row[2] else None,
        )

    def __repr__(self) -> str:
        return f"<MigrationLedger: {self.db_path}::{self.table}>"
