"""
Schema backends for Tidemark

A schema backend runs migration operations inside a transaction. The engine
only needs one thing from it: a transaction scope that commits when the block
exits normally and rolls back when it raises.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, ContextManager, Iterator, Union

logger = logging.getLogger(__name__)


class SchemaBackend(ABC):
    """
    Abstract base class for schema-capable backends.

    transaction() yields the handle passed to a migration's up()/down().
    """

    @abstractmethod
    def transaction(self) -> ContextManager[Any]:
        """
        Open a transaction scope.

        Commits when the block exits normally, rolls back and re-raises when
        it raises.
        """
        pass


class SQLiteBackend(SchemaBackend):
    """
    SQLite schema backend.

    Connections are opened with isolation_level=None and an explicit
    BEGIN IMMEDIATE, so DDL statements are part of the transaction and roll
    back with it. Migrations should use conn.execute(); executescript()
    commits any open transaction first.
    """

    def __init__(self, db_path: Union[str, Path], busy_timeout: float = 5.0):
        """
        Initialize SQLite backend.

        Args:
            db_path: Path to the SQLite database file
            busy_timeout: Seconds to wait for a busy database
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            if conn.in_transaction:
                conn.execute("COMMIT")
            else:
                logger.warning("Migration ended its own transaction; changes were already committed")
        finally:
            conn.close()

    def __repr__(self) -> str:
        return f"<SQLiteBackend: {self.db_path}>"
