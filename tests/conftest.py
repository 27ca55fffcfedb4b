"""Pytest fixtures for Tidemark tests"""
import sqlite3
import sys
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tidemark.migrations import (  # noqa: E402
    MigrationDefinition,
    MigrationLedger,
    MigrationSource,
    Migrator,
    SQLiteBackend,
)

EXAMPLES_DIR = Path(__file__).parent.parent / "examples" / "migrations"


def table_names(db_path: Path) -> set:
    """User tables in a SQLite database, ledger and internals excluded."""
    if not db_path.exists():
        return set()
    conn = sqlite3.connect(db_path)
    try:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' AND name != 'tidemark_migrations'"
        ).fetchall()
    finally:
        conn.close()
    return {row[0] for row in rows}


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Path to a fresh SQLite database."""
    return tmp_path / "data" / "app.sqlite3"


@pytest.fixture
def calls() -> List[Tuple[str, str]]:
    """Shared log of (direction, name) operation calls."""
    return []


@pytest.fixture
def make_definition(calls) -> Callable[..., MigrationDefinition]:
    """Factory for definitions whose up() creates a table named t_<label>.

    fail_up/fail_down make the operation raise after doing its DDL, so tests
    can check that the transaction rolled the DDL back.
    """
    def _make(name: str, fail_up: bool = False, fail_down: bool = False) -> MigrationDefinition:
        table = "t_" + name.split("_", 1)[1]

        def up(conn):
            calls.append(("up", name))
            conn.execute(f"CREATE TABLE {table} (id INTEGER PRIMARY KEY)")
            if fail_up:
                raise RuntimeError(f"{name} up failed")

        def down(conn):
            calls.append(("down", name))
            conn.execute(f"DROP TABLE {table}")
            if fail_down:
                raise RuntimeError(f"{name} down failed")

        return MigrationDefinition.from_functions(name, up, down, description=f"create {table}")

    return _make


@pytest.fixture
def make_migrator(db_path) -> Callable[..., Migrator]:
    """Factory for a SQLite migrator over registered definitions."""
    def _make(definitions: Optional[List[MigrationDefinition]] = None,
              migrations_dir: Optional[Path] = None) -> Migrator:
        source = MigrationSource(migrations_dir)
        for definition in definitions or []:
            source.register(definition)
        return Migrator(source, MigrationLedger(db_path), SQLiteBackend(db_path))

    return _make


@pytest.fixture
def abc(make_definition) -> List[MigrationDefinition]:
    """Definitions A, B, C with sequence keys 1, 2, 3."""
    return [
        make_definition("20240101000001_a"),
        make_definition("20240101000002_b"),
        make_definition("20240101000003_c"),
    ]
