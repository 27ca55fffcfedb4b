"""
Migration Base Types

Defines what a migration is to the engine:
- MigrationBase: optional class-based way to write a migration
- MigrationDefinition: the immutable, validated form every migration takes
  after discovery
- Direction: which of the two operations a plan runs

Pattern:
- Each migration is named ``<YYYYMMDDHHMMSS>_<label>``
- The embedded timestamp is parsed into the sequence key, which alone decides
  ordering
- up() applies the migration forward, down() rolls it back
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from ..errors import DiscoveryError

# Name format: 14-digit timestamp, underscore, non-empty label
NAME_PATTERN = re.compile(r"^(?P<stamp>\d{14})_(?P<label>.+)$")
SEQUENCE_FORMAT = "%Y%m%d%H%M%S"

Operation = Callable[[Any], None]


class Direction(str, Enum):
    """Direction a plan is executed in."""

    FORWARD = "forward"
    BACKWARD = "backward"


def parse_sequence_key(name: str) -> datetime:
    """
    Parse the sequence key embedded in a migration name.

    Args:
        name: Migration name, e.g. "20230513055909_users"

    Returns:
        The embedded timestamp as a datetime

    Raises:
        DiscoveryError: If the name has no valid 14-digit timestamp prefix
    """
    match = NAME_PATTERN.match(name)
    if not match:
        raise DiscoveryError(
            f"Migration name {name!r} must look like 'YYYYMMDDHHMMSS_label'"
        )
    try:
        return datetime.strptime(match.group("stamp"), SEQUENCE_FORMAT)
    except ValueError as e:
        raise DiscoveryError(
            f"Migration name {name!r} has an invalid timestamp: {e}"
        ) from e


class MigrationBase(ABC):
    """
    Abstract base class for class-based migrations.

    A migration file may define exactly one subclass instead of module-level
    up()/down() functions. The migration's name still comes from its file.

    Example:
        class Migration(MigrationBase):
            description = "Add users table"

            def up(self, conn: sqlite3.Connection) -> None:
                conn.execute('''
                    CREATE TABLE users (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL
                    )
                ''')

            def down(self, conn: sqlite3.Connection) -> None:
                conn.execute('DROP TABLE users')
    """

    description: str = ""

    @abstractmethod
    def up(self, conn: Any) -> None:
        """
        Apply the migration forward.

        Args:
            conn: Backend handle inside an open transaction.
                  The caller handles commit/rollback.
        """
        pass

    @abstractmethod
    def down(self, conn: Any) -> None:
        """
        Roll back the migration.

        Args:
            conn: Backend handle inside an open transaction.
                  The caller handles commit/rollback.
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.description}>"


@dataclass(frozen=True)
class MigrationDefinition:
    """A discovered, validated migration."""

    name: str
    sequence_key: datetime
    forward: Operation = field(repr=False, compare=False)
    backward: Operation = field(repr=False, compare=False)
    description: str = ""
    path: Optional[Path] = field(default=None, compare=False)
    checksum: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_functions(cls,
                       name: str,
                       up: Optional[Operation],
                       down: Optional[Operation],
                       description: str = "",
                       path: Optional[Path] = None,
                       checksum: Optional[str] = None) -> "MigrationDefinition":
        """
        Build a definition from a pair of operations.

        Raises:
            DiscoveryError: If the name is malformed or an operation is missing
        """
        sequence_key = parse_sequence_key(name)
        for label, op in (("up", up), ("down", down)):
            if op is None:
                raise DiscoveryError(f"Migration {name} is missing its {label}() operation")
            if not callable(op):
                raise DiscoveryError(f"Migration {name}: {label} is not callable")

        return cls(
            name=name,
            sequence_key=sequence_key,
            forward=up,
            backward=down,
            description=(description or "").strip(),
            path=path,
            checksum=checksum,
        )

    @classmethod
    def from_migration(cls,
                       name: str,
                       migration: MigrationBase,
                       path: Optional[Path] = None,
                       checksum: Optional[str] = None) -> "MigrationDefinition":
        """Build a definition from a MigrationBase instance."""
        return cls.from_functions(
            name,
            migration.up,
            migration.down,
            description=migration.description,
            path=path,
            checksum=checksum,
        )

    def operation(self, direction: Direction) -> Operation:
        """Return the operation that runs in the given direction."""
        return self.forward if direction == Direction.FORWARD else self.backward

    def __str__(self) -> str:
        return self.name
