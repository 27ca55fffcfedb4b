"""
Tidemark - schema migrations with a ledger
"Every change recorded where the water reached."

Applies timestamp-ordered migrations one transaction at a time, records each
in a batch-grouped ledger, and rolls back by count or to a named migration.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .errors import (
    ConfigError,
    ConflictError,
    DiscoveryError,
    InsufficientHistoryError,
    LedgerDesyncError,
    LockError,
    MigrationError,
    NotFoundError,
    OperationError,
)
from .migrations import (
    Direction,
    MigrationBase,
    MigrationDefinition,
    MigrationLedger,
    MigrationResult,
    MigrationSource,
    Migrator,
    SQLiteBackend,
)
from .config import TidemarkConfig, load_config

__all__ = [
    "__version__",
    "ConfigError",
    "ConflictError",
    "Direction",
    "DiscoveryError",
    "InsufficientHistoryError",
    "LedgerDesyncError",
    "LockError",
    "MigrationBase",
    "MigrationDefinition",
    "MigrationError",
    "MigrationLedger",
    "MigrationResult",
    "MigrationSource",
    "Migrator",
    "NotFoundError",
    "OperationError",
    "SQLiteBackend",
    "TidemarkConfig",
    "load_config",
]
