"""
Tidemark Migration Engine

Tracks which versioned schema changes are applied, plans what runs next and
executes it in strict order, one transaction per step.

Key Features:
- Timestamp-ordered migration files with up()/down() operations
- Ledger of applied migrations grouped by batch
- Rollback by count or to a named migration
- Fail-fast execution with exact partial results
- Advisory run lock against concurrent runs
- Optional database snapshot before each mutating run
"""

from .backend import SchemaBackend, SQLiteBackend
from .backup import BackupInfo, BackupManager
from .executor import ErrorDetail, Executor, MigrationResult
from .ledger import MigrationLedger, MigrationRecord
from .migration_base import Direction, MigrationBase, MigrationDefinition
from .migrator import MigrationStatus, Migrator
from .planner import Plan, plan_down_by_count, plan_down_to_target, plan_up
from .source import MigrationSource

__all__ = [
    "BackupInfo",
    "BackupManager",
    "Direction",
    "ErrorDetail",
    "Executor",
    "MigrationBase",
    "MigrationDefinition",
    "MigrationLedger",
    "MigrationRecord",
    "MigrationResult",
    "MigrationSource",
    "MigrationStatus",
    "Migrator",
    "Plan",
    "SchemaBackend",
    "SQLiteBackend",
    "plan_down_by_count",
    "plan_down_to_target",
    "plan_up",
]
