"""
Migrator facade.

Composes source, ledger, planner and executor into the public operations:
migrate up, migrate down by count, migrate down to a target, plus status and
refresh.

Every mutating operation follows the same order: discover definitions, take
the run lock, read the ledger, plan, execute. Anything that goes wrong before
execution raises without touching the ledger.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple

from .backend import SchemaBackend, SQLiteBackend
from .backup import BackupManager
from .executor import Executor, MigrationResult
from .ledger import MigrationLedger, MigrationRecord
from .migration_base import MigrationDefinition
from .planner import (
    Plan,
    check_ledger,
    out_of_order,
    plan_down_by_count,
    plan_down_to_target,
    plan_up,
)
from .source import MigrationSource

if TYPE_CHECKING:
    from ..config import TidemarkConfig

logger = logging.getLogger(__name__)

APPLIED = "applied"
PENDING = "pending"


@dataclass
class MigrationStatus:
    """State of one known migration."""
    name: str
    state: str
    batch: Optional[int] = None
    applied_at: Optional[datetime] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state,
            "batch": self.batch,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "description": self.description,
        }


class Migrator:
    """
    Migrator - Public entry point of the migration engine

    Example:
        migrator = Migrator(
            MigrationSource("migrations"),
            MigrationLedger("data/app.sqlite3"),
            SQLiteBackend("data/app.sqlite3"),
        )
        result = migrator.migrate_up()
        if not result.success:
            print(f"Stopped at {result.failed_at}: {result.cause.message}")
    """

    def __init__(self,
                 source: MigrationSource,
                 ledger: MigrationLedger,
                 backend: SchemaBackend,
                 backups: Optional[BackupManager] = None,
                 keep_backups: int = 5):
        """
        Initialize Migrator.

        Args:
            source: Where migration definitions come from
            ledger: Record of applied migrations
            backend: Backend the operations run against
            backups: Optional snapshot manager used before mutating runs
            keep_backups: Snapshots to keep when pruning
        """
        self.source = source
        self.ledger = ledger
        self.backend = backend
        self.backups = backups
        self.keep_backups = keep_backups
        self.executor = Executor(backend, ledger)

    @classmethod
    def from_config(cls, config: "TidemarkConfig") -> "Migrator":
        """Build a SQLite-backed migrator from resolved configuration."""
        backups = None
        if config.backup.enabled:
            backups = BackupManager(config.database, config.backup.dir)

        return cls(
            source=MigrationSource(config.migrations_dir),
            ledger=MigrationLedger(
                config.database,
                table=config.ledger_table,
                lock_path=config.lock_path,
                busy_timeout=config.busy_timeout,
            ),
            backend=SQLiteBackend(config.database, busy_timeout=config.busy_timeout),
            backups=backups,
            keep_backups=config.backup.keep,
        )

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self.ledger.lock():
            self.ledger.ensure_storage()
            yield

    def _records(self, definitions: List[MigrationDefinition]) -> List[MigrationRecord]:
        records = self.ledger.applied_records()
        check_ledger(definitions, records)
        return records

    def _execute(self, plan: Plan, batch: Optional[int], dry_run: bool,
                 command: str) -> MigrationResult:
        if len(plan) and not dry_run and self.backups is not None:
            self.backups.create_backup(
                latest_batch=self.ledger.latest_batch(),
                metadata={"command": command, "plan": plan.names},
            )
            self.backups.cleanup_old_backups(self.keep_backups)

        return self.executor.apply(plan, batch=batch, dry_run=dry_run)

    def _up(self, definitions: List[MigrationDefinition], dry_run: bool) -> MigrationResult:
        records = self._records(definitions)
        plan = plan_up(definitions, [r.name for r in records])

        for definition in out_of_order(definitions, records):
            logger.warning(
                f"{definition.name} is older than the newest applied migration; "
                f"applying it out of order"
            )

        if not len(plan):
            logger.info("No migrations to run. Database is up to date.")

        return self._execute(plan, self.ledger.next_batch(), dry_run, "run-pending")

    def _down(self, definitions: List[MigrationDefinition], count: int,
              dry_run: bool) -> MigrationResult:
        records_desc = list(reversed(self._records(definitions)))
        plan = plan_down_by_count(definitions, records_desc, count)
        return self._execute(plan, None, dry_run, "rollback")

    def migrate_up(self, dry_run: bool = False) -> MigrationResult:
        """
        Apply every pending migration in one new batch.

        Raises:
            DiscoveryError: If the source is invalid
            LockError: If another run is in progress
            LedgerDesyncError: If a committed step could not be recorded
        """
        definitions = self.source.discover()
        with self._locked():
            return self._up(definitions, dry_run)

    def migrate_down(self, n: int = 1, dry_run: bool = False) -> MigrationResult:
        """
        Roll back the last ``n`` applied migrations, most recent first.

        Raises:
            ValueError: If n is negative
            InsufficientHistoryError: If fewer than n migrations are applied
            DiscoveryError: If the source is invalid
            LockError: If another run is in progress
            LedgerDesyncError: If a committed step could not be removed
        """
        if n < 0:
            raise ValueError(f"Rollback count must be >= 0, got {n}")

        definitions = self.source.discover()
        with self._locked():
            return self._down(definitions, n, dry_run)

    def migrate_to(self, target: str, dry_run: bool = False) -> MigrationResult:
        """
        Roll back everything applied after ``target``; the target stays applied.

        ``target`` may carry a ``.py`` suffix or a directory part.

        Raises:
            NotFoundError: If the target is not applied
            DiscoveryError: If the source is invalid
            LockError: If another run is in progress
            LedgerDesyncError: If a committed step could not be removed
        """
        name = MigrationSource.resolve_name(target)
        definitions = self.source.discover()
        with self._locked():
            records_desc = list(reversed(self._records(definitions)))
            plan = plan_down_to_target(definitions, records_desc, name)
            return self._execute(plan, None, dry_run, "rollback-to")

    def refresh(self) -> Tuple[MigrationResult, Optional[MigrationResult]]:
        """
        Roll back every applied migration, then apply everything again.

        Both phases run under one lock. The second phase is skipped when the
        first one fails.

        Returns:
            (rollback result, migrate-up result or None)
        """
        definitions = self.source.discover()
        with self._locked():
            down = self._down(definitions, self.ledger.count(), dry_run=False)
            if not down.success:
                return down, None
            return down, self._up(definitions, dry_run=False)

    def pending(self) -> List[str]:
        """Names migrate_up() would apply, in order."""
        definitions = self.source.discover()
        records = self._records(definitions)
        return plan_up(definitions, [r.name for r in records]).names

    def status(self) -> List[MigrationStatus]:
        """
        State of every known migration, in sequence order.

        Read-only: a database without a ledger reports everything pending.

        Raises:
            DiscoveryError: If the source is invalid or the ledger names an
                            unknown migration
        """
        definitions = self.source.discover()
        applied = {r.name: r for r in self._records(definitions)}

        statuses = []
        for definition in definitions:
            record = applied.get(definition.name)
            statuses.append(MigrationStatus(
                name=definition.name,
                state=APPLIED if record else PENDING,
                batch=record.batch if record else None,
                applied_at=record.applied_at if record else None,
                description=definition.description,
            ))
        return statuses
