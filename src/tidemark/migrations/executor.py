"""
Migration executor.

Runs a plan one step at a time. Each step is its own transaction on the
schema backend; once it commits, the ledger is updated before the next step
starts. The first failing operation stops the run.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import LedgerDesyncError, OperationError
from .backend import SchemaBackend
from .ledger import MigrationLedger
from .migration_base import Direction
from .planner import Plan

logger = logging.getLogger(__name__)


@dataclass
class ErrorDetail:
    """Serializable description of why a run stopped."""

    type: str
    message: str
    migration: Optional[str] = None
    original_type: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException,
                       migration: Optional[str] = None) -> "ErrorDetail":
        original = getattr(exc, "original", None)
        return cls(
            type=type(exc).__name__,
            message=str(exc),
            migration=migration if migration is not None else getattr(exc, "name", None),
            original_type=type(original).__name__ if original is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "migration": self.migration,
            "original_type": self.original_type,
        }


@dataclass
class MigrationResult:
    """Outcome of a migration run.

    ``completed`` lists, in execution order, exactly the steps whose change
    committed and whose ledger update succeeded.
    """

    success: bool
    direction: Direction
    completed: List[str] = field(default_factory=list)
    failed_at: Optional[str] = None
    cause: Optional[ErrorDetail] = None
    batch: Optional[int] = None
    dry_run: bool = False
    durations_ms: Dict[str, int] = field(default_factory=dict)
    error: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_error(cls, direction: Direction, exc: BaseException) -> "MigrationResult":
        """Result for a run that stopped before executing anything."""
        return cls(
            success=False,
            direction=direction,
            cause=ErrorDetail.from_exception(exc),
            error=exc,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the machine-readable result object."""
        return {
            "success": self.success,
            "direction": self.direction.value,
            "completed": list(self.completed),
            "failed_at": self.failed_at,
            "cause": self.cause.to_dict() if self.cause else None,
            "batch": self.batch,
            "dry_run": self.dry_run,
            "durations_ms": dict(self.durations_ms),
        }


class Executor:
    """Applies plans against a schema backend and keeps the ledger in step."""

    def __init__(self, backend: SchemaBackend, ledger: MigrationLedger):
        self.backend = backend
        self.ledger = ledger

    def apply(self, plan: Plan, batch: Optional[int] = None,
              dry_run: bool = False) -> MigrationResult:
        """
        Execute a plan sequentially.

        Args:
            plan: Steps and direction from the planner
            batch: Batch number for forward plans
            dry_run: Report the plan without running or recording anything

        Returns:
            Result of the run; success is False when an operation failed

        Raises:
            LedgerDesyncError: If a committed step could not be recorded
        """
        forward = plan.direction == Direction.FORWARD
        if forward and len(plan) and batch is None:
            raise ValueError("A forward plan needs a batch number")

        prefix = "[DRY-RUN] " if dry_run else ""
        result = MigrationResult(
            success=True,
            direction=plan.direction,
            batch=batch if forward else None,
            dry_run=dry_run,
        )

        for definition in plan:
            name = definition.name

            if dry_run:
                logger.info(f"{prefix}Would {'apply' if forward else 'roll back'} {name}")
                result.completed.append(name)
                continue

            logger.info(f"{'Applying' if forward else 'Rolling back'} {name}...")
            start_time = time.time()

            try:
                with self.backend.transaction() as conn:
                    definition.operation(plan.direction)(conn)
            except Exception as e:
                error = OperationError(name, plan.direction.value, e)
                error.__cause__ = e
                logger.error(f"Failed to {'apply' if forward else 'roll back'} {name}: {e}")

                result.success = False
                result.failed_at = name
                result.cause = ErrorDetail.from_exception(error, name)
                result.error = error
                break

            elapsed_ms = int((time.time() - start_time) * 1000)

            try:
                if forward:
                    self.ledger.record_applied(name, batch)
                else:
                    self.ledger.remove_record(name)
            except Exception as e:
                logger.critical(
                    f"{name} committed but the ledger update failed: {e}. "
                    f"Schema and ledger have diverged; manual repair required."
                )
                error = LedgerDesyncError(
                    f"{name} was committed but could not be "
                    f"{'recorded in' if forward else 'removed from'} the ledger: {e}",
                    name=name,
                )
                result.success = False
                result.failed_at = name
                result.cause = ErrorDetail.from_exception(error, name)
                result.error = error
                error.result = result
                raise error from e

            result.completed.append(name)
            result.durations_ms[name] = elapsed_ms
            logger.info(f"{'Applied' if forward else 'Rolled back'} {name} in {elapsed_ms}ms")

        if forward and not result.completed:
            result.batch = None

        return result
