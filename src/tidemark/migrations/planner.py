"""
Migration planning.

Pure functions: given the discovered definitions and the ledger's records,
compute which migrations run and in what order. Nothing here does I/O, so a
planning error can never leave the ledger half-changed.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from ..errors import DiscoveryError, InsufficientHistoryError, NotFoundError
from .ledger import MigrationRecord
from .migration_base import Direction, MigrationDefinition


@dataclass(frozen=True)
class Plan:
    """Ordered migrations paired with the direction to run them in."""

    direction: Direction
    steps: Tuple[MigrationDefinition, ...] = ()

    @property
    def names(self) -> List[str]:
        return [step.name for step in self.steps]

    def __iter__(self) -> Iterator[MigrationDefinition]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)


def _index(definitions: Iterable[MigrationDefinition]) -> Dict[str, MigrationDefinition]:
    return {definition.name: definition for definition in definitions}


def check_ledger(definitions: Sequence[MigrationDefinition],
                 applied_records: Iterable[MigrationRecord]) -> None:
    """
    Ensure every applied migration still has a definition.

    Raises:
        DiscoveryError: If the ledger names a migration the source lacks
    """
    known = _index(definitions)
    missing = [record.name for record in applied_records if record.name not in known]
    if missing:
        raise DiscoveryError(
            f"Applied migration(s) missing from the source: {', '.join(missing)}"
        )


def out_of_order(definitions: Sequence[MigrationDefinition],
                 applied_records: Sequence[MigrationRecord]) -> List[MigrationDefinition]:
    """Pending definitions that sort before the newest applied migration."""
    known = _index(definitions)
    applied_keys = [known[r.name].sequence_key for r in applied_records if r.name in known]
    if not applied_keys:
        return []

    newest = max(applied_keys)
    applied_names = {r.name for r in applied_records}
    return [
        d for d in definitions
        if d.name not in applied_names and d.sequence_key < newest
    ]


def plan_up(definitions: Sequence[MigrationDefinition],
            applied_names: Iterable[str]) -> Plan:
    """
    Plan applying every pending migration.

    Args:
        definitions: All known definitions
        applied_names: Names currently in the ledger

    Returns:
        Forward plan of unapplied definitions, ascending by sequence key
    """
    applied = set(applied_names)
    pending = sorted(
        (d for d in definitions if d.name not in applied),
        key=lambda d: d.sequence_key,
    )
    return Plan(Direction.FORWARD, tuple(pending))


def _map_records(definitions: Sequence[MigrationDefinition],
                 records: Iterable[MigrationRecord]) -> Tuple[MigrationDefinition, ...]:
    known = _index(definitions)
    steps = []
    for record in records:
        if record.name not in known:
            raise DiscoveryError(f"Applied migration {record.name} is missing from the source")
        steps.append(known[record.name])
    return tuple(steps)


def plan_down_by_count(definitions: Sequence[MigrationDefinition],
                       applied_records_desc: Sequence[MigrationRecord],
                       n: int) -> Plan:
    """
    Plan rolling back the last ``n`` applied migrations.

    Args:
        definitions: All known definitions
        applied_records_desc: Ledger records, most recently applied first
        n: Number of migrations to roll back (>= 0)

    Raises:
        ValueError: If n is negative
        InsufficientHistoryError: If n exceeds the applied history
    """
    if n < 0:
        raise ValueError(f"Rollback count must be >= 0, got {n}")
    if n > len(applied_records_desc):
        raise InsufficientHistoryError(n, len(applied_records_desc))

    return Plan(Direction.BACKWARD, _map_records(definitions, applied_records_desc[:n]))


def plan_down_to_target(definitions: Sequence[MigrationDefinition],
                        applied_records_desc: Sequence[MigrationRecord],
                        target_name: str) -> Plan:
    """
    Plan rolling back everything applied after ``target_name``.

    The target itself stays applied.

    Raises:
        NotFoundError: If the target is not an applied migration
    """
    for position, record in enumerate(applied_records_desc):
        if record.name == target_name:
            return Plan(
                Direction.BACKWARD,
                _map_records(definitions, applied_records_desc[:position]),
            )

    raise NotFoundError(f"Migration {target_name} is not applied", name=target_name)
