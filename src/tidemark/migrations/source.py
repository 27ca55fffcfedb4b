"""
Migration Source for Tidemark

Discovers migration definitions and returns them as one ordered, validated
list.

Features:
- Discovery of migration files from a migrations directory
- Module-level up()/down() functions or a single MigrationBase subclass
- Validation: unique names, parseable and unique sequence keys, both
  operations present
- Manual registration for embedding and testing
"""

import hashlib
import importlib.util
import inspect
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..errors import DiscoveryError
from .migration_base import MigrationBase, MigrationDefinition, parse_sequence_key

logger = logging.getLogger(__name__)

# Suffix users may paste after a migration name (a file name instead of a name)
DECORATIVE_SUFFIX = ".py"


class MigrationSource:
    """
    Migration Source - Discovers and validates available migrations

    Pattern: File discovery from a migrations directory plus manual registration
    Lifetime: Created per engine; discover() re-reads the directory each call

    Example:
        source = MigrationSource(Path("migrations"))
        for definition in source.discover():
            print(definition.name)
    """

    def __init__(self, migrations_dir: Optional[Union[str, Path]] = None):
        """
        Initialize Migration Source.

        Args:
            migrations_dir: Directory holding migration files. None means only
                            manually registered definitions are used.
        """
        self.migrations_dir = Path(migrations_dir) if migrations_dir else None
        self._registered: Dict[str, MigrationDefinition] = {}

    def register(self, definition: MigrationDefinition) -> None:
        """
        Manually register a migration definition.

        Raises:
            DiscoveryError: If a definition with the same name is registered
        """
        if definition.name in self._registered:
            raise DiscoveryError(f"Duplicate migration name: {definition.name}")
        self._registered[definition.name] = definition

    def discover(self) -> List[MigrationDefinition]:
        """
        Discover every migration, ordered by sequence key.

        Raises:
            DiscoveryError: On a malformed, duplicated or incomplete definition
        """
        definitions = list(self._registered.values())
        definitions.extend(self._load_directory())

        seen: Dict[str, MigrationDefinition] = {}
        for definition in definitions:
            if definition.name in seen:
                raise DiscoveryError(f"Duplicate migration name: {definition.name}")
            seen[definition.name] = definition

        ordered = sorted(definitions, key=lambda d: d.sequence_key)
        for previous, current in zip(ordered, ordered[1:]):
            if current.sequence_key <= previous.sequence_key:
                raise DiscoveryError(
                    f"Migrations {previous.name} and {current.name} share a sequence key"
                )

        logger.debug(f"Discovered {len(ordered)} migrations")
        return ordered

    def _load_directory(self) -> List[MigrationDefinition]:
        if self.migrations_dir is None:
            return []

        if not self.migrations_dir.is_dir():
            logger.warning(f"Migrations directory not found: {self.migrations_dir}")
            return []

        definitions = []
        for path in sorted(self.migrations_dir.glob("*.py")):
            if path.name.startswith("_"):
                continue
            definitions.append(self._load_file(path))
        return definitions

    def _load_file(self, path: Path) -> MigrationDefinition:
        """
        Load one migration file into a definition.

        Raises:
            DiscoveryError: If the file cannot be imported or is incomplete
        """
        name = path.stem
        # Validate the name before executing any of the file's code
        parse_sequence_key(name)

        module_name = f"tidemark_migration_{name}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise DiscoveryError(f"Cannot load migration file: {path}")

        module = importlib.util.module_from_spec(spec)
        # dataclasses and similar look the module up while it executes
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise DiscoveryError(f"Failed to import migration {path}: {e}") from e
        finally:
            sys.modules.pop(module_name, None)

        checksum = hashlib.sha256(path.read_bytes()).hexdigest()

        classes = [
            obj for _, obj in inspect.getmembers(module, inspect.isclass)
            if issubclass(obj, MigrationBase)
            and obj is not MigrationBase
            and obj.__module__ == module_name
        ]
        if len(classes) > 1:
            raise DiscoveryError(
                f"Migration {name} defines {len(classes)} migration classes, expected one"
            )
        if classes:
            try:
                migration = classes[0]()
            except TypeError as e:
                raise DiscoveryError(f"Migration {name} is incomplete: {e}") from e
            return MigrationDefinition.from_migration(name, migration, path=path, checksum=checksum)

        return MigrationDefinition.from_functions(
            name,
            getattr(module, "up", None),
            getattr(module, "down", None),
            description=module.__doc__ or "",
            path=path,
            checksum=checksum,
        )

    @staticmethod
    def resolve_name(target: str) -> str:
        """
        Normalize a user-supplied migration reference to a bare name.

        Accepts "20230513055909_users", "20230513055909_users.py" or a path
        to the file.
        """
        name = Path(target.strip()).name
        if name.endswith(DECORATIVE_SUFFIX):
            name = name[:-len(DECORATIVE_SUFFIX)]
        return name

    def __repr__(self) -> str:
        return f"<MigrationSource: {self.migrations_dir}, {len(self._registered)} registered>"
