"""Configuration loading for Tidemark.

Settings come from a YAML file, then environment variables, then explicit
overrides (CLI flags), each layer winning over the previous one.

Lookup order for the file: explicit path > TIDEMARK_CONFIG > ./tidemark.yaml.
A missing file means defaults.

Example tidemark.yaml:

    database: data/app.sqlite3
    migrations_dir: migrations
    ledger_table: tidemark_migrations
    busy_timeout: 5
    backup:
      enabled: true
      dir: data/backups
      keep: 5
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigError
from .migrations.ledger import DEFAULT_BUSY_TIMEOUT, DEFAULT_TABLE, IDENTIFIER_PATTERN

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "tidemark.yaml"
DEFAULT_DATABASE = Path("data") / "tidemark.sqlite3"
DEFAULT_MIGRATIONS_DIR = Path("migrations")

ENV_CONFIG = "TIDEMARK_CONFIG"
ENV_DATABASE = "TIDEMARK_DATABASE"
ENV_MIGRATIONS_DIR = "TIDEMARK_MIGRATIONS_DIR"

KNOWN_KEYS = {"database", "migrations_dir", "ledger_table", "lock_path", "busy_timeout", "backup"}


@dataclass
class BackupConfig:
    """Pre-run snapshot settings"""
    enabled: bool = False
    dir: Optional[Path] = None
    keep: int = 5


@dataclass
class TidemarkConfig:
    """Resolved engine settings"""
    database: Path = DEFAULT_DATABASE
    migrations_dir: Path = DEFAULT_MIGRATIONS_DIR
    ledger_table: str = DEFAULT_TABLE
    lock_path: Optional[Path] = None
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT
    backup: BackupConfig = field(default_factory=BackupConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "TidemarkConfig":
        """Build a config from parsed YAML.

        Relative paths are resolved against ``base_dir`` (the config file's
        directory) when given.

        Raises:
            ConfigError: If a value has the wrong type
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping")

        unknown = set(data) - KNOWN_KEYS
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

        def as_path(key: str, value: Any) -> Path:
            if not isinstance(value, (str, Path)) or not str(value):
                raise ConfigError(f"'{key}' must be a non-empty path, got {value!r}")
            path = Path(value).expanduser()
            if base_dir is not None and not path.is_absolute():
                path = base_dir / path
            return path

        config = cls()
        if "database" in data:
            config.database = as_path("database", data["database"])
        if "migrations_dir" in data:
            config.migrations_dir = as_path("migrations_dir", data["migrations_dir"])
        if data.get("lock_path") is not None:
            config.lock_path = as_path("lock_path", data["lock_path"])

        if "ledger_table" in data:
            table = data["ledger_table"]
            if not isinstance(table, str) or not IDENTIFIER_PATTERN.match(table):
                raise ConfigError(f"'ledger_table' must be a SQL identifier, got {table!r}")
            config.ledger_table = table

        if "busy_timeout" in data:
            timeout = data["busy_timeout"]
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout < 0:
                raise ConfigError(f"'busy_timeout' must be a number >= 0, got {timeout!r}")
            config.busy_timeout = float(timeout)

        backup = data.get("backup") or {}
        if not isinstance(backup, dict):
            raise ConfigError("'backup' must be a mapping")
        config.backup.enabled = bool(backup.get("enabled", False))
        if backup.get("dir") is not None:
            config.backup.dir = as_path("backup.dir", backup["dir"])
        if "keep" in backup:
            keep = backup["keep"]
            if isinstance(keep, bool) or not isinstance(keep, int) or keep < 1:
                raise ConfigError(f"'backup.keep' must be an integer >= 1, got {keep!r}")
            config.backup.keep = keep

        return config


def find_config_path(explicit: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Locate the config file.

    Priority: explicit path > TIDEMARK_CONFIG env var > ./tidemark.yaml.

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return path

    env_path = os.getenv(ENV_CONFIG)
    if env_path:
        path = Path(env_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path} (from {ENV_CONFIG})")
        return path

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    return default if default.exists() else None


def load_config(path: Optional[Union[str, Path]] = None,
                database: Optional[Union[str, Path]] = None,
                migrations_dir: Optional[Union[str, Path]] = None) -> TidemarkConfig:
    """Load configuration from file, environment and explicit overrides.

    Args:
        path: Explicit config file path
        database: Override for the database path
        migrations_dir: Override for the migrations directory

    Raises:
        ConfigError: If the file is unreadable or holds invalid values
    """
    config_path = find_config_path(path)

    if config_path is not None:
        try:
            data = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        config = TidemarkConfig.from_dict(data, base_dir=config_path.parent)
        logger.debug(f"Loaded config from {config_path}")
    else:
        config = TidemarkConfig()

    env_database = os.getenv(ENV_DATABASE)
    if env_database:
        config.database = Path(env_database)
    env_migrations = os.getenv(ENV_MIGRATIONS_DIR)
    if env_migrations:
        config.migrations_dir = Path(env_migrations)

    if database:
        config.database = Path(database)
    if migrations_dir:
        config.migrations_dir = Path(migrations_dir)

    return config
