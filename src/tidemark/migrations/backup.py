"""
Backup Manager for Tidemark

Snapshots the SQLite database before a migration run changes it.

Features:
- Timestamped snapshots with a JSON metadata sidecar
- WAL-safe copies using the SQLite online backup API
- Pruning of old snapshots
- Verified restore
"""

import json
import logging
import shutil
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class BackupInfo:
    """Information about a database snapshot."""
    path: Path
    original_db: Path
    created_at: datetime
    size_bytes: int
    latest_batch: int
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "path": str(self.path),
            "original_db": str(self.original_db),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "size_bytes": self.size_bytes,
            "latest_batch": self.latest_batch,
            "metadata": self.metadata or {}
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupInfo':
        """Create BackupInfo from dictionary."""
        return cls(
            path=Path(data["path"]),
            original_db=Path(data["original_db"]),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else None,
            size_bytes=data["size_bytes"],
            latest_batch=data.get("latest_batch", -1),
            metadata=data.get("metadata")
        )


class BackupManager:
    """
    Backup Manager - Database snapshots taken before migration runs

    Pattern: Timestamped copies next to a metadata sidecar
    Lifetime: Snapshots persist until pruned

    Example:
        manager = BackupManager(db_path, backup_dir)
        info = manager.create_backup(latest_batch=3, metadata={"command": "run-pending"})
        manager.cleanup_old_backups(keep_count=5)
    """

    # Snapshot filename pattern: {db_name}_backup_{timestamp}.db
    BACKUP_SUFFIX = "_backup_"
    METADATA_SUFFIX = ".meta.json"

    def __init__(self, db_path: Union[str, Path], backup_dir: Optional[Union[str, Path]] = None):
        """
        Initialize Backup Manager.

        Args:
            db_path: Path to SQLite database file to snapshot
            backup_dir: Directory to store snapshots (default: {db_path.parent}/backups)
        """
        self.db_path = Path(db_path)
        self.backup_dir = Path(backup_dir) if backup_dir else self.db_path.parent / "backups"

    def create_backup(self, latest_batch: int = 0,
                      metadata: Optional[Dict[str, Any]] = None) -> Optional[BackupInfo]:
        """
        Snapshot the database using the SQLite backup API.

        Args:
            latest_batch: Highest ledger batch at snapshot time
            metadata: Optional metadata to store with the snapshot

        Returns:
            BackupInfo, or None when the database file does not exist yet
        """
        if not self.db_path.exists():
            logger.debug(f"No database at {self.db_path}; skipping backup")
            return None

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        created_at = datetime.now()
        timestamp = created_at.strftime("%Y%m%d_%H%M%S_%f")
        backup_path = self.backup_dir / f"{self.db_path.stem}{self.BACKUP_SUFFIX}{timestamp}.db"

        source_conn = sqlite3.connect(self.db_path)
        dest_conn = sqlite3.connect(backup_path)
        try:
            with source_conn:
                source_conn.backup(dest_conn)
        finally:
            source_conn.close()
            dest_conn.close()

        backup_info = BackupInfo(
            path=backup_path,
            original_db=self.db_path,
            created_at=created_at,
            size_bytes=backup_path.stat().st_size,
            latest_batch=latest_batch,
            metadata=metadata
        )
        self._metadata_path(backup_path).write_text(json.dumps(backup_info.to_dict(), indent=2))

        logger.info(f"Backed up {self.db_path} to {backup_path}")
        return backup_info

    def _metadata_path(self, backup_path: Path) -> Path:
        return backup_path.with_suffix(backup_path.suffix + self.METADATA_SUFFIX)

    def _load_metadata(self, backup_path: Path) -> Optional[BackupInfo]:
        metadata_path = self._metadata_path(backup_path)
        if not metadata_path.exists():
            return None

        try:
            return BackupInfo.from_dict(json.loads(metadata_path.read_text()))
        except (json.JSONDecodeError, KeyError):
            return None

    def list_backups(self) -> List[BackupInfo]:
        """
        List snapshots of this database.

        Returns:
            BackupInfo objects, newest first
        """
        if not self.backup_dir.exists():
            return []

        backups = []
        pattern = f"{self.db_path.stem}{self.BACKUP_SUFFIX}*.db"
        for backup_file in self.backup_dir.glob(pattern):
            backup_info = self._load_metadata(backup_file)
            if backup_info is None:
                stat = backup_file.stat()
                backup_info = BackupInfo(
                    path=backup_file,
                    original_db=self.db_path,
                    created_at=datetime.fromtimestamp(stat.st_mtime),
                    size_bytes=stat.st_size,
                    latest_batch=-1,  # Unknown
                )
            backups.append(backup_info)

        backups.sort(key=lambda b: b.created_at, reverse=True)
        return backups

    def cleanup_old_backups(self, keep_count: int = 5) -> int:
        """
        Remove old snapshots, keeping the most recent ``keep_count``.

        Returns:
            Number of snapshots deleted
        """
        if keep_count < 1:
            raise ValueError(f"keep_count must be >= 1, got {keep_count}")

        deleted_count = 0
        for backup_info in self.list_backups()[keep_count:]:
            backup_info.path.unlink(missing_ok=True)
            self._metadata_path(backup_info.path).unlink(missing_ok=True)
            deleted_count += 1

        if deleted_count:
            logger.debug(f"Pruned {deleted_count} old backup(s)")
        return deleted_count

    def verify_backup(self, backup_path: Union[str, Path]) -> bool:
        """Check that a snapshot is a readable SQLite database."""
        backup_path = Path(backup_path)
        if not backup_path.exists():
            return False

        try:
            conn = sqlite3.connect(backup_path)
            try:
                row = conn.execute("PRAGMA integrity_check").fetchone()
            finally:
                conn.close()
            return row is not None and row[0] == "ok"
        except sqlite3.Error:
            return False

    def restore_backup(self, backup_path: Union[str, Path]) -> None:
        """
        Replace the database with a snapshot.

        WARNING: This overwrites the current database, ledger included.

        Raises:
            FileNotFoundError: If the snapshot does not exist
            ValueError: If the snapshot fails verification
        """
        backup_path = Path(backup_path)
        if not backup_path.exists():
            raise FileNotFoundError(f"Backup file not found: {backup_path}")
        if not self.verify_backup(backup_path):
            raise ValueError(f"Backup failed verification: {backup_path}")

        shutil.copy2(backup_path, self.db_path)

        # Stale WAL files would be replayed over the restored copy
        for suffix in ("-wal", "-shm"):
            self.db_path.with_name(self.db_path.name + suffix).unlink(missing_ok=True)

        logger.info(f"Restored {self.db_path} from {backup_path}")
