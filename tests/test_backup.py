"""
Unit tests for the Backup Manager

Tests cover:
- Snapshot creation and metadata sidecars
- Verification
- Restore
- Listing and pruning
"""

import json
import shutil
import sqlite3
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from tidemark.migrations.backup import BackupInfo, BackupManager


class TestBackupManager(unittest.TestCase):
    """Test suite for BackupManager."""

    def setUp(self):
        """Set up test database and backup manager."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "app.sqlite3"
        self.backup_dir = Path(self.temp_dir) / "backups"

        self._create_test_database()

        self.backup_manager = BackupManager(self.db_path, self.backup_dir)

    def tearDown(self):
        """Clean up test files."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _create_test_database(self):
        """Create a test database with sample data."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
            conn.execute("INSERT INTO users (name) VALUES ('ada')")
            conn.commit()
        finally:
            conn.close()

    def _user_count(self):
        conn = sqlite3.connect(self.db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        finally:
            conn.close()

    # ==================== Backup Creation ====================

    def test_create_backup(self):
        """Test creating a basic backup."""
        backup_info = self.backup_manager.create_backup(latest_batch=3)

        self.assertIsNotNone(backup_info)
        self.assertTrue(backup_info.path.exists())
        self.assertEqual(backup_info.original_db, self.db_path)
        self.assertEqual(backup_info.latest_batch, 3)
        self.assertGreater(backup_info.size_bytes, 0)
        self.assertIsInstance(backup_info.created_at, datetime)

    def test_create_backup_saves_metadata_file(self):
        """Test that a backup writes its metadata sidecar."""
        backup_info = self.backup_manager.create_backup(metadata={"command": "run-pending"})

        metadata_path = backup_info.path.with_suffix(
            backup_info.path.suffix + BackupManager.METADATA_SUFFIX
        )
        self.assertTrue(metadata_path.exists())
        data = json.loads(metadata_path.read_text())
        self.assertEqual(data["metadata"], {"command": "run-pending"})

    def test_create_backup_nonexistent_database(self):
        """Test that a missing database is skipped."""
        manager = BackupManager(Path(self.temp_dir) / "nonexistent.sqlite3")
        self.assertIsNone(manager.create_backup())

    def test_create_backup_naming_pattern(self):
        """Test that backup files follow the naming convention."""
        backup_info = self.backup_manager.create_backup()

        self.assertTrue(backup_info.path.name.startswith("app" + BackupManager.BACKUP_SUFFIX))
        self.assertTrue(backup_info.path.name.endswith(".db"))

    def test_multiple_backups_unique_names(self):
        """Test that back-to-back backups do not collide."""
        backup1 = self.backup_manager.create_backup()
        backup2 = self.backup_manager.create_backup()

        self.assertNotEqual(backup1.path, backup2.path)

    def test_default_backup_directory(self):
        """Test that backups default to a directory beside the database."""
        manager = BackupManager(self.db_path)
        self.assertEqual(manager.backup_dir, Path(self.temp_dir) / "backups")

    # ==================== Backup Verification ====================

    def test_verify_backup_valid(self):
        """Test verifying a valid backup."""
        backup_info = self.backup_manager.create_backup()
        self.assertTrue(self.backup_manager.verify_backup(backup_info.path))

    def test_verify_backup_nonexistent(self):
        """Test verifying a missing backup returns False."""
        self.assertFalse(self.backup_manager.verify_backup(Path(self.temp_dir) / "missing.db"))

    def test_verify_backup_corrupted(self):
        """Test verifying a corrupted backup returns False."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        corrupted_path = self.backup_dir / "corrupted.db"
        corrupted_path.write_text("This is not a valid SQLite database")

        self.assertFalse(self.backup_manager.verify_backup(corrupted_path))

    # ==================== Backup Restore ====================

    def test_restore_backup(self):
        """Test restoring a backup."""
        backup_info = self.backup_manager.create_backup()

        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("DELETE FROM users")
            conn.commit()
        finally:
            conn.close()
        self.assertEqual(self._user_count(), 0)

        self.backup_manager.restore_backup(backup_info.path)

        self.assertEqual(self._user_count(), 1)

    def test_restore_nonexistent_backup(self):
        """Test that restoring a missing backup raises."""
        with self.assertRaises(FileNotFoundError):
            self.backup_manager.restore_backup(Path(self.temp_dir) / "missing.db")

    def test_restore_corrupted_backup(self):
        """Test that a backup failing verification is not restored."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        corrupted_path = self.backup_dir / "corrupted.db"
        corrupted_path.write_text("garbage")

        with self.assertRaises(ValueError):
            self.backup_manager.restore_backup(corrupted_path)
        self.assertEqual(self._user_count(), 1)

    # ==================== Backup Listing ====================

    def test_list_backups_empty(self):
        """Test listing when no backup directory exists."""
        self.assertEqual(self.backup_manager.list_backups(), [])

    def test_list_backups_newest_first(self):
        """Test that backups are listed newest first."""
        first = self.backup_manager.create_backup(latest_batch=1)
        second = self.backup_manager.create_backup(latest_batch=2)

        backups = self.backup_manager.list_backups()

        self.assertEqual([b.path for b in backups], [second.path, first.path])

    def test_list_backups_without_metadata(self):
        """Test that a backup without a sidecar is still listed."""
        backup_info = self.backup_manager.create_backup()
        backup_info.path.with_suffix(
            backup_info.path.suffix + BackupManager.METADATA_SUFFIX
        ).unlink()

        backups = self.backup_manager.list_backups()

        self.assertEqual(len(backups), 1)
        self.assertEqual(backups[0].latest_batch, -1)

    # ==================== Backup Cleanup ====================

    def test_cleanup_old_backups(self):
        """Test pruning keeps the newest backups."""
        created = [self.backup_manager.create_backup() for _ in range(4)]

        deleted = self.backup_manager.cleanup_old_backups(keep_count=2)

        self.assertEqual(deleted, 2)
        remaining = [b.path for b in self.backup_manager.list_backups()]
        self.assertEqual(remaining, [created[3].path, created[2].path])
        self.assertEqual(len(list(self.backup_dir.glob("*.meta.json"))), 2)

    def test_cleanup_invalid_keep_count(self):
        """Test that keep_count must be positive."""
        with self.assertRaises(ValueError):
            self.backup_manager.cleanup_old_backups(keep_count=0)

    # ==================== BackupInfo ====================

    def test_backup_info_round_trip(self):
        """Test BackupInfo dictionary conversion."""
        info = BackupInfo(
            path=Path("/tmp/app_backup_1.db"),
            original_db=Path("/tmp/app.sqlite3"),
            created_at=datetime(2024, 1, 1, 12, 0, 0),
            size_bytes=4096,
            latest_batch=2,
            metadata={"command": "rollback"},
        )

        restored = BackupInfo.from_dict(info.to_dict())

        self.assertEqual(restored, info)


if __name__ == '__main__':
    unittest.main()
