"""
Tests for the backup manager.

Tests cover:
- BackupResult, RestoreResult and BackupInfo dataclasses
- Backup creation as JSON manifest or ZIP bundle
- Restore, verification and info on good and bad files
- Error reporting through result objects
"""

from __future__ import annotations

import json
import shutil
import tempfile
import unittest
import zipfile
from pathlib import Path

from factories import make_board, make_full_dataset

from punt_backup.backup import (
    BackupInfo,
    BackupManager,
    BackupResult,
    RestoreResult,
)
from punt_backup.backup.importer import import_dataset
from punt_backup.backup.schema import ExportOptions, validate_dataset
from punt_backup.storage import Store


class TestResultDataclasses(unittest.TestCase):
    """Tests for the result dataclasses."""

    def test_backup_result_defaults(self):
        """Test a failed backup result."""
        result = BackupResult(success=False, error="Disk full")

        self.assertFalse(result.success)
        self.assertIsNone(result.path)
        self.assertEqual(result.size_bytes, 0)
        self.assertEqual(result.error, "Disk full")

    def test_restore_result_defaults(self):
        """Test a failed restore result."""
        result = RestoreResult(success=False, error="bad")

        self.assertIsNone(result.import_result)
        self.assertEqual(result.warnings, [])

    def test_backup_info_to_dict(self):
        """Test BackupInfo serialization."""
        info = BackupInfo(
            version="1.1.0",
            exported_at="2024-01-15T09:30:00.000Z",
            exported_by="u1",
            encrypted=True,
            is_bundled=False,
            options=ExportOptions(include_avatars=True),
            size_bytes=1234,
        )

        data = info.to_dict()

        self.assertEqual(data["version"], "1.1.0")
        self.assertTrue(data["encrypted"])
        self.assertFalse(data["bundled"])
        self.assertEqual(
            data["options"], {"includeAttachments": False, "includeAvatars": True}
        )
        self.assertEqual(data["sizeBytes"], 1234)


class TestBackupManager(unittest.TestCase):
    """Tests for BackupManager."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.public_dir = self.temp_dir / "public"
        self.output_dir = self.temp_dir / "backups"
        self.store = Store(self.temp_dir / "punt.db")
        import_dataset(self.store, validate_dataset(make_full_dataset()))
        self.manager = BackupManager(self.store, self.public_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_public_file(self, url: str, content: bytes) -> None:
        path = self.public_dir / url.lstrip("/")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def test_create_backup_json(self):
        """Test a plain backup into a directory."""
        result = self.manager.create_backup(self.output_dir, exported_by="u1")

        self.assertTrue(result.success)
        self.assertTrue(result.path.name.startswith("punt-backup-"))
        self.assertEqual(result.path.suffix, ".json")
        self.assertEqual(result.path.parent, self.output_dir)
        self.assertEqual(result.size_bytes, result.path.stat().st_size)
        self.assertFalse(result.encrypted)
        self.assertIsNone(result.file_manifest)

        envelope = json.loads(result.path.read_text())
        self.assertEqual(envelope["exportedBy"], "u1")
        self.assertEqual(len(envelope["data"]["tickets"]), 2)

    def test_create_backup_zip(self):
        """Test that including files produces a ZIP bundle."""
        self.write_public_file("/uploads/attachments/a.png", b"png")

        result = self.manager.create_backup(self.output_dir, include_attachments=True)

        self.assertTrue(result.success)
        self.assertEqual(result.path.suffix, ".zip")
        self.assertTrue(zipfile.is_zipfile(result.path))
        self.assertEqual(result.file_manifest.missing, [])

    def test_create_backup_explicit_file(self):
        """Test that a path with a backup suffix is used as the file name."""
        target = self.output_dir / "nested" / "mine.json"

        result = self.manager.create_backup(target)

        self.assertTrue(result.success)
        self.assertEqual(result.path, target)
        self.assertTrue(target.exists())

    def test_create_backup_encrypted(self):
        """Test an encrypted backup."""
        result = self.manager.create_backup(self.output_dir, password="pw")

        self.assertTrue(result.success)
        self.assertTrue(result.encrypted)
        envelope = json.loads(result.path.read_text())
        self.assertTrue(envelope["encrypted"])
        self.assertNotIn("data", envelope)

    def test_create_backup_failure(self):
        """Test that an unwritable destination is reported, not raised."""
        blocker = self.temp_dir / "blocker"
        blocker.write_text("not a directory")

        result = self.manager.create_backup(blocker / "out.json")

        self.assertFalse(result.success)
        self.assertIsNotNone(result.error)

    def test_restore_backup(self):
        """Test restoring a backup over different data."""
        backup = self.manager.create_backup(self.output_dir).path
        import_dataset(self.store, validate_dataset(make_board(user_count=5)))

        result = self.manager.restore_backup(backup)

        self.assertTrue(result.success)
        self.assertEqual(result.version, "1.1.0")
        self.assertEqual(result.import_result.counts.users, 2)
        self.assertEqual(result.import_result.counts.tickets, 2)
        self.assertEqual(result.warnings, [])
        self.assertEqual(self.store.count_rows("users"), 2)

    def test_restore_encrypted_bundle(self):
        """Test restoring an encrypted bundle with files."""
        self.write_public_file("/uploads/attachments/a.png", b"png")
        self.write_public_file("/uploads/avatars/u1.png", b"avatar")
        backup = self.manager.create_backup(
            self.output_dir,
            include_attachments=True,
            include_avatars=True,
            password="pw",
        ).path
        shutil.rmtree(self.public_dir)

        result = self.manager.restore_backup(backup, password="pw")

        self.assertTrue(result.success)
        self.assertEqual(result.import_result.files.attachments_restored, 1)
        self.assertEqual(result.import_result.files.avatars_restored, 1)
        self.assertEqual(
            (self.public_dir / "uploads/avatars/u1.png").read_bytes(), b"avatar"
        )

    def test_restore_missing_files_warn(self):
        """Test that files missing from a bundle become warnings."""
        backup = self.manager.create_backup(
            self.output_dir, include_attachments=True
        ).path

        result = self.manager.restore_backup(backup)

        self.assertTrue(result.success)
        self.assertEqual(
            result.warnings, ["File not restored: /uploads/attachments/a.png"]
        )

    def test_restore_wrong_password(self):
        """Test that a wrong password fails without touching the store."""
        backup = self.manager.create_backup(self.output_dir, password="pw").path
        import_dataset(self.store, validate_dataset(make_board(user_count=5)))

        result = self.manager.restore_backup(backup, password="wrong")

        self.assertFalse(result.success)
        self.assertIn("password", result.error.lower())
        self.assertEqual(self.store.count_rows("users"), 5)

    def test_restore_password_required(self):
        """Test restoring an encrypted backup without a password."""
        backup = self.manager.create_backup(self.output_dir, password="pw").path

        result = self.manager.restore_backup(backup)

        self.assertFalse(result.success)
        self.assertIsNotNone(result.error)

    def test_restore_nonexistent_backup(self):
        """Test restoring a file that does not exist."""
        result = self.manager.restore_backup(self.temp_dir / "missing.json")

        self.assertFalse(result.success)
        self.assertIn("not found", result.error)

    def test_restore_failed_import_keeps_data(self):
        """Test that a dataset violating constraints is rolled back."""
        data = make_board()
        data["labels"] = [{"id": "l1", "name": "x", "color": "#000", "projectId": "nope"}]
        backup = self.temp_dir / "broken.json"
        backup.write_text(
            json.dumps(
                {
                    "version": "1.1.0",
                    "exportedAt": "2024-01-15T09:30:00.000Z",
                    "encrypted": False,
                    "data": data,
                }
            )
        )

        result = self.manager.restore_backup(backup)

        self.assertFalse(result.success)
        self.assertEqual(self.store.count_rows("tickets"), 2)

    def test_verify_backup_valid(self):
        """Test verifying a good backup."""
        backup = self.manager.create_backup(self.output_dir, password="pw").path

        is_valid, errors = self.manager.verify_backup(backup, password="pw")

        self.assertTrue(is_valid)
        self.assertEqual(errors, [])

    def test_verify_backup_nonexistent(self):
        """Test verifying a file that does not exist."""
        is_valid, errors = self.manager.verify_backup(self.temp_dir / "missing.json")

        self.assertFalse(is_valid)
        self.assertIn("not found", errors[0])

    def test_verify_backup_invalid_structure(self):
        """Test that structure errors include field locations."""
        backup = self.temp_dir / "bad.json"
        backup.write_text(json.dumps({"version": "1.1.0", "encrypted": False}))

        is_valid, errors = self.manager.verify_backup(backup)

        self.assertFalse(is_valid)
        self.assertEqual(errors[0], "Invalid export file structure")
        self.assertGreater(len(errors), 1)

    def test_verify_does_not_modify_store(self):
        """Test that verification never writes."""
        backup = self.temp_dir / "board.json"
        backup.write_text(
            json.dumps(
                {
                    "version": "1.1.0",
                    "exportedAt": "2024-01-15T09:30:00.000Z",
                    "encrypted": False,
                    "data": make_board(user_count=7),
                }
            )
        )

        is_valid, _ = self.manager.verify_backup(backup)

        self.assertTrue(is_valid)
        self.assertEqual(self.store.count_rows("users"), 2)

    def test_get_backup_info(self):
        """Test reading envelope metadata of an encrypted bundle."""
        self.write_public_file("/uploads/attachments/a.png", b"png")
        backup = self.manager.create_backup(
            self.output_dir, exported_by="u1", include_attachments=True, password="pw"
        ).path

        info = self.manager.get_backup_info(backup)

        self.assertIsNotNone(info)
        self.assertEqual(info.version, "1.1.0")
        self.assertEqual(info.exported_by, "u1")
        self.assertTrue(info.encrypted)
        self.assertTrue(info.is_bundled)
        self.assertTrue(info.options.include_attachments)
        self.assertEqual(info.size_bytes, backup.stat().st_size)

    def test_get_backup_info_invalid(self):
        """Test info on an unreadable or malformed file."""
        garbage = self.temp_dir / "garbage.json"
        garbage.write_text("not json")

        self.assertIsNone(self.manager.get_backup_info(garbage))
        self.assertIsNone(self.manager.get_backup_info(self.temp_dir / "missing.json"))


if __name__ == "__main__":
    unittest.main()
