"""
Tests for restoring bundled attachment and avatar files.

Tests cover:
- Attachment and avatar restoration with directory creation
- Option flags gating each category
- Missing files reported, never raised
- Paths escaping the public directory
- Import success when a bundled file is missing
"""

from __future__ import annotations

import shutil
import tempfile
import unittest
from pathlib import Path

from factories import (
    make_attachment,
    make_board,
    make_bundle,
    make_dataset,
    make_ticket,
    make_user,
    plain_envelope,
)

from punt_backup.backup.codec import parse
from punt_backup.backup.files import resolve_public_path, restore_files
from punt_backup.backup.importer import import_dataset
from punt_backup.backup.schema import ExportOptions, validate_dataset
from punt_backup.storage import Store

BOTH = ExportOptions(include_attachments=True, include_avatars=True)


class TestRestoreFiles(unittest.TestCase):
    """Tests for restore_files."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.public_dir = Path(self.temp_dir) / "public"

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def dataset(self, attachments=(), avatars=()):
        return validate_dataset(
            make_dataset(
                users=[
                    make_user(f"u{i}", avatar=url) for i, url in enumerate(avatars)
                ],
                attachments=[
                    make_attachment(f"a{i}", "t1", url) for i, url in enumerate(attachments)
                ],
            )
        )

    def test_restores_attachments_and_avatars(self) -> None:
        """Test that every bundled file lands under the public directory."""
        bundle = make_bundle(
            {},
            files={
                "files/uploads/attachments/a.png": b"attachment",
                "files/uploads/avatars/u0.webp": b"avatar",
            },
        )
        dataset = self.dataset(
            attachments=["/uploads/attachments/a.png"],
            avatars=["/uploads/avatars/u0.webp"],
        )

        report = restore_files(bundle, dataset, BOTH, self.public_dir)

        self.assertEqual(report.attachments_restored, 1)
        self.assertEqual(report.avatars_restored, 1)
        self.assertEqual(report.missing_files, [])
        self.assertEqual(
            (self.public_dir / "uploads/attachments/a.png").read_bytes(),
            b"attachment",
        )
        self.assertEqual(
            (self.public_dir / "uploads/avatars/u0.webp").read_bytes(),
            b"avatar",
        )

    def test_missing_files_reported(self) -> None:
        """Test that files absent from the bundle are counted and listed."""
        bundle = make_bundle({}, files={"files/uploads/attachments/a.png": b"a"})
        dataset = self.dataset(
            attachments=["/uploads/attachments/a.png", "/uploads/attachments/gone.png"],
            avatars=["/uploads/avatars/gone.webp"],
        )

        report = restore_files(bundle, dataset, BOTH, self.public_dir)

        self.assertEqual(report.attachments_restored, 1)
        self.assertEqual(report.attachments_missing, 1)
        self.assertEqual(report.avatars_missing, 1)
        self.assertEqual(
            report.missing_files,
            ["/uploads/attachments/gone.png", "/uploads/avatars/gone.webp"],
        )
        self.assertTrue(report.has_missing)

    def test_categories_gated_by_options(self) -> None:
        """Test that nothing is restored for categories not exported."""
        bundle = make_bundle(
            {},
            files={
                "files/uploads/attachments/a.png": b"a",
                "files/uploads/avatars/u0.webp": b"b",
            },
        )
        dataset = self.dataset(
            attachments=["/uploads/attachments/a.png"],
            avatars=["/uploads/avatars/u0.webp"],
        )

        report = restore_files(bundle, dataset, ExportOptions(), self.public_dir)

        self.assertEqual(report.to_dict()["attachmentsRestored"], 0)
        self.assertEqual(report.avatars_restored, 0)
        self.assertEqual(report.missing_files, [])
        self.assertFalse((self.public_dir / "uploads").exists())

    def test_users_without_avatar_skipped(self) -> None:
        """Test that null avatars are not counted as missing."""
        bundle = make_bundle({})
        dataset = self.dataset(avatars=[None])

        report = restore_files(bundle, dataset, BOTH, self.public_dir)

        self.assertEqual(report.avatars_missing, 0)

    def test_attachments_without_url_skipped(self) -> None:
        """Test that an empty attachment URL is neither restored nor missing."""
        bundle = make_bundle({}, files={"files/uploads/attachments/a.png": b"a"})
        dataset = self.dataset(attachments=["", "/uploads/attachments/a.png"])

        report = restore_files(bundle, dataset, BOTH, self.public_dir)

        self.assertEqual(report.attachments_restored, 1)
        self.assertEqual(report.attachments_missing, 0)
        self.assertEqual(report.missing_files, [])
        self.assertFalse(report.has_missing)

    def test_path_outside_public_dir_refused(self) -> None:
        """Test that traversal in a URL is treated as missing."""
        bundle = make_bundle({}, files={"files/../escape.txt": b"evil"})
        dataset = self.dataset(attachments=["/../escape.txt"])

        report = restore_files(bundle, dataset, BOTH, self.public_dir)

        self.assertEqual(report.attachments_missing, 1)
        self.assertEqual(report.missing_files, ["/../escape.txt"])
        self.assertFalse((Path(self.temp_dir) / "escape.txt").exists())

    def test_unreadable_bundle(self) -> None:
        """Test that a broken bundle marks every file missing."""
        dataset = self.dataset(attachments=["/uploads/attachments/a.png"])

        report = restore_files(b"not a zip", dataset, BOTH, self.public_dir)

        self.assertEqual(report.attachments_missing, 1)

    def test_resolve_public_path(self) -> None:
        """Test URL to path resolution."""
        self.assertEqual(
            resolve_public_path(self.public_dir, "/uploads/a.png"),
            (self.public_dir / "uploads/a.png").absolute(),
        )
        self.assertIsNone(resolve_public_path(self.public_dir, "/../../etc/passwd"))


class TestImportWithBundle(unittest.TestCase):
    """Tests for file restoration as part of an import."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.public_dir = Path(self.temp_dir) / "public"
        self.store = Store(Path(self.temp_dir) / "punt.db")

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_file_does_not_fail_import(self) -> None:
        """Test that every row imports and exactly one file is reported missing."""
        data = make_board()
        data["tickets"] = [make_ticket("t1", "p1", "c0")]
        data["attachments"] = [
            make_attachment("a1", "t1", "/uploads/attachments/present.png"),
            make_attachment("a2", "t1", "/uploads/attachments/absent.png"),
        ]
        bundle = make_bundle(
            plain_envelope(data, options={"includeAttachments": True}),
            files={"files/uploads/attachments/present.png": b"png"},
        )
        parsed = parse(bundle)

        result = import_dataset(
            self.store,
            parsed.dataset,
            archive_bytes=parsed.raw_bytes,
            export_options=parsed.export_options,
            public_dir=self.public_dir,
        )

        self.assertTrue(result.success)
        self.assertEqual(result.counts.attachments, 2)
        self.assertEqual(self.store.count_rows("attachments"), 2)
        self.assertEqual(result.files.attachments_restored, 1)
        self.assertEqual(result.files.attachments_missing, 1)
        self.assertEqual(result.files.missing_files, ["/uploads/attachments/absent.png"])
        self.assertTrue((self.public_dir / "uploads/attachments/present.png").exists())

    def test_avatars_kept_with_bundle(self) -> None:
        """Test that avatar references survive when a bundle is supplied."""
        data = make_dataset(users=[make_user("u1", avatar="/uploads/avatars/u1.png")])
        bundle = make_bundle(
            plain_envelope(data, options={"includeAvatars": True}),
            files={"files/uploads/avatars/u1.png": b"img"},
        )
        parsed = parse(bundle)

        result = import_dataset(
            self.store,
            parsed.dataset,
            archive_bytes=parsed.raw_bytes,
            export_options=parsed.export_options,
            public_dir=self.public_dir,
        )

        self.assertEqual(result.files.avatars_restored, 1)
        self.assertEqual(
            self.store.fetch_one("users", "u1")["avatar"], "/uploads/avatars/u1.png"
        )


if __name__ == "__main__":
    unittest.main()
