"""
Backup export and import for Punt.

This module turns the full contents of a store into a portable archive (a
bare JSON manifest or a ZIP bundle with attachment and avatar files,
optionally encrypted) and restores such an archive with a wipe-and-replace
import.

Usage:
    from punt_backup.backup import BackupManager

    # Create a backup
    manager = BackupManager(store, public_dir)
    result = manager.create_backup(output_path, include_attachments=True)

    # Restore from backup
    result = manager.restore_backup(backup_path, password="secret")

    # Verify backup integrity
    valid, errors = manager.verify_backup(backup_path)
"""

from punt_backup.backup.codec import ContainerKind, ParsedBackup, classify, parse
from punt_backup.backup.errors import (
    ArchiveEntryMissingError,
    ArchiveError,
    BackupError,
    DateCoercionError,
    DecryptionFailedError,
    ImportInProgressError,
    ImportTimeoutError,
    InvalidFormatError,
    InvalidStructureError,
    OversizedInputError,
    PasswordRequiredError,
    RestoreError,
    UnsupportedVersionError,
)
from punt_backup.backup.importer import import_dataset
from punt_backup.backup.manager import (
    BackupInfo,
    BackupManager,
    BackupResult,
    RestoreResult,
    read_backup_info,
)
from punt_backup.backup.models import FileRestorationReport, ImportCounts, ImportResult
from punt_backup.backup.schema import COMPATIBLE_VERSIONS, EXPORT_VERSION, Dataset

__all__ = [
    "BackupManager",
    "BackupResult",
    "RestoreResult",
    "BackupInfo",
    "read_backup_info",
    # Engine
    "classify",
    "parse",
    "import_dataset",
    "ContainerKind",
    "ParsedBackup",
    "Dataset",
    "ImportResult",
    "ImportCounts",
    "FileRestorationReport",
    "EXPORT_VERSION",
    "COMPATIBLE_VERSIONS",
    # Exceptions
    "BackupError",
    "ArchiveError",
    "OversizedInputError",
    "InvalidFormatError",
    "InvalidStructureError",
    "UnsupportedVersionError",
    "PasswordRequiredError",
    "DecryptionFailedError",
    "ArchiveEntryMissingError",
    "RestoreError",
    "ImportInProgressError",
    "ImportTimeoutError",
    "DateCoercionError",
]
