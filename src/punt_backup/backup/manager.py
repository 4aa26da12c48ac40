"""
Backup and restore manager for Punt.

File-level front end to the exporter, codec and importer. Operations return
result objects with a success flag instead of raising, so callers (the CLI,
a web handler) can report failures uniformly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from punt_backup.backup.codec import parse, read_envelope
from punt_backup.backup.errors import ArchiveError, BackupError
from punt_backup.backup.exporter import (
    FileManifest,
    create_export_json,
    create_export_zip,
    generate_export_filename,
)
from punt_backup.backup.importer import import_dataset
from punt_backup.backup.models import ImportResult
from punt_backup.backup.schema import EncryptedArchive, ExportOptions
from punt_backup.config.settings import DEFAULT_IMPORT_TIMEOUT_SECONDS
from punt_backup.storage.store import Store

logger = logging.getLogger(__name__)

BACKUP_SUFFIXES = (".json", ".zip")


@dataclass
class BackupResult:
    """Result of a backup operation."""

    success: bool
    path: Path | None = None
    size_bytes: int = 0
    encrypted: bool = False
    file_manifest: FileManifest | None = None
    error: str | None = None


@dataclass
class RestoreResult:
    """Result of a restore operation."""

    success: bool
    import_result: ImportResult | None = None
    version: str | None = None
    exported_at: str | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class BackupInfo:
    """Envelope metadata of a backup, readable without the password."""

    version: str
    exported_at: str
    exported_by: str | None
    encrypted: bool
    is_bundled: bool
    options: ExportOptions
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "exportedAt": self.exported_at,
            "exportedBy": self.exported_by,
            "encrypted": self.encrypted,
            "bundled": self.is_bundled,
            "options": self.options.model_dump(by_alias=True),
            "sizeBytes": self.size_bytes,
        }


class BackupManager:
    """
    Manages backup and restore operations for a Punt store.

    Writes either a bare JSON manifest or, when files are included, a ZIP
    bundle with the manifest and the referenced attachment and avatar files.
    Restores replace the whole store in one transaction; files missing from
    a bundle are reported as warnings on an otherwise successful result.
    """

    def __init__(
        self,
        store: Store,
        public_dir: Path,
        import_timeout_seconds: float = DEFAULT_IMPORT_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize backup manager.

        Args:
            store: Store to export from and import into.
            public_dir: Directory that attachment and avatar URLs resolve
                against.
            import_timeout_seconds: Time limit for each import transaction.
        """
        self.store = store
        self.public_dir = Path(public_dir)
        self.import_timeout_seconds = import_timeout_seconds

    def create_backup(
        self,
        output_path: Path | None = None,
        exported_by: str | None = None,
        include_attachments: bool = False,
        include_avatars: bool = False,
        password: str | None = None,
    ) -> BackupResult:
        """
        Create a backup of the whole store.

        Args:
            output_path: Target file, or a directory to place a file with the
                default name in (default: current directory).
            exported_by: Id recorded as the exporting user.
            include_attachments: Bundle attachment files (produces a ZIP).
            include_avatars: Bundle avatar files (produces a ZIP).
            password: Encrypt the dataset with this password.

        Returns:
            BackupResult with success status and backup details
        """
        try:
            include_files = include_attachments or include_avatars

            if output_path is None:
                output_path = Path.cwd()
            output_path = Path(output_path)

            if output_path.suffix.lower() in BACKUP_SUFFIXES and not output_path.is_dir():
                backup_path = output_path
            else:
                backup_path = output_path / generate_export_filename(include_files)

            backup_path.parent.mkdir(parents=True, exist_ok=True)

            file_manifest = None
            if include_files:
                content, file_manifest = create_export_zip(
                    self.store,
                    exported_by,
                    self.public_dir,
                    include_attachments=include_attachments,
                    include_avatars=include_avatars,
                    password=password,
                )
                backup_path.write_bytes(content)
            else:
                backup_path.write_text(
                    create_export_json(self.store, exported_by, password=password),
                    encoding="utf-8",
                )

            size_bytes = backup_path.stat().st_size

            logger.info(f"Backup created: {backup_path} ({size_bytes:,} bytes)")

            return BackupResult(
                success=True,
                path=backup_path,
                size_bytes=size_bytes,
                encrypted=bool(password),
                file_manifest=file_manifest,
            )

        except Exception as e:
            logger.exception("Backup failed")
            return BackupResult(success=False, error=str(e))

    def restore_backup(
        self,
        backup_path: Path,
        password: str | None = None,
    ) -> RestoreResult:
        """
        Replace the store contents with a backup.

        Args:
            backup_path: Path to a .json manifest or .zip bundle
            password: Password for encrypted backups

        Returns:
            RestoreResult with success status and import details
        """
        try:
            backup_path = Path(backup_path)

            if not backup_path.exists():
                return RestoreResult(
                    success=False,
                    error=f"Backup file not found: {backup_path}",
                )

            parsed = parse(backup_path.read_bytes(), password=password)

            import_result = import_dataset(
                self.store,
                parsed.dataset,
                archive_bytes=parsed.raw_bytes,
                export_options=parsed.export_options,
                public_dir=self.public_dir,
                timeout_seconds=self.import_timeout_seconds,
            )

            warnings = [
                f"File not restored: {path}" for path in import_result.files.missing_files
            ]

            logger.info(
                f"Restore completed from {backup_path}: "
                f"{import_result.counts.total} rows, {len(warnings)} warnings"
            )

            return RestoreResult(
                success=True,
                import_result=import_result,
                version=parsed.version,
                exported_at=parsed.exported_at,
                warnings=warnings,
            )

        except BackupError as e:
            logger.error(f"Restore failed: {e}")
            return RestoreResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Restore failed")
            return RestoreResult(success=False, error=str(e))

    def verify_backup(
        self,
        backup_path: Path,
        password: str | None = None,
    ) -> tuple[bool, list[str]]:
        """
        Fully parse and validate a backup without touching the store.

        Args:
            backup_path: Path to backup file
            password: Password for encrypted backups

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        backup_path = Path(backup_path)

        try:
            if not backup_path.exists():
                return False, [f"Backup file not found: {backup_path}"]

            parse(backup_path.read_bytes(), password=password)
            return True, []

        except ArchiveError as e:
            errors = [str(e)]
            for detail in getattr(e, "errors", []):
                location = ".".join(str(part) for part in detail.get("loc", ()))
                errors.append(f"{location}: {detail.get('msg', '')}")
            return False, errors
        except OSError as e:
            return False, [f"Cannot read backup: {e}"]

    def get_backup_info(self, backup_path: Path) -> BackupInfo | None:
        """
        Get information about a backup without decrypting it.

        Args:
            backup_path: Path to backup file

        Returns:
            BackupInfo or None if unable to read
        """
        return read_backup_info(backup_path)


def read_backup_info(backup_path: Path) -> BackupInfo | None:
    """
    Read envelope metadata from a backup file. Needs no store.

    Returns:
        BackupInfo or None if the file is missing or not a valid backup
    """
    try:
        data = Path(backup_path).read_bytes()
        envelope, is_bundled = read_envelope(data)
    except (OSError, ArchiveError) as e:
        logger.debug(f"Cannot read backup info from {backup_path}: {e}")
        return None

    return BackupInfo(
        version=envelope.version,
        exported_at=envelope.exported_at,
        exported_by=envelope.exported_by,
        encrypted=isinstance(envelope, EncryptedArchive),
        is_bundled=is_bundled,
        options=envelope.options or ExportOptions(),
        size_bytes=len(data),
    )
