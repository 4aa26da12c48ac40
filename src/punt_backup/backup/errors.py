"""
Exceptions raised while reading and restoring backup archives.

ArchiveError subclasses are raised before the store is touched; the caller
can fix the input (or the password) and retry. RestoreError subclasses are
raised from inside or around the import transaction, which has already been
rolled back when they reach the caller.
"""

from __future__ import annotations


class BackupError(Exception):
    """Base exception for backup and restore errors."""

    pass


class ArchiveError(BackupError):
    """The archive could not be read or validated."""

    pass


class OversizedInputError(ArchiveError):
    """Manifest text exceeds the maximum accepted size."""

    pass


class InvalidFormatError(ArchiveError):
    """Bytes or text are not valid structured data."""

    pass


class InvalidStructureError(ArchiveError):
    """Parsed data does not match the expected export schema."""

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class UnsupportedVersionError(ArchiveError):
    """Archive format version is not in the compatibility whitelist."""

    def __init__(self, version: str, supported: tuple[str, ...]) -> None:
        super().__init__(
            f"Incompatible export version: {version}. "
            f"Expected one of: {', '.join(supported)}"
        )
        self.version = version
        self.supported = supported


class PasswordRequiredError(ArchiveError):
    """Archive is encrypted but no password was supplied."""

    pass


class DecryptionFailedError(ArchiveError):
    """Wrong password or tampered ciphertext (deliberately not distinguished)."""

    pass


class ArchiveEntryMissingError(ArchiveError):
    """Bundled archive does not contain the manifest entry."""

    pass


class RestoreError(BackupError):
    """Error while writing an archive into the store."""

    pass


class ImportInProgressError(RestoreError):
    """Another import is already running against the same store."""

    pass


class ImportTimeoutError(RestoreError):
    """Import exceeded its time limit and was rolled back."""

    pass


class DateCoercionError(RestoreError):
    """A timestamp field could not be converted at insert time."""

    pass
