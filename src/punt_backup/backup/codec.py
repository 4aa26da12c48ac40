"""
Archive container detection and parsing.

A backup arrives either as a bare manifest (UTF-8 JSON text) or as a ZIP
bundle holding the manifest under backup.json plus the attachment and avatar
files under files/. Both paths end in the same manifest parser.

Parsing order (each step raises its own ArchiveError subclass):
    1. Bundle: open the ZIP and read backup.json
    2. Size ceiling on the manifest bytes, before any decoding
    3. UTF-8 decode and JSON parse
    4. Envelope validation
    5. Version whitelist
    6. Decryption and dataset validation (encrypted archives only)
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Any

from punt_backup.backup.crypto import EncryptedPayload, decrypt
from punt_backup.backup.errors import (
    ArchiveEntryMissingError,
    ArchiveError,
    InvalidFormatError,
    OversizedInputError,
    PasswordRequiredError,
)
from punt_backup.backup.schema import (
    ArchiveEnvelope,
    Dataset,
    EncryptedArchive,
    ExportOptions,
    check_version,
    validate_dataset,
    validate_envelope,
)

logger = logging.getLogger(__name__)

# Local file header signature of a ZIP archive
ZIP_MAGIC = b"PK\x03\x04"

MANIFEST_ENTRY = "backup.json"
FILES_PREFIX = "files/"

# 500 MiB of manifest text
MAX_MANIFEST_SIZE = 500 * 1024 * 1024


class ContainerKind(Enum):
    """Container format of a backup."""

    BARE_MANIFEST = "bare-manifest"
    BUNDLED_ARCHIVE = "bundled-archive"


@dataclass
class ParsedBackup:
    """
    A fully validated backup, ready for import.

    Attributes:
        dataset: The validated dataset (decrypted if it was encrypted).
        export_options: Which file categories were bundled at export time.
        exported_at: Export timestamp from the envelope.
        is_bundled: True if the input was a ZIP bundle.
        version: Archive format version.
        exported_by: Id of the exporting user, if recorded.
        encrypted: True if the dataset was decrypted from the envelope.
        raw_bytes: The ZIP bytes, kept for file restoration. None for bare
            manifests.
    """

    dataset: Dataset
    export_options: ExportOptions
    exported_at: str
    is_bundled: bool
    version: str
    exported_by: str | None = None
    encrypted: bool = False
    raw_bytes: bytes | None = None


def classify(data: bytes) -> ContainerKind:
    """Detect the container format from the first four bytes."""
    if data[:4] == ZIP_MAGIC:
        return ContainerKind.BUNDLED_ARCHIVE
    return ContainerKind.BARE_MANIFEST


def read_manifest(
    data: bytes | str,
    max_size: int = MAX_MANIFEST_SIZE,
) -> tuple[bytes, bool]:
    """
    Get the manifest bytes out of a backup.

    Returns:
        Tuple of (manifest_bytes, is_bundled).

    Raises:
        InvalidFormatError: If a bundle is not a readable ZIP.
        ArchiveEntryMissingError: If a bundle has no backup.json.
        OversizedInputError: If the manifest exceeds max_size bytes.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    if classify(data) is ContainerKind.BARE_MANIFEST:
        _check_size(len(data), max_size)
        return data, False

    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            try:
                info = zf.getinfo(MANIFEST_ENTRY)
            except KeyError:
                raise ArchiveEntryMissingError(
                    f"Invalid backup: {MANIFEST_ENTRY} not found in archive"
                ) from None

            # Declared size first, so a huge entry is never inflated
            _check_size(info.file_size, max_size)
            manifest = zf.read(info)
    except (zipfile.BadZipFile, zlib.error, RuntimeError) as e:
        raise InvalidFormatError(f"Invalid backup archive: {e}") from e

    _check_size(len(manifest), max_size)
    return manifest, True


def read_envelope(
    data: bytes | str,
    max_size: int = MAX_MANIFEST_SIZE,
) -> tuple[ArchiveEnvelope, bool]:
    """
    Read and validate the outer envelope without decrypting anything.

    Returns:
        Tuple of (envelope, is_bundled).

    Raises:
        ArchiveError: Any container, format, structure or version failure.
    """
    manifest, is_bundled = read_manifest(data, max_size)
    envelope = validate_envelope(_load_json(manifest, "Invalid JSON format"))
    check_version(envelope.version)
    return envelope, is_bundled


def parse(
    data: bytes | str,
    password: str | None = None,
    max_size: int = MAX_MANIFEST_SIZE,
) -> ParsedBackup:
    """
    Parse and validate a backup.

    Args:
        data: Raw backup bytes (bare manifest or ZIP bundle), or manifest text.
        password: Password for encrypted archives. An empty string counts as
            no password.
        max_size: Ceiling on manifest size in bytes.

    Returns:
        ParsedBackup with a validated dataset.

    Raises:
        OversizedInputError: Manifest larger than max_size.
        InvalidFormatError: Not a readable ZIP, not UTF-8, or not JSON.
        InvalidStructureError: Envelope or dataset does not match the schema.
        UnsupportedVersionError: Version not in the whitelist.
        PasswordRequiredError: Encrypted archive without a password.
        DecryptionFailedError: Wrong password or tampered ciphertext.
        ArchiveEntryMissingError: Bundle without backup.json.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    envelope, is_bundled = read_envelope(data, max_size)

    if isinstance(envelope, EncryptedArchive):
        if not password:
            raise PasswordRequiredError(
                "This backup is encrypted. A password is required to import it."
            )
        payload = EncryptedPayload(
            ciphertext=envelope.ciphertext,
            salt=envelope.salt,
            nonce=envelope.nonce,
            auth_tag=envelope.auth_tag,
        )
        plaintext = decrypt(payload, password)
        dataset = validate_dataset(
            _load_json(plaintext.encode("utf-8"), "Decrypted data is not valid JSON")
        )
        encrypted = True
    else:
        dataset = envelope.data
        encrypted = False

    logger.debug(
        f"Parsed {'bundled' if is_bundled else 'bare'} backup "
        f"version {envelope.version} exported at {envelope.exported_at}"
    )

    return ParsedBackup(
        dataset=dataset,
        export_options=envelope.options or ExportOptions(),
        exported_at=envelope.exported_at,
        is_bundled=is_bundled,
        version=envelope.version,
        exported_by=envelope.exported_by,
        encrypted=encrypted,
        raw_bytes=data if is_bundled else None,
    )


def is_export_encrypted(data: bytes | str) -> bool:
    """
    Check whether a backup declares itself encrypted.

    Only looks at the raw "encrypted" flag; never raises.
    """
    try:
        manifest, _ = read_manifest(data)
        obj = json.loads(manifest)
    except (ArchiveError, ValueError, RecursionError):
        return False
    return isinstance(obj, dict) and obj.get("encrypted") is True


def _check_size(size: int, max_size: int) -> None:
    if size > max_size:
        raise OversizedInputError(
            f"Backup manifest is too large: {size:,} bytes "
            f"(maximum {max_size:,} bytes)"
        )


def _load_json(raw: bytes, message: str) -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise InvalidFormatError(f"{message}: {e}") from e
