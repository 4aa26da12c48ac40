"""
Export of the full store into a backup archive.

Collections are read in the same parent-before-child order the importer
writes them, so an export can always be imported back. Two output forms:

    - Bare manifest: the JSON envelope on its own
    - Bundle: a ZIP with backup.json and, when requested, the referenced
      attachment and avatar files under files/

Usage:
    from punt_backup.backup.exporter import create_export_zip

    content, manifest = create_export_zip(store, "user-1", Path("./public"),
                                          include_attachments=True)
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

from punt_backup.backup.codec import FILES_PREFIX, MANIFEST_ENTRY
from punt_backup.backup.crypto import encrypt
from punt_backup.backup.files import resolve_public_path
from punt_backup.backup.schema import EXPORT_VERSION, Dataset, SystemSettingsRecord
from punt_backup.backup.tables import (
    SYSTEM_SETTINGS,
    TABLE_SPECS,
    TICKETS,
    format_timestamp,
)
from punt_backup.storage.store import Store

logger = logging.getLogger(__name__)


@dataclass
class FileEntry:
    """A file referenced by the dataset and whether it was found on disk."""

    url: str
    exists: bool


@dataclass
class FileManifest:
    """Files considered for a bundle, per category."""

    attachments: list[FileEntry] = field(default_factory=list)
    avatars: list[FileEntry] = field(default_factory=list)

    @property
    def missing(self) -> list[str]:
        return [entry.url for entry in self.attachments + self.avatars if not entry.exists]

    def to_dict(self) -> dict[str, Any]:
        return {
            "attachments": [{"url": e.url, "exists": e.exists} for e in self.attachments],
            "avatars": [{"url": e.url, "exists": e.exists} for e in self.avatars],
        }


def export_dataset(store: Store) -> Dataset:
    """Read every collection from the store into a Dataset."""
    settings_rows = store.fetch_all(SYSTEM_SETTINGS.table)
    system_settings = None
    if settings_rows:
        system_settings = SystemSettingsRecord.model_validate(
            SYSTEM_SETTINGS.from_row(settings_rows[0])
        )

    labels_by_ticket: dict[str, list[str]] = defaultdict(list)
    for link in store.fetch_all("ticket_labels", order_by="ticket_id, label_id"):
        labels_by_ticket[link["ticket_id"]].append(link["label_id"])

    collections: dict[str, list[Any]] = {}
    for spec in TABLE_SPECS:
        records = []
        for row in store.fetch_all(spec.table, order_by=spec.order_by):
            fields = spec.from_row(row)
            if spec is TICKETS:
                fields["label_ids"] = labels_by_ticket.get(row["id"], [])
            records.append(spec.model.model_validate(fields))
        collections[spec.key] = records

    return Dataset(system_settings=system_settings, **collections)


def build_envelope(
    dataset: Dataset,
    exported_by: str | None,
    include_attachments: bool = False,
    include_avatars: bool = False,
    password: str | None = None,
    exported_at: datetime | None = None,
) -> dict[str, Any]:
    """
    Wrap a dataset in an archive envelope.

    With a password the dataset is serialized, encrypted and replaced by the
    ciphertext fields; without one it is embedded as "data".
    """
    envelope: dict[str, Any] = {
        "version": EXPORT_VERSION,
        "exportedAt": format_timestamp(exported_at or datetime.now(UTC)),
        "exportedBy": exported_by,
        "options": {
            "includeAttachments": include_attachments,
            "includeAvatars": include_avatars,
        },
    }

    data = dataset.model_dump(mode="json", by_alias=True)

    if password:
        payload = encrypt(json.dumps(data), password)
        envelope["encrypted"] = True
        envelope.update(payload.to_dict())
    else:
        envelope["encrypted"] = False
        envelope["data"] = data

    return envelope


def create_export_json(
    store: Store,
    exported_by: str | None,
    password: str | None = None,
) -> str:
    """Export the store as a bare manifest (no files)."""
    envelope = build_envelope(export_dataset(store), exported_by, password=password)
    return json.dumps(envelope, indent=2)


def create_export_zip(
    store: Store,
    exported_by: str | None,
    public_dir: Path,
    include_attachments: bool = False,
    include_avatars: bool = False,
    password: str | None = None,
) -> tuple[bytes, FileManifest]:
    """
    Export the store as a ZIP bundle.

    Args:
        store: Source store.
        exported_by: Id recorded as the exporting user.
        public_dir: Directory that file URLs resolve against.
        include_attachments: Bundle attachment files.
        include_avatars: Bundle user avatar files.
        password: Encrypt the manifest's dataset with this password.

    Returns:
        Tuple of (zip_bytes, file_manifest).
    """
    dataset = export_dataset(store)
    envelope = build_envelope(
        dataset,
        exported_by,
        include_attachments=include_attachments,
        include_avatars=include_avatars,
        password=password,
    )

    manifest = FileManifest()
    buffer = io.BytesIO()

    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(MANIFEST_ENTRY, json.dumps(envelope, indent=2))

        written: set[str] = set()

        if include_attachments:
            for attachment in dataset.attachments:
                if attachment.url:
                    exists = _add_file(zf, public_dir, attachment.url, written)
                    manifest.attachments.append(FileEntry(attachment.url, exists))

        if include_avatars:
            for user in dataset.users:
                if user.avatar:
                    exists = _add_file(zf, public_dir, user.avatar, written)
                    manifest.avatars.append(FileEntry(user.avatar, exists))

    content = buffer.getvalue()

    missing = manifest.missing
    if missing:
        logger.warning(f"{len(missing)} referenced files not found on disk")
    logger.info(
        f"Export bundle created: {len(content):,} bytes, "
        f"{len(written)} files included"
    )

    return content, manifest


def generate_export_filename(include_files: bool, today: date | None = None) -> str:
    """Default file name for an export, e.g. punt-backup-2024-01-15.zip."""
    today = today or datetime.now(UTC).date()
    extension = "zip" if include_files else "json"
    return f"punt-backup-{today.isoformat()}.{extension}"


def _add_file(
    zf: zipfile.ZipFile,
    public_dir: Path,
    url: str,
    written: set[str],
) -> bool:
    path = resolve_public_path(public_dir, url)
    if path is None or not path.is_file():
        return False

    arcname = FILES_PREFIX + url.lstrip("/")
    if arcname not in written:
        zf.write(path, arcname=arcname)
        written.add(arcname)
    return True
