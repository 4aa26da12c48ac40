"""
Restoration of bundled attachment and avatar files.

Runs after the import transaction has committed and never raises for a
single file: every attachment or avatar that cannot be restored is counted
and listed as missing, and the rest carry on.

Bundle layout:
    backup.json
    files/
        uploads/attachments/abc.png     -> {public_dir}/uploads/attachments/abc.png
        uploads/avatars/u1.webp         -> {public_dir}/uploads/avatars/u1.webp

The entry name minus the files/ prefix is the public URL path the records
reference, so "/uploads/avatars/u1.webp" is looked up as
"files/uploads/avatars/u1.webp".
"""

from __future__ import annotations

import io
import logging
import os
import zipfile
import zlib
from pathlib import Path

from punt_backup.backup.codec import FILES_PREFIX
from punt_backup.backup.models import FileRestorationReport
from punt_backup.backup.schema import Dataset, ExportOptions

logger = logging.getLogger(__name__)


def build_file_index(zf: zipfile.ZipFile) -> dict[str, zipfile.ZipInfo]:
    """Map public URL paths to the bundle entries that hold them."""
    index: dict[str, zipfile.ZipInfo] = {}
    for info in zf.infolist():
        name = info.filename
        if not name.startswith(FILES_PREFIX) or info.is_dir():
            continue
        index["/" + name[len(FILES_PREFIX):]] = info
    return index


def resolve_public_path(public_dir: Path, url: str) -> Path | None:
    """
    Resolve a URL path to a destination under public_dir.

    Returns None when the path would land outside public_dir.
    """
    root = os.path.abspath(public_dir)
    dest = os.path.abspath(os.path.join(root, url.lstrip("/")))
    if not dest.startswith(root + os.sep):
        return None
    return Path(dest)


def restore_files(
    archive_bytes: bytes,
    dataset: Dataset,
    export_options: ExportOptions,
    public_dir: Path,
) -> FileRestorationReport:
    """
    Write the files referenced by a dataset out of a bundle.

    Attachments are restored only if the export included them, avatars only
    if the export included avatars.

    Args:
        archive_bytes: The ZIP bundle.
        dataset: The imported dataset.
        export_options: Options recorded at export time.
        public_dir: Directory that URL paths resolve against.

    Returns:
        FileRestorationReport with restored/missing counts and missing paths.
    """
    report = FileRestorationReport()

    try:
        zf = zipfile.ZipFile(io.BytesIO(archive_bytes))
    except zipfile.BadZipFile as e:
        logger.warning(f"Cannot open bundle for file restoration: {e}")
        zf = None

    try:
        index = build_file_index(zf) if zf is not None else {}

        if export_options.include_attachments:
            for attachment in dataset.attachments:
                if not attachment.url:
                    continue
                if _restore_one(zf, index, attachment.url, public_dir):
                    report.attachments_restored += 1
                else:
                    report.attachments_missing += 1
                    report.missing_files.append(attachment.url)

        if export_options.include_avatars:
            for user in dataset.users:
                if not user.avatar:
                    continue
                if _restore_one(zf, index, user.avatar, public_dir):
                    report.avatars_restored += 1
                else:
                    report.avatars_missing += 1
                    report.missing_files.append(user.avatar)
    finally:
        if zf is not None:
            zf.close()

    if report.has_missing:
        logger.warning(f"{len(report.missing_files)} files could not be restored")
    logger.info(
        f"Restored {report.attachments_restored} attachments, "
        f"{report.avatars_restored} avatars"
    )

    return report


def _restore_one(
    zf: zipfile.ZipFile | None,
    index: dict[str, zipfile.ZipInfo],
    url: str,
    public_dir: Path,
) -> bool:
    info = index.get(url)
    if zf is None or info is None:
        logger.debug(f"Not in bundle: {url}")
        return False

    dest = resolve_public_path(public_dir, url)
    if dest is None:
        logger.warning(f"Refusing to restore outside the public directory: {url}")
        return False

    try:
        content = zf.read(info)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)
    except (OSError, zipfile.BadZipFile, zlib.error, RuntimeError) as e:
        logger.warning(f"Failed to restore {url}: {e}")
        return False

    return True
