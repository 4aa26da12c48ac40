"""
Result models for backup import.

Schema Design Decisions:
    - Counts exist for every category and default to zero
    - Missing file paths are kept in the order they were encountered
    - to_dict() uses camelCase keys to match the archive format
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class ImportCounts:
    """
    Rows inserted per category.

    system_settings is 1 when the singleton was upserted, 0 otherwise.
    """

    system_settings: int = 0
    users: int = 0
    projects: int = 0
    roles: int = 0
    columns: int = 0
    labels: int = 0
    sprints: int = 0
    project_members: int = 0
    project_sprint_settings: int = 0
    tickets: int = 0
    ticket_links: int = 0
    ticket_watchers: int = 0
    comments: int = 0
    ticket_edits: int = 0
    ticket_activities: int = 0
    attachments: int = 0
    ticket_sprint_history: int = 0
    invitations: int = 0

    @property
    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary with camelCase keys."""
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}


@dataclass
class FileRestorationReport:
    """
    Outcome of restoring bundled files after an import.

    Attributes:
        attachments_restored: Attachment files written to disk.
        attachments_missing: Attachment files absent from the bundle or
            not writable.
        avatars_restored: Avatar files written to disk.
        avatars_missing: Avatar files absent from the bundle or not writable.
        missing_files: URL paths of every missing file.
    """

    attachments_restored: int = 0
    attachments_missing: int = 0
    avatars_restored: int = 0
    avatars_missing: int = 0
    missing_files: list[str] = field(default_factory=list)

    @property
    def has_missing(self) -> bool:
        return bool(self.missing_files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attachmentsRestored": self.attachments_restored,
            "attachmentsMissing": self.attachments_missing,
            "avatarsRestored": self.avatars_restored,
            "avatarsMissing": self.avatars_missing,
            "missingFiles": list(self.missing_files),
        }


@dataclass
class ImportResult:
    """Result of a committed import."""

    counts: ImportCounts = field(default_factory=ImportCounts)
    files: FileRestorationReport = field(default_factory=FileRestorationReport)
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "counts": self.counts.to_dict(),
            "files": self.files.to_dict(),
        }
