"""
Validation schema for exported data.

This is the only trust boundary for archive contents: everything downstream
assumes a payload that passed these models is well-typed. Referential
consistency (a ticket's label ids actually existing, for instance) is not
checked here; the importer deals with it at insert time.

Records use camelCase keys on the wire and snake_case attributes in Python.
Unknown keys are ignored so that exports from newer releases with extra
columns still validate.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from punt_backup.backup.errors import InvalidStructureError, UnsupportedVersionError

# Current format version written by the exporter
EXPORT_VERSION = "1.1.0"
# First public format; lacks ticketActivities
LEGACY_EXPORT_VERSION = "1.0.0"
COMPATIBLE_VERSIONS = (LEGACY_EXPORT_VERSION, EXPORT_VERSION)


def _check_timestamp(value: str) -> str:
    datetime.fromisoformat(value)
    return value


def _json_to_text(value: Any) -> Any:
    # Older exports carry JSON columns as strings, newer ones as native values
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


Timestamp = Annotated[str, AfterValidator(_check_timestamp)]
JsonText = Annotated[str, BeforeValidator(_json_to_text)]
Number = int | float


class ExportRecord(BaseModel):
    """Base for every exported record."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SystemSettingsRecord(ExportRecord):
    id: str
    updated_at: Timestamp
    updated_by: str | None
    app_name: str
    logo_url: str | None
    logo_letter: str
    logo_gradient_from: str
    logo_gradient_to: str
    max_image_size_mb: Number = Field(alias="maxImageSizeMB")
    max_video_size_mb: Number = Field(alias="maxVideoSizeMB")
    max_document_size_mb: Number = Field(alias="maxDocumentSizeMB")
    max_attachments_per_ticket: Number
    allowed_image_types: str
    allowed_video_types: str
    allowed_document_types: str
    email_enabled: bool
    email_provider: str
    email_from_address: str
    email_from_name: str
    smtp_host: str
    smtp_port: Number
    smtp_username: str
    smtp_secure: bool
    email_password_reset: bool
    email_welcome: bool
    email_verification: bool
    email_invitations: bool
    default_role_permissions: JsonText | None


class UserRecord(ExportRecord):
    id: str
    username: str
    email: str | None
    name: str
    avatar: str | None
    created_at: Timestamp
    updated_at: Timestamp
    last_login_at: Timestamp | None
    password_hash: str | None
    password_changed_at: Timestamp | None
    email_verified: Timestamp | None
    is_system_admin: bool
    is_active: bool


class ProjectRecord(ExportRecord):
    id: str
    name: str
    key: str
    description: str | None
    color: str
    created_at: Timestamp
    updated_at: Timestamp


class RoleRecord(ExportRecord):
    id: str
    name: str
    color: str
    description: str | None
    permissions: JsonText
    is_default: bool
    position: Number
    project_id: str
    created_at: Timestamp
    updated_at: Timestamp


class ColumnRecord(ExportRecord):
    id: str
    name: str
    order: Number
    project_id: str


class LabelRecord(ExportRecord):
    id: str
    name: str
    color: str
    project_id: str


class SprintRecord(ExportRecord):
    id: str
    name: str
    goal: str | None
    start_date: Timestamp | None
    end_date: Timestamp | None
    budget: Number | None
    status: str
    completed_at: Timestamp | None
    completed_by_id: str | None
    completed_ticket_count: Number | None
    incomplete_ticket_count: Number | None
    completed_story_points: Number | None
    incomplete_story_points: Number | None
    created_at: Timestamp
    updated_at: Timestamp
    project_id: str


class ProjectMemberRecord(ExportRecord):
    id: str
    role_id: str
    overrides: JsonText | None
    user_id: str
    project_id: str
    created_at: Timestamp
    updated_at: Timestamp


class ProjectSprintSettingsRecord(ExportRecord):
    id: str
    project_id: str
    default_sprint_duration: Number
    auto_carry_over_incomplete: bool
    done_column_ids: JsonText
    created_at: Timestamp
    updated_at: Timestamp


class TicketRecord(ExportRecord):
    id: str
    number: Number
    title: str
    description: str | None
    type: str
    priority: str
    order: Number
    story_points: Number | None
    estimate: str | None
    start_date: Timestamp | None
    due_date: Timestamp | None
    resolved_at: Timestamp | None = None
    created_at: Timestamp
    updated_at: Timestamp
    environment: str | None
    affected_version: str | None
    fix_version: str | None
    project_id: str
    column_id: str
    assignee_id: str | None
    creator_id: str | None
    sprint_id: str | None
    is_carried_over: bool
    carried_from_sprint_id: str | None
    carried_over_count: Number
    parent_id: str | None
    # Many-to-many, linked after every ticket and label exists
    label_ids: list[str] = Field(default_factory=list)


class TicketLinkRecord(ExportRecord):
    id: str
    link_type: str
    from_ticket_id: str
    to_ticket_id: str
    created_at: Timestamp


class TicketWatcherRecord(ExportRecord):
    id: str
    created_at: Timestamp
    ticket_id: str
    user_id: str


class CommentRecord(ExportRecord):
    id: str
    content: str
    created_at: Timestamp
    updated_at: Timestamp
    ticket_id: str
    author_id: str


class TicketEditRecord(ExportRecord):
    id: str
    field: str
    old_value: str | None
    new_value: str | None
    created_at: Timestamp
    ticket_id: str
    user_id: str


class TicketActivityRecord(ExportRecord):
    id: str
    ticket_id: str
    user_id: str | None
    action: str
    field: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    group_id: str | None = None
    created_at: Timestamp


class AttachmentRecord(ExportRecord):
    id: str
    filename: str
    mime_type: str
    size: Number
    url: str
    created_at: Timestamp
    ticket_id: str
    uploader_id: str | None


class TicketSprintHistoryRecord(ExportRecord):
    id: str
    ticket_id: str
    sprint_id: str
    added_at: Timestamp
    removed_at: Timestamp | None
    entry_type: str
    exit_status: str | None
    carried_from_sprint_id: str | None


class InvitationRecord(ExportRecord):
    id: str
    email: str
    role: str
    token: str
    expires_at: Timestamp
    status: str
    created_at: Timestamp
    sender_id: str | None
    project_id: str


class Dataset(ExportRecord):
    """Every exported collection. List order is the export order."""

    system_settings: SystemSettingsRecord | None = None
    users: list[UserRecord]
    projects: list[ProjectRecord]
    roles: list[RoleRecord]
    columns: list[ColumnRecord]
    labels: list[LabelRecord]
    sprints: list[SprintRecord]
    project_members: list[ProjectMemberRecord]
    project_sprint_settings: list[ProjectSprintSettingsRecord]
    tickets: list[TicketRecord]
    ticket_links: list[TicketLinkRecord]
    ticket_watchers: list[TicketWatcherRecord]
    comments: list[CommentRecord]
    ticket_edits: list[TicketEditRecord]
    # Absent from 1.0.0 exports
    ticket_activities: list[TicketActivityRecord] = Field(default_factory=list)
    attachments: list[AttachmentRecord]
    ticket_sprint_history: list[TicketSprintHistoryRecord]
    invitations: list[InvitationRecord]

    @classmethod
    def empty(cls) -> Dataset:
        """Create a dataset with no settings and no rows."""
        return cls(
            system_settings=None,
            users=[],
            projects=[],
            roles=[],
            columns=[],
            labels=[],
            sprints=[],
            project_members=[],
            project_sprint_settings=[],
            tickets=[],
            ticket_links=[],
            ticket_watchers=[],
            comments=[],
            ticket_edits=[],
            ticket_activities=[],
            attachments=[],
            ticket_sprint_history=[],
            invitations=[],
        )


class ExportOptions(ExportRecord):
    """Which optional file categories were bundled at export time."""

    include_attachments: bool = False
    include_avatars: bool = False


class _ArchiveHeader(ExportRecord):
    version: str
    exported_at: Timestamp
    exported_by: str | None = None
    options: ExportOptions | None = None


class PlainArchive(_ArchiveHeader):
    """Unencrypted envelope with the dataset embedded."""

    encrypted: Literal[False]
    data: Dataset


class EncryptedArchive(_ArchiveHeader):
    """Encrypted envelope; the dataset is inside the ciphertext."""

    encrypted: Literal[True]
    ciphertext: str
    salt: str
    # Written as "iv" by the first exporter
    nonce: str = Field(validation_alias=AliasChoices("nonce", "iv"))
    auth_tag: str


ArchiveEnvelope = PlainArchive | EncryptedArchive

_ENVELOPE_ADAPTER: TypeAdapter[ArchiveEnvelope] = TypeAdapter(ArchiveEnvelope)


def validate_envelope(data: Any) -> ArchiveEnvelope:
    """
    Validate the outer archive envelope.

    Raises:
        InvalidStructureError: If the data matches neither envelope shape.
    """
    try:
        return _ENVELOPE_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise InvalidStructureError(
            "Invalid export file structure",
            errors=e.errors(include_url=False),
        ) from e


def validate_dataset(data: Any) -> Dataset:
    """
    Validate a decrypted dataset.

    Raises:
        InvalidStructureError: If the data does not match the dataset schema.
    """
    try:
        return Dataset.model_validate(data)
    except ValidationError as e:
        raise InvalidStructureError(
            "Decrypted data has invalid structure",
            errors=e.errors(include_url=False),
        ) from e


def check_version(version: str) -> None:
    """
    Raises:
        UnsupportedVersionError: If the version is not whitelisted.
    """
    if version not in COMPATIBLE_VERSIONS:
        raise UnsupportedVersionError(version, COMPATIBLE_VERSIONS)
