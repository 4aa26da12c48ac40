"""
Mapping between exported records and store rows.

Each exported collection is described by a TableSpec: the Dataset attribute
it lives in, the table it is stored in, the record model, and every column
with the record field it comes from. Rows are always built column by column
from this list, so a field that is not listed can never leak into the store
and a column that is not listed can never leak into an export.

Column kinds:
    VALUE      stored as-is (strings, numbers, JSON text)
    TIMESTAMP  ISO-8601 text, normalised to UTC with millisecond precision
    BOOL       INTEGER 0/1 in the store, bool in records
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from punt_backup.backup.schema import (
    AttachmentRecord,
    ColumnRecord,
    CommentRecord,
    ExportRecord,
    InvitationRecord,
    LabelRecord,
    ProjectMemberRecord,
    ProjectRecord,
    ProjectSprintSettingsRecord,
    RoleRecord,
    SprintRecord,
    SystemSettingsRecord,
    TicketActivityRecord,
    TicketEditRecord,
    TicketLinkRecord,
    TicketRecord,
    TicketSprintHistoryRecord,
    TicketWatcherRecord,
    UserRecord,
)


class ColumnKind(Enum):
    VALUE = "value"
    TIMESTAMP = "timestamp"
    BOOL = "bool"


@dataclass(frozen=True)
class Column:
    """One stored column and the record field it maps to."""

    field: str
    kind: ColumnKind = ColumnKind.VALUE
    name: str | None = None

    @property
    def column(self) -> str:
        return self.name or self.field


def ts(field: str) -> Column:
    return Column(field, ColumnKind.TIMESTAMP)


def flag(field: str) -> Column:
    return Column(field, ColumnKind.BOOL)


@dataclass(frozen=True)
class TableSpec:
    """
    How one exported collection is stored.

    Attributes:
        key: Attribute name on Dataset (and ImportCounts).
        table: Table name in the store.
        model: Record model used to validate rows read back for export.
        columns: Every stored column, in table order.
        order_by: ORDER BY clause used when exporting.
    """

    key: str
    table: str
    model: type[ExportRecord]
    columns: tuple[Column, ...]
    order_by: str | None = None

    def to_row(
        self,
        record: ExportRecord,
        coerce_timestamp: Callable[[str, str], str],
    ) -> dict[str, Any]:
        """
        Build a row from a record, one listed column at a time.

        coerce_timestamp receives the raw value and the field name and
        returns the normalised text to store.
        """
        row: dict[str, Any] = {}
        for col in self.columns:
            value = getattr(record, col.field)
            if value is not None:
                if col.kind is ColumnKind.TIMESTAMP:
                    value = coerce_timestamp(value, col.field)
                elif col.kind is ColumnKind.BOOL:
                    value = int(bool(value))
            row[col.column] = value
        return row

    def from_row(self, row: dict[str, Any]) -> dict[str, Any]:
        """Build record fields (snake_case names) from a stored row."""
        fields: dict[str, Any] = {}
        for col in self.columns:
            value = row[col.column]
            if value is not None:
                if col.kind is ColumnKind.TIMESTAMP:
                    value = format_timestamp(parse_timestamp(value))
                elif col.kind is ColumnKind.BOOL:
                    value = bool(value)
            fields[col.field] = value
        return fields


def parse_timestamp(value: str) -> datetime:
    """
    Parse ISO-8601 text into an aware UTC datetime.

    Naive values are taken to be UTC already.

    Raises:
        ValueError: If the text is not ISO-8601.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way exports carry it: 2024-01-15T09:30:00.000Z."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


SYSTEM_SETTINGS = TableSpec(
    key="system_settings",
    table="system_settings",
    model=SystemSettingsRecord,
    columns=(
        Column("id"),
        ts("updated_at"),
        Column("updated_by"),
        Column("app_name"),
        Column("logo_url"),
        Column("logo_letter"),
        Column("logo_gradient_from"),
        Column("logo_gradient_to"),
        Column("max_image_size_mb"),
        Column("max_video_size_mb"),
        Column("max_document_size_mb"),
        Column("max_attachments_per_ticket"),
        Column("allowed_image_types"),
        Column("allowed_video_types"),
        Column("allowed_document_types"),
        flag("email_enabled"),
        Column("email_provider"),
        Column("email_from_address"),
        Column("email_from_name"),
        Column("smtp_host"),
        Column("smtp_port"),
        Column("smtp_username"),
        flag("smtp_secure"),
        flag("email_password_reset"),
        flag("email_welcome"),
        flag("email_verification"),
        flag("email_invitations"),
        Column("default_role_permissions"),
    ),
)

USERS = TableSpec(
    key="users",
    table="users",
    model=UserRecord,
    columns=(
        Column("id"),
        Column("username"),
        Column("email"),
        Column("name"),
        Column("avatar"),
        ts("created_at"),
        ts("updated_at"),
        ts("last_login_at"),
        Column("password_hash"),
        ts("password_changed_at"),
        ts("email_verified"),
        flag("is_system_admin"),
        flag("is_active"),
    ),
    order_by="created_at, id",
)

PROJECTS = TableSpec(
    key="projects",
    table="projects",
    model=ProjectRecord,
    columns=(
        Column("id"),
        Column("name"),
        Column("key"),
        Column("description"),
        Column("color"),
        ts("created_at"),
        ts("updated_at"),
    ),
    order_by="created_at, id",
)

ROLES = TableSpec(
    key="roles",
    table="roles",
    model=RoleRecord,
    columns=(
        Column("id"),
        Column("name"),
        Column("color"),
        Column("description"),
        Column("permissions"),
        flag("is_default"),
        Column("position"),
        Column("project_id"),
        ts("created_at"),
        ts("updated_at"),
    ),
    order_by="created_at, id",
)

COLUMNS = TableSpec(
    key="columns",
    table="board_columns",
    model=ColumnRecord,
    columns=(
        Column("id"),
        Column("name"),
        Column("order", name="sort_order"),
        Column("project_id"),
    ),
    order_by="sort_order, id",
)

LABELS = TableSpec(
    key="labels",
    table="labels",
    model=LabelRecord,
    columns=(
        Column("id"),
        Column("name"),
        Column("color"),
        Column("project_id"),
    ),
    order_by="name, id",
)

SPRINTS = TableSpec(
    key="sprints",
    table="sprints",
    model=SprintRecord,
    columns=(
        Column("id"),
        Column("name"),
        Column("goal"),
        ts("start_date"),
        ts("end_date"),
        Column("budget"),
        Column("status"),
        ts("completed_at"),
        Column("completed_by_id"),
        Column("completed_ticket_count"),
        Column("incomplete_ticket_count"),
        Column("completed_story_points"),
        Column("incomplete_story_points"),
        ts("created_at"),
        ts("updated_at"),
        Column("project_id"),
    ),
    order_by="created_at, id",
)

PROJECT_MEMBERS = TableSpec(
    key="project_members",
    table="project_members",
    model=ProjectMemberRecord,
    columns=(
        Column("id"),
        Column("role_id"),
        Column("overrides"),
        Column("user_id"),
        Column("project_id"),
        ts("created_at"),
        ts("updated_at"),
    ),
    order_by="created_at, id",
)

PROJECT_SPRINT_SETTINGS = TableSpec(
    key="project_sprint_settings",
    table="project_sprint_settings",
    model=ProjectSprintSettingsRecord,
    columns=(
        Column("id"),
        Column("project_id"),
        Column("default_sprint_duration"),
        flag("auto_carry_over_incomplete"),
        Column("done_column_ids"),
        ts("created_at"),
        ts("updated_at"),
    ),
)

# label_ids is not a column; labels are linked through ticket_labels
TICKETS = TableSpec(
    key="tickets",
    table="tickets",
    model=TicketRecord,
    columns=(
        Column("id"),
        Column("number"),
        Column("title"),
        Column("description"),
        Column("type"),
        Column("priority"),
        Column("order", name="sort_order"),
        Column("story_points"),
        Column("estimate"),
        ts("start_date"),
        ts("due_date"),
        ts("resolved_at"),
        ts("created_at"),
        ts("updated_at"),
        Column("environment"),
        Column("affected_version"),
        Column("fix_version"),
        Column("project_id"),
        Column("column_id"),
        Column("assignee_id"),
        Column("creator_id"),
        Column("sprint_id"),
        flag("is_carried_over"),
        Column("carried_from_sprint_id"),
        Column("carried_over_count"),
        Column("parent_id"),
    ),
    order_by="created_at, id",
)

TICKET_LINKS = TableSpec(
    key="ticket_links",
    table="ticket_links",
    model=TicketLinkRecord,
    columns=(
        Column("id"),
        Column("link_type"),
        Column("from_ticket_id"),
        Column("to_ticket_id"),
        ts("created_at"),
    ),
    order_by="created_at, id",
)

TICKET_WATCHERS = TableSpec(
    key="ticket_watchers",
    table="ticket_watchers",
    model=TicketWatcherRecord,
    columns=(
        Column("id"),
        ts("created_at"),
        Column("ticket_id"),
        Column("user_id"),
    ),
    order_by="created_at, id",
)

COMMENTS = TableSpec(
    key="comments",
    table="comments",
    model=CommentRecord,
    columns=(
        Column("id"),
        Column("content"),
        ts("created_at"),
        ts("updated_at"),
        Column("ticket_id"),
        Column("author_id"),
    ),
    order_by="created_at, id",
)

TICKET_EDITS = TableSpec(
    key="ticket_edits",
    table="ticket_edits",
    model=TicketEditRecord,
    columns=(
        Column("id"),
        Column("field"),
        Column("old_value"),
        Column("new_value"),
        ts("created_at"),
        Column("ticket_id"),
        Column("user_id"),
    ),
    order_by="created_at, id",
)

TICKET_ACTIVITIES = TableSpec(
    key="ticket_activities",
    table="ticket_activities",
    model=TicketActivityRecord,
    columns=(
        Column("id"),
        Column("ticket_id"),
        Column("user_id"),
        Column("action"),
        Column("field"),
        Column("old_value"),
        Column("new_value"),
        Column("group_id"),
        ts("created_at"),
    ),
    order_by="created_at, id",
)

ATTACHMENTS = TableSpec(
    key="attachments",
    table="attachments",
    model=AttachmentRecord,
    columns=(
        Column("id"),
        Column("filename"),
        Column("mime_type"),
        Column("size"),
        Column("url"),
        ts("created_at"),
        Column("ticket_id"),
        Column("uploader_id"),
    ),
    order_by="created_at, id",
)

TICKET_SPRINT_HISTORY = TableSpec(
    key="ticket_sprint_history",
    table="ticket_sprint_history",
    model=TicketSprintHistoryRecord,
    columns=(
        Column("id"),
        Column("ticket_id"),
        Column("sprint_id"),
        ts("added_at"),
        ts("removed_at"),
        Column("entry_type"),
        Column("exit_status"),
        Column("carried_from_sprint_id"),
    ),
    order_by="added_at, id",
)

INVITATIONS = TableSpec(
    key="invitations",
    table="invitations",
    model=InvitationRecord,
    columns=(
        Column("id"),
        Column("email"),
        Column("role"),
        Column("token"),
        ts("expires_at"),
        Column("status"),
        ts("created_at"),
        Column("sender_id"),
        Column("project_id"),
    ),
    order_by="created_at, id",
)

# Insert order. Every table appears after the tables it references.
TABLE_SPECS: tuple[TableSpec, ...] = (
    USERS,
    PROJECTS,
    ROLES,
    COLUMNS,
    LABELS,
    SPRINTS,
    PROJECT_MEMBERS,
    PROJECT_SPRINT_SETTINGS,
    TICKETS,
    TICKET_LINKS,
    TICKET_WATCHERS,
    COMMENTS,
    TICKET_EDITS,
    TICKET_ACTIVITIES,
    ATTACHMENTS,
    TICKET_SPRINT_HISTORY,
    INVITATIONS,
)
