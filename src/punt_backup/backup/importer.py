"""
Wipe-and-replace import of a validated dataset.

The whole import runs in one store transaction:

    1. Delete every row of every collection, children before parents
       (system settings are kept)
    2. Upsert the system settings singleton, if the dataset has one
    3. Insert every collection, parents before children
    4. Tickets in three passes: rows without parents, then parent links,
       then label links

Any exception rolls the transaction back and leaves the store exactly as it
was. Bundled files are written only after the transaction has committed.

Usage:
    from punt_backup.backup.importer import import_dataset

    result = import_dataset(store, parsed.dataset,
                            archive_bytes=parsed.raw_bytes,
                            export_options=parsed.export_options,
                            public_dir=Path("./public"))
    print(result.counts.tickets)
"""

from __future__ import annotations

import logging
from pathlib import Path

from punt_backup.backup.errors import (
    DateCoercionError,
    ImportInProgressError,
    ImportTimeoutError,
)
from punt_backup.backup.files import restore_files
from punt_backup.backup.models import FileRestorationReport, ImportCounts, ImportResult
from punt_backup.backup.schema import Dataset, ExportOptions, TicketRecord, UserRecord
from punt_backup.backup.tables import (
    SYSTEM_SETTINGS,
    TABLE_SPECS,
    TICKETS,
    format_timestamp,
    parse_timestamp,
)
from punt_backup.config.settings import DEFAULT_IMPORT_TIMEOUT_SECONDS
from punt_backup.storage.store import (
    DEPENDENCY_ORDER,
    Store,
    Transaction,
    TransactionTimeoutError,
)

logger = logging.getLogger(__name__)


def import_dataset(
    store: Store,
    dataset: Dataset,
    *,
    archive_bytes: bytes | None = None,
    export_options: ExportOptions | None = None,
    public_dir: Path | str | None = None,
    timeout_seconds: float = DEFAULT_IMPORT_TIMEOUT_SECONDS,
) -> ImportResult:
    """
    Replace the entire contents of a store with a dataset.

    Args:
        store: Destination store.
        dataset: Validated dataset to import.
        archive_bytes: ZIP bytes of a bundled backup. Enables file restoration.
        export_options: Options recorded in the archive. Decide which file
            categories are expected in the bundle.
        public_dir: Directory that file URLs resolve against. Required when
            archive_bytes is given.
        timeout_seconds: Time limit for the transaction.

    Returns:
        ImportResult with per-category counts and a file restoration report.

    Raises:
        ImportInProgressError: Another import holds this store.
        ImportTimeoutError: The transaction ran past timeout_seconds.
        DateCoercionError: A timestamp could not be converted.
        sqlite3.Error: Any constraint or database failure, after rollback.
    """
    if archive_bytes is not None and public_dir is None:
        raise ValueError("public_dir is required to restore bundled files")

    options = export_options or ExportOptions()

    if not store.import_lock.acquire(blocking=False):
        raise ImportInProgressError("Another import is already running on this store")

    try:
        if options.include_avatars and archive_bytes is None:
            # Avatar files cannot be restored without a bundle
            dataset = dataset.model_copy(
                update={"users": [_without_avatar(user) for user in dataset.users]}
            )

        logger.info(f"Starting import into {store.db_path}")

        try:
            with store.transaction(timeout_seconds=timeout_seconds) as tx:
                _wipe(tx)
                counts = _insert_dataset(tx, dataset)
        except TransactionTimeoutError as e:
            raise ImportTimeoutError(
                f"Import exceeded the {timeout_seconds}s time limit and was rolled back"
            ) from e

        logger.info(
            f"Import committed: {counts.total} rows "
            f"({counts.users} users, {counts.projects} projects, "
            f"{counts.tickets} tickets)"
        )

        files = FileRestorationReport()
        if archive_bytes is not None and public_dir is not None:
            files = restore_files(archive_bytes, dataset, options, Path(public_dir))

        return ImportResult(counts=counts, files=files)
    finally:
        store.import_lock.release()


def _without_avatar(user: UserRecord) -> UserRecord:
    return UserRecord(
        id=user.id,
        username=user.username,
        email=user.email,
        name=user.name,
        avatar=None,
        created_at=user.created_at,
        updated_at=user.updated_at,
        last_login_at=user.last_login_at,
        password_hash=user.password_hash,
        password_changed_at=user.password_changed_at,
        email_verified=user.email_verified,
        is_system_admin=user.is_system_admin,
        is_active=user.is_active,
    )


def _wipe(tx: Transaction) -> None:
    """Delete every row, children before parents."""
    for table in reversed(DEPENDENCY_ORDER):
        deleted = tx.delete_all(table)
        if deleted:
            logger.debug(f"Deleted {deleted} rows from {table}")


def _coerce_timestamp(value: str, field_name: str) -> str:
    try:
        return format_timestamp(parse_timestamp(value))
    except (TypeError, ValueError, OverflowError) as e:
        raise DateCoercionError(f"Invalid timestamp in {field_name}: {value!r}") from e


def _insert_dataset(tx: Transaction, dataset: Dataset) -> ImportCounts:
    counts = ImportCounts()

    if dataset.system_settings is not None:
        tx.upsert(
            SYSTEM_SETTINGS.table,
            SYSTEM_SETTINGS.to_row(dataset.system_settings, _coerce_timestamp),
        )
        counts.system_settings = 1

    for spec in TABLE_SPECS:
        records = getattr(dataset, spec.key)
        if spec is TICKETS:
            _insert_tickets(tx, records)
        else:
            for record in records:
                tx.insert(spec.table, spec.to_row(record, _coerce_timestamp))
        setattr(counts, spec.key, len(records))
        logger.debug(f"Inserted {len(records)} {spec.key}")

    return counts


def _insert_tickets(tx: Transaction, tickets: list[TicketRecord]) -> None:
    """
    Insert tickets so that parent links never point at a missing row.

    Pass one inserts every ticket with no parent, so the order of the list
    does not matter. Pass two restores parent links. Pass three links
    labels; unknown label ids are skipped.
    """
    for ticket in tickets:
        row = TICKETS.to_row(ticket, _coerce_timestamp)
        row["parent_id"] = None
        tx.insert(TICKETS.table, row)

    for ticket in tickets:
        if ticket.parent_id:
            tx.execute(
                "UPDATE tickets SET parent_id = ? WHERE id = ?",
                (ticket.parent_id, ticket.id),
            )

    skipped = 0
    for ticket in tickets:
        for label_id in dict.fromkeys(ticket.label_ids):
            cursor = tx.execute(
                "INSERT OR IGNORE INTO ticket_labels (ticket_id, label_id) "
                "SELECT ?, id FROM labels WHERE id = ?",
                (ticket.id, label_id),
            )
            if cursor.rowcount == 0:
                skipped += 1
                logger.debug(f"Ticket {ticket.id}: label {label_id} not found, skipped")

    if skipped:
        logger.warning(f"Skipped {skipped} ticket label links to unknown labels")
