"""
Relational storage for Punt data.

This module provides the SQLite store that backup import writes into and
backup export reads from. Every collection in an export maps to one table;
ticket labels live in a separate link table.

Storage Structure:
    data/
        punt.db                 # SQLite database

Usage:
    from punt_backup.storage import Store

    store = Store(Path("./data/punt.db"))
    with store.transaction(timeout_seconds=120) as tx:
        tx.insert("projects", row)
    stats = store.get_statistics()
"""

from punt_backup.storage.store import (
    DEPENDENCY_ORDER,
    SCHEMA_VERSION,
    StorageError,
    Store,
    Transaction,
    TransactionTimeoutError,
)

__all__ = [
    # Main store class
    "Store",
    "Transaction",
    "DEPENDENCY_ORDER",
    "SCHEMA_VERSION",
    # Exceptions
    "StorageError",
    "TransactionTimeoutError",
]
