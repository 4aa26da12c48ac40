"""
punt-backup - Backup export and import engine for Punt

Converts the full persisted state of a Punt installation into a portable
archive and restores such an archive back into a live store.

Key Features:
    - Bare JSON manifests or ZIP bundles carrying attachment and avatar files
    - Optional AES-256-GCM encryption with a password-derived key
    - Versioned schema validation of every untrusted archive
    - Wipe-and-replace restore in a single transaction, in foreign-key order
    - File restoration after commit with a report of missing files

Design Principles:
    - All-or-nothing: a failed import leaves the store untouched
    - Explicit handles: every operation receives the store it works on
    - Honest reporting: missing files are warnings, never silent
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from punt_backup.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
