"""
Command-line interface for punt-backup.

Provides commands to export the store to a backup file, import a backup
into the store, and inspect a backup without importing it.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

from punt_backup import __version__
from punt_backup.config.settings import (
    ConfigurationError,
    Settings,
    load_config,
)

if TYPE_CHECKING:
    from punt_backup.backup.manager import BackupManager

# Set up logging
logger = logging.getLogger(__name__)

# Typed by the operator before an import wipes the store
CONFIRMATION_TEXT = "DELETE ALL DATA"

# Global verbosity setting (set during main() based on args)
_quiet_mode = False


def set_output_mode(quiet: bool = False) -> None:
    """Set the output mode for the CLI."""
    global _quiet_mode
    _quiet_mode = quiet


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the punt-backup CLI."""
    parser = argparse.ArgumentParser(
        prog="punt-backup",
        description="Export and import full backups of a Punt installation",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"punt-backup {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.punt-backup/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Export the store to a backup file",
        description="Write every collection to a JSON manifest, or a ZIP bundle when files are included.",
    )
    export_parser.add_argument(
        "--output",
        "-o",
        metavar="PATH",
        help="Output file or directory (default: export.output_dir from config)",
    )
    export_parser.add_argument(
        "--include-attachments",
        action="store_true",
        default=None,
        dest="include_attachments",
        help="Bundle attachment files (produces a ZIP)",
    )
    export_parser.add_argument(
        "--include-avatars",
        action="store_true",
        default=None,
        dest="include_avatars",
        help="Bundle user avatar files (produces a ZIP)",
    )
    export_parser.add_argument(
        "--encrypt",
        action="store_true",
        help="Encrypt the backup (prompts for a password)",
    )
    export_parser.add_argument(
        "--password",
        metavar="PASSWORD",
        help="Encrypt the backup with this password",
    )
    export_parser.add_argument(
        "--exported-by",
        metavar="ID",
        dest="exported_by",
        help="User id recorded in the backup (default: export.exported_by from config)",
    )
    export_parser.add_argument(
        "--public-dir",
        metavar="PATH",
        dest="public_dir",
        help="Directory that file URLs resolve against (default: from config)",
    )
    export_parser.set_defaults(func=cmd_export)

    # import command
    import_parser = subparsers.add_parser(
        "import",
        help="Replace the store contents with a backup",
        description="Wipe the store and import every collection from a backup file.",
    )
    import_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup file (.json or .zip)",
    )
    import_parser.add_argument(
        "--password",
        metavar="PASSWORD",
        help="Password for encrypted backups (prompted for if needed)",
    )
    import_parser.add_argument(
        "--public-dir",
        metavar="PATH",
        dest="public_dir",
        help="Directory to restore bundled files into (default: from config)",
    )
    import_parser.add_argument(
        "--verify-only",
        action="store_true",
        dest="verify_only",
        help="Validate the backup without importing it",
    )
    import_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip the confirmation prompt",
    )
    import_parser.set_defaults(func=cmd_import)

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show information about a backup file",
        description="Display version, export time, encryption and bundled options of a backup.",
    )
    info_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup file",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config) if args.config else None
    settings = load_config(config_path)

    # Explicit -v/-q wins over the configured level
    if not args.verbose and not args.quiet:
        logging.getLogger("punt_backup").setLevel(settings.log_level)

    return settings


def _create_manager(args: argparse.Namespace, settings: Settings) -> BackupManager:
    from punt_backup.backup import BackupManager
    from punt_backup.storage import Store

    public_dir = Path(args.public_dir) if getattr(args, "public_dir", None) else Path(settings.public_dir)
    store = Store(settings.database_path)
    return BackupManager(
        store,
        public_dir,
        import_timeout_seconds=settings.restore.timeout_seconds,
    )


def _prompt_new_password() -> str | None:
    while True:
        password = getpass.getpass("Backup password: ")
        if not password:
            output_error("Error: Password must not be empty.")
            continue

        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            output_error("Error: Passwords do not match.")
            continue

        return password


def cmd_export(args: argparse.Namespace) -> int:
    """Export the store to a backup file."""
    settings = _load_settings(args)
    manager = _create_manager(args, settings)

    include_attachments = (
        settings.export.include_attachments
        if args.include_attachments is None
        else args.include_attachments
    )
    include_avatars = (
        settings.export.include_avatars
        if args.include_avatars is None
        else args.include_avatars
    )
    exported_by = args.exported_by or settings.export.exported_by
    output_path = Path(args.output) if args.output else Path(settings.export.output_dir)

    password = args.password
    if args.encrypt and not password:
        password = _prompt_new_password()

    output("Punt Backup Export")
    output("=" * 50)
    output()
    output(f"Database: {settings.database_path}")
    output(f"Output: {output_path}")
    output(f"Include attachments: {include_attachments}")
    output(f"Include avatars: {include_avatars}")
    output(f"Encrypted: {bool(password)}")
    output()

    output("Creating backup...")
    result = manager.create_backup(
        output_path=output_path,
        exported_by=exported_by,
        include_attachments=include_attachments,
        include_avatars=include_avatars,
        password=password,
    )

    if not result.success:
        output()
        output_error(f"Export failed: {result.error}")
        return 1

    output()
    output("Backup created successfully!")
    output()
    output(f"  File: {result.path}")
    output(f"  Size: {result.size_bytes:,} bytes ({result.size_bytes / 1024 / 1024:.2f} MB)")
    if result.file_manifest:
        manifest = result.file_manifest
        output(f"  Attachments: {len(manifest.attachments)}")
        output(f"  Avatars: {len(manifest.avatars)}")
        for url in manifest.missing:
            output(f"  Warning: file not found on disk: {url}")
    output()
    output("To restore from this backup, run:")
    output(f"  punt-backup import {result.path}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import a backup, replacing all data in the store."""
    from punt_backup.backup.codec import is_export_encrypted

    backup_path = Path(args.backup_file)

    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1

    settings = _load_settings(args)
    manager = _create_manager(args, settings)

    output("Punt Backup Import")
    output("=" * 50)
    output()
    output(f"Backup file: {backup_path}")
    output()

    info = manager.get_backup_info(backup_path)
    if info:
        output("Backup information:")
        output(f"  Exported: {info.exported_at}")
        output(f"  Version: {info.version}")
        output(f"  Encrypted: {info.encrypted}")
        output(f"  Bundled files: {info.is_bundled}")
        output()

    password = args.password
    if not password and is_export_encrypted(backup_path.read_bytes()):
        password = getpass.getpass("Backup password: ")

    output("Verifying backup...")
    valid, errors = manager.verify_backup(backup_path, password=password)

    if not valid:
        output()
        output_error("Backup verification failed:")
        for error in errors:
            output_error(f"  - {error}")
        return 1

    output("Backup verified successfully.")
    output()

    if args.verify_only:
        output("Verification complete (--verify-only specified)")
        return 0

    if not args.force:
        output(f"WARNING: This will permanently delete ALL data in {settings.database_path}")
        output("and replace it with the contents of the backup.")
        output()
        response = input(f'Type "{CONFIRMATION_TEXT}" to proceed: ').strip()
        if response != CONFIRMATION_TEXT:
            output("Import cancelled.")
            return 0

    output()
    output("Importing...")
    result = manager.restore_backup(backup_path, password=password)

    if not result.success:
        output()
        output_error(f"Import failed: {result.error}")
        output_error("The store has not been changed.")
        return 1

    output()
    output("Import completed successfully!")
    output()
    if result.import_result:
        for category, count in result.import_result.counts.to_dict().items():
            if count:
                output(f"  {category}: {count}")
        files = result.import_result.files
        if info and info.is_bundled:
            output(f"  Attachment files restored: {files.attachments_restored}")
            output(f"  Avatar files restored: {files.avatars_restored}")
    for warning in result.warnings:
        output(f"  Warning: {warning}")
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Show information about a backup file."""
    from punt_backup.backup import read_backup_info

    backup_path = Path(args.backup_file)

    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1

    # Configured log level only; info never opens the store
    _load_settings(args)

    info = read_backup_info(backup_path)
    if info is None:
        output_error(f"Error: Not a readable Punt backup: {backup_path}")
        return 1

    if args.json:
        output(json.dumps(info.to_dict(), indent=2), force=True)
        return 0

    output(f"Backup: {backup_path}")
    output(f"  Version: {info.version}")
    output(f"  Exported: {info.exported_at}")
    if info.exported_by:
        output(f"  Exported by: {info.exported_by}")
    output(f"  Encrypted: {info.encrypted}")
    output(f"  Bundled files: {info.is_bundled}")
    output(f"  Includes attachments: {info.options.include_attachments}")
    output(f"  Includes avatars: {info.options.include_avatars}")
    output(f"  Size: {info.size_bytes:,} bytes")
    return 0


def main() -> NoReturn:
    """Main entry point for the punt-backup CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
