"""
Entry point for running punt-backup as a module.

Usage:
    python -m punt_backup [command] [options]
"""

from punt_backup.cli import main

if __name__ == "__main__":
    main()
