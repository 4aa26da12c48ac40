"""
Configuration management for punt-backup.

This module handles loading, validating, and saving configuration settings.
"""

from punt_backup.config.settings import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_IMPORT_TIMEOUT_SECONDS,
    ConfigurationError,
    ExportConfig,
    RestoreConfig,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "RestoreConfig",
    "ExportConfig",
    "load_config",
    "save_config",
    "ConfigurationError",
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_IMPORT_TIMEOUT_SECONDS",
]
