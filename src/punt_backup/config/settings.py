"""
Configuration settings management for punt-backup.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.punt-backup/config.yaml by default, with the
path overridable via the PUNT_BACKUP_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".punt-backup"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Two minutes, matching the server-side import limit
DEFAULT_IMPORT_TIMEOUT_SECONDS = 120


@dataclass
class RestoreConfig:
    """Import (restore) settings."""

    timeout_seconds: int = DEFAULT_IMPORT_TIMEOUT_SECONDS


@dataclass
class ExportConfig:
    """Export settings."""

    output_dir: str = "."
    exported_by: str = "punt-backup"
    include_attachments: bool = False
    include_avatars: bool = False


@dataclass
class Settings:
    """
    Complete punt-backup configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with PUNT_BACKUP_.

    Attributes:
        data_dir: Directory holding the SQLite database.
        database_file: Database file name inside data_dir.
        public_dir: Directory that public URL paths (attachments, avatars)
            resolve against, e.g. /uploads/a.png -> {public_dir}/uploads/a.png.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        restore: Import settings.
        export: Export settings.
    """

    data_dir: str = str(DEFAULT_CONFIG_DIR / "data")
    database_file: str = "punt.db"
    public_dir: str = str(DEFAULT_CONFIG_DIR / "public")
    log_level: str = "INFO"

    restore: RestoreConfig = field(default_factory=RestoreConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    @property
    def database_path(self) -> Path:
        """Full path to the SQLite database file."""
        return Path(self.data_dir) / self.database_file


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from PUNT_BACKUP_CONFIG environment variable if set,
    otherwise returns the default path (~/.punt-backup/config.yaml).
    """
    env_path = os.environ.get("PUNT_BACKUP_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses PUNT_BACKUP_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a YAML mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    core = data.get("punt_backup", {})

    if "data_dir" in core:
        settings.data_dir = str(core["data_dir"])
    if "database_file" in core:
        settings.database_file = str(core["database_file"])
    if "public_dir" in core:
        settings.public_dir = str(core["public_dir"])
    if "log_level" in core:
        settings.log_level = str(core["log_level"]).upper()

    restore = data.get("restore", {})
    if "timeout_seconds" in restore:
        try:
            settings.restore.timeout_seconds = int(restore["timeout_seconds"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"restore.timeout_seconds must be an integer: {restore['timeout_seconds']!r}"
            ) from e

    export = data.get("export", {})
    if "output_dir" in export:
        settings.export.output_dir = str(export["output_dir"])
    if "exported_by" in export:
        settings.export.exported_by = str(export["exported_by"])
    if "include_attachments" in export:
        settings.export.include_attachments = bool(export["include_attachments"])
    if "include_avatars" in export:
        settings.export.include_avatars = bool(export["include_avatars"])

    return settings


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "PUNT_BACKUP_DATA_DIR": ("data_dir", str),
        "PUNT_BACKUP_DATABASE_FILE": ("database_file", str),
        "PUNT_BACKUP_PUBLIC_DIR": ("public_dir", str),
        "PUNT_BACKUP_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "PUNT_BACKUP_RESTORE_TIMEOUT": ("restore.timeout_seconds", int),
        "PUNT_BACKUP_EXPORT_DIR": ("export.output_dir", str),
        "PUNT_BACKUP_EXPORT_ATTACHMENTS": ("export.include_attachments", _parse_bool),
        "PUNT_BACKUP_EXPORT_AVATARS": ("export.include_avatars", _parse_bool),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                converted = converter(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value!r}") from e
            _set_nested_attr(settings, attr_path, converted)

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if not settings.database_file:
        raise ConfigurationError("database_file must not be empty")

    if settings.restore.timeout_seconds < 1:
        raise ConfigurationError("restore.timeout_seconds must be at least 1")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "punt_backup": {
            "data_dir": settings.data_dir,
            "database_file": settings.database_file,
            "public_dir": settings.public_dir,
            "log_level": settings.log_level,
        },
        "restore": {
            "timeout_seconds": settings.restore.timeout_seconds,
        },
        "export": {
            "output_dir": settings.export.output_dir,
            "exported_by": settings.export.exported_by,
            "include_attachments": settings.export.include_attachments,
            "include_avatars": settings.export.include_avatars,
        },
    }
