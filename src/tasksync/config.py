"""Sync configuration loading and validation.

Reads ``tasksync.toml`` from a config directory, resolves ``${VAR}``
references against the environment, and returns a validated ``SyncConfig``.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tasksync.core.retry import (
    DEFAULT_BASE_DELAY_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_JITTER_SECONDS,
)
from tasksync.google.sheets import SheetRange
from tasksync.sync.projector import (
    DEFAULT_COMPLETED_STATUSES,
    DEFAULT_COMPLETION_MARKER,
    DEFAULT_TIMEZONE,
)

CONFIG_FILENAME = "tasksync.toml"
DEFAULT_CREDENTIALS_FILENAME = "credentials.json"

# Matches ${VAR_NAME}; names are letters, digits and underscores.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when sync configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: Path | None = None


@dataclass
class RetryConfig:
    """Backoff settings from the [retry] section."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_s: float = DEFAULT_BASE_DELAY_SECONDS
    max_jitter_s: float = DEFAULT_MAX_JITTER_SECONDS


@dataclass
class SheetConfig:
    """Task table location from the [sheet] section.

    ``last_sync_cell`` and ``log_range`` are optional; when unset the
    last-sync timestamp is not written and run logs are not persisted.
    """

    spreadsheet_id: str
    range: str
    last_sync_cell: str | None = None
    log_range: str | None = None


@dataclass
class CalendarConfig:
    """Target calendar and event rendering from the [calendar] section."""

    calendar_id: str
    timezone: str = DEFAULT_TIMEZONE
    completion_marker: str = DEFAULT_COMPLETION_MARKER
    completed_statuses: tuple[str, ...] = DEFAULT_COMPLETED_STATUSES


@dataclass
class SyncConfig:
    """Parsed and validated sync configuration."""

    sheet: SheetConfig
    calendar: CalendarConfig
    credentials_path: Path
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(data: dict[str, Any], name: str, *, required: bool = False) -> dict[str, Any]:
    section = data.get(name)
    if section is None:
        if required:
            raise ConfigError(f"Missing [{name}] section in config")
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _required_str(section: dict[str, Any], section_name: str, key: str) -> str:
    value = section.get(key)
    if value is None:
        raise ConfigError(f"Missing required field: {section_name}.{key}")
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{section_name}.{key} must be a non-empty string")
    return value.strip()


def _optional_str(section: dict[str, Any], section_name: str, key: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{section_name}.{key} must be a string when set")
    return value.strip() or None


def _validate_a1(value: str, field_name: str) -> None:
    try:
        SheetRange.parse(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid {field_name}: {value!r} is not an A1 range") from exc


def _parse_sheet(data: dict[str, Any]) -> SheetConfig:
    section = _section(data, "sheet", required=True)
    sheet = SheetConfig(
        spreadsheet_id=_required_str(section, "sheet", "spreadsheet_id"),
        range=_required_str(section, "sheet", "range"),
        last_sync_cell=_optional_str(section, "sheet", "last_sync_cell"),
        log_range=_optional_str(section, "sheet", "log_range"),
    )
    _validate_a1(sheet.range, "sheet.range")
    if sheet.last_sync_cell is not None:
        _validate_a1(sheet.last_sync_cell, "sheet.last_sync_cell")
    if sheet.log_range is not None:
        _validate_a1(sheet.log_range, "sheet.log_range")
    return sheet


def _parse_calendar(data: dict[str, Any]) -> CalendarConfig:
    section = _section(data, "calendar", required=True)
    timezone = _optional_str(section, "calendar", "timezone") or DEFAULT_TIMEZONE
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid calendar.timezone: {timezone!r}") from exc

    marker = section.get("completion_marker", DEFAULT_COMPLETION_MARKER)
    if not isinstance(marker, str):
        raise ConfigError("calendar.completion_marker must be a string")

    raw_statuses = section.get("completed_statuses")
    if raw_statuses is None:
        statuses = DEFAULT_COMPLETED_STATUSES
    elif isinstance(raw_statuses, list) and all(isinstance(s, str) for s in raw_statuses):
        statuses = tuple(s.strip().lower() for s in raw_statuses if s.strip())
    else:
        raise ConfigError("calendar.completed_statuses must be a list of strings")

    return CalendarConfig(
        calendar_id=_required_str(section, "calendar", "calendar_id"),
        timezone=timezone,
        completion_marker=marker,
        completed_statuses=statuses,
    )


def _retry_seconds(section: dict[str, Any], key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"retry.{key} must be a number of seconds, got {value!r}")
    return float(value)


def _parse_retry(data: dict[str, Any]) -> RetryConfig:
    section = _section(data, "retry")
    max_attempts = section.get("max_attempts", DEFAULT_MAX_ATTEMPTS)
    if isinstance(max_attempts, bool) or not isinstance(max_attempts, int):
        raise ConfigError(f"retry.max_attempts must be an integer, got {max_attempts!r}")
    retry = RetryConfig(
        max_attempts=max_attempts,
        base_delay_s=_retry_seconds(section, "base_delay_s", DEFAULT_BASE_DELAY_SECONDS),
        max_jitter_s=_retry_seconds(section, "max_jitter_s", DEFAULT_MAX_JITTER_SECONDS),
    )
    if retry.max_attempts < 1:
        raise ConfigError("retry.max_attempts must be at least 1")
    if retry.base_delay_s < 0 or retry.max_jitter_s < 0:
        raise ConfigError("retry.base_delay_s and retry.max_jitter_s must be non-negative")
    return retry


def _parse_logging(data: dict[str, Any], config_dir: Path) -> LoggingConfig:
    section = _section(data, "logging")
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    log_root_raw = _optional_str(section, "logging", "log_root")
    log_root = (config_dir / log_root_raw) if log_root_raw else None
    return LoggingConfig(level=log_level, format=log_format, log_root=log_root)


def load_config(config_dir: Path) -> SyncConfig:
    """Load and validate ``tasksync.toml`` from *config_dir*.

    Relative paths (credentials file, log root) are resolved against
    *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    toml_path = config_dir / CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    credentials_section = _section(data, "credentials")
    credentials_raw = (
        _optional_str(credentials_section, "credentials", "path") or DEFAULT_CREDENTIALS_FILENAME
    )

    return SyncConfig(
        sheet=_parse_sheet(data),
        calendar=_parse_calendar(data),
        credentials_path=config_dir / credentials_raw,
        retry=_parse_retry(data),
        logging=_parse_logging(data, config_dir),
    )
