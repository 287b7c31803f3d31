from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import re
from typing import Any, Mapping

import json
import yaml


DEFAULT_REGEX = "Documents|Downloads|Movies|Music|Pictures|Videos"
DEFAULT_THREADS = 2
DEFAULT_LOG_NAME = "backr_log.txt"


@dataclass(frozen=True, slots=True)
class BackupPolicy:
    copy_all: bool
    pattern: re.Pattern[str]
    update_existing: bool = False
    worker_count: int = DEFAULT_THREADS
    excludes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {self.worker_count}")


@dataclass(slots=True)
class BackupSettings:
    destination: Path
    source: Path = field(default_factory=Path.cwd)
    regex: str = DEFAULT_REGEX
    backup_all: bool = False
    update: bool = False
    threads: int = DEFAULT_THREADS
    output_file: Path | None = None
    force_log: bool = False
    excludes: list[str] = field(default_factory=list)


_FILE_KEYS = {
    "source": "source",
    "destination": "destination",
    "regex": "regex",
    "backupAll": "backup_all",
    "update": "update",
    "threads": "threads",
    "outputFile": "output_file",
    "forceLog": "force_log",
    "excludes": "excludes",
}


def compile_pattern(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"Invalid regex {pattern!r}: {exc}") from exc


def _as_path(value: Any, field_name: str) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string path")
    return Path(value).expanduser()


def _as_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"{field_name} must be a boolean")


def _as_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer")
    return value


def _as_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{field_name} must be a non-empty string")
    return value


def _as_list_of_strings(value: Any, field_name: str) -> list[str]:
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        raise ValueError(f"{field_name} must be a list of strings")
    return [item for item in value if item.strip()]


_VALIDATORS = {
    "source": _as_path,
    "destination": _as_path,
    "regex": _as_str,
    "backup_all": _as_bool,
    "update": _as_bool,
    "threads": _as_int,
    "output_file": _as_path,
    "force_log": _as_bool,
    "excludes": _as_list_of_strings,
}


def _load_raw_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise ValueError(f"Config file does not exist: {config_path}")

    suffix = config_path.suffix.lower()
    try:
        text = config_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ValueError(f"Cannot read config file {config_path}: {exc}") from exc

    try:
        if suffix in {".yml", ".yaml"}:
            loaded = yaml.safe_load(text)
        elif suffix == ".json":
            loaded = json.loads(text)
        else:
            raise ValueError("Config file must be .yaml/.yml or .json")
    except yaml.YAMLError as exc:
        raise ValueError(f"Config file is not valid YAML: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError("Config root must be an object")
    return loaded


def load_config(config_path: Path) -> dict[str, Any]:
    raw = _load_raw_config(config_path)

    unknown = sorted(set(raw) - set(_FILE_KEYS))
    if unknown:
        raise ValueError(f"Unknown config key(s): {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key, value in raw.items():
        if value is None:
            continue
        name = _FILE_KEYS[key]
        values[name] = _VALIDATORS[name](value, key)
    return values


def build_settings(
    file_values: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> BackupSettings:
    merged: dict[str, Any] = dict(file_values or {})
    explicit = {key: value for key, value in (overrides or {}).items() if value is not None}

    if "regex" in explicit and not explicit.get("backup_all"):
        merged["backup_all"] = False
    if "excludes" in explicit:
        explicit["excludes"] = list(merged.get("excludes", [])) + list(explicit["excludes"])
    merged.update(explicit)

    destination = merged.pop("destination", None)
    if destination is None:
        raise ValueError("A destination is required (--destination or 'destination' in the config file)")

    settings = BackupSettings(destination=Path(destination), **merged)
    if settings.threads < 1:
        raise ValueError(f"threads must be at least 1, got {settings.threads}")
    return settings


def build_policy(settings: BackupSettings) -> BackupPolicy:
    pattern = compile_pattern(".*" if settings.backup_all else settings.regex)
    return BackupPolicy(
        copy_all=settings.backup_all,
        pattern=pattern,
        update_existing=settings.update,
        worker_count=settings.threads,
        excludes=tuple(settings.excludes),
    )


def resolve_destination_root(settings: BackupSettings) -> Path:
    source_name = settings.source.resolve().name
    if not source_name:
        raise ValueError(f"Cannot infer source name for destination: {settings.source}")
    return settings.destination / source_name


def resolve_log_file(settings: BackupSettings) -> Path:
    if settings.output_file is not None:
        return settings.output_file
    return resolve_destination_root(settings) / DEFAULT_LOG_NAME
