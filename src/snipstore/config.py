"""Storage configuration: where the snippet file lives and in what format."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from snipstore.errors import Result, ValidationError
from snipstore.models import ensure_utc, utcnow

# Default locations
GLOBAL_DIR = Path.home() / ".local" / "share" / "snipstore"
WORKSPACE_DIRNAME = ".snipstore"
BACKUP_DIRNAME = "backups"

SNIPPETS_BASENAME = "snippets"
BACKUP_PREFIX = "snippets-backup-"

LOCATIONS = ("workspace", "global")
FORMATS = ("json", "yaml")

MIN_BACKUP_INTERVAL_MS = 60_000  # 1 minute
DEFAULT_BACKUP_INTERVAL_MS = 3_600_000  # 1 hour

# Recognised keys of an editor/settings mapping and the field each feeds
_SETTINGS_KEYS = {
    "storageLocation": "location",
    "storagePath": "path",
    "storageFormat": "format",
    "autoBackup": "auto_backup",
    "backupInterval": "backup_interval",
}


@dataclass
class StorageConfig:
    """Persistence target for a snippet store.

    Pure derivation logic only: nothing here touches the filesystem.
    """

    location: str = "global"
    path: str | None = None
    format: str = "json"
    auto_backup: bool = True
    backup_interval: int = DEFAULT_BACKUP_INTERVAL_MS

    def __post_init__(self) -> None:
        if isinstance(self.path, Path):
            self.path = str(self.path)
        StorageConfig.validate(self.to_dict()).unwrap()

    @staticmethod
    def validate(candidate: Mapping[str, Any]) -> Result[None]:
        """Check each present field; report the first violation.

        Absent keys (or ``None`` values) are skipped.
        """
        if not isinstance(candidate, Mapping):
            return Result.fail(
                ValidationError(
                    "Storage config must be a mapping",
                    field="config",
                    solution="Provide a valid storage configuration mapping",
                )
            )

        location = candidate.get("location")
        if location is not None and location not in LOCATIONS:
            return Result.fail(
                ValidationError(
                    f"Storage location must be one of: {', '.join(LOCATIONS)}",
                    field="location",
                    solution="Use either 'workspace' or 'global' for storage location",
                )
            )

        path = candidate.get("path")
        if path is not None:
            if isinstance(path, Path):
                path = str(path)
            if not isinstance(path, str) or not path.strip():
                return Result.fail(
                    ValidationError(
                        "Storage path must be a non-empty string",
                        field="path",
                        solution="Provide a valid file system path",
                    )
                )
            if location == "global" and not Path(path).expanduser().is_absolute():
                return Result.fail(
                    ValidationError(
                        "Global storage path must be absolute",
                        field="path",
                        solution="Provide an absolute path for global storage",
                    )
                )

        fmt = candidate.get("format")
        if fmt is not None and fmt not in FORMATS:
            return Result.fail(
                ValidationError(
                    f"Storage format must be one of: {', '.join(FORMATS)}",
                    field="format",
                    solution="Use either 'json' or 'yaml' for storage format",
                )
            )

        auto_backup = candidate.get("auto_backup")
        if auto_backup is not None and not isinstance(auto_backup, bool):
            return Result.fail(
                ValidationError(
                    "Auto backup setting must be a boolean",
                    field="auto_backup",
                    solution="Set auto_backup to true or false",
                )
            )

        interval = candidate.get("backup_interval")
        if interval is not None and (
            isinstance(interval, bool)
            or not isinstance(interval, int)
            or interval < MIN_BACKUP_INTERVAL_MS
        ):
            return Result.fail(
                ValidationError(
                    f"Backup interval must be an integer >= {MIN_BACKUP_INTERVAL_MS} (1 minute)",
                    field="backup_interval",
                    solution=f"Set backup interval to at least {MIN_BACKUP_INTERVAL_MS} milliseconds",
                )
            )

        return Result.ok()

    @classmethod
    def create_global(cls) -> StorageConfig:
        return cls(location="global")

    @classmethod
    def create_workspace(cls, path: str | Path | None = None) -> StorageConfig:
        return cls(location="workspace", path=str(path) if path is not None else None)

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> Result[StorageConfig]:
        """Build a config from a settings mapping such as an editor's preferences.

        Only the keys in ``_SETTINGS_KEYS`` are read; anything else is ignored.
        """
        if not isinstance(settings, Mapping):
            return Result.fail(
                ValidationError(
                    "Settings must be a mapping",
                    field="settings",
                    solution="Pass the settings as a dict of storage* keys",
                )
            )
        values = {
            name: settings[key]
            for key, name in _SETTINGS_KEYS.items()
            if settings.get(key) is not None
        }
        try:
            return Result.ok(cls(**values))
        except ValidationError as e:
            return Result.fail(e)

    def update(self, **changes: Any) -> Result[None]:
        """Apply ``changes`` only if the merged configuration is valid."""
        known = [f.name for f in dataclasses.fields(self)]
        unknown = sorted(set(changes) - set(known))
        if unknown:
            return Result.fail(
                ValidationError(
                    f"Unknown storage config field: {unknown[0]}",
                    field=unknown[0],
                    solution=f"Only these fields can be set: {', '.join(known)}",
                )
            )
        merged = {**self.to_dict(), **changes}
        validation = StorageConfig.validate(merged)
        if not validation.success:
            return validation
        for name, value in changes.items():
            setattr(self, name, str(value) if name == "path" and value is not None else value)
        return Result.ok()

    @property
    def file_extension(self) -> str:
        return ".yaml" if self.format == "yaml" else ".json"

    @property
    def snippets_filename(self) -> str:
        return f"{SNIPPETS_BASENAME}{self.file_extension}"

    def backup_filename(self, timestamp: datetime | None = None) -> str:
        stamp = ensure_utc(timestamp or utcnow()).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        return f"{BACKUP_PREFIX}{stamp}{self.file_extension}"

    def is_backup_due(self, last_backup_time: datetime | None, now: datetime | None = None) -> bool:
        """Whether enough time has passed since ``last_backup_time`` (``None`` = never)."""
        if not self.auto_backup:
            return False
        if last_backup_time is None:
            return True
        now = ensure_utc(now or utcnow())
        elapsed_ms = (now - ensure_utc(last_backup_time)).total_seconds() * 1000
        return elapsed_ms >= self.backup_interval

    @property
    def storage_directory(self) -> Path:
        """Directory of the snippets file; relative for default workspace storage."""
        if self.path:
            return Path(self.path).expanduser().parent
        if self.location == "workspace":
            return Path(WORKSPACE_DIRNAME)
        return GLOBAL_DIR

    @property
    def storage_file_path(self) -> Path:
        """Full path of the snippets file; an explicit ``path`` wins."""
        if self.path:
            return Path(self.path).expanduser()
        return self.storage_directory / self.snippets_filename

    @property
    def backup_directory(self) -> Path:
        return self.storage_directory / BACKUP_DIRNAME

    def clone(self) -> StorageConfig:
        return dataclasses.replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": self.location,
            "path": self.path,
            "format": self.format,
            "auto_backup": self.auto_backup,
            "backup_interval": self.backup_interval,
        }
