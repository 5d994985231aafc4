"""File storage for the snippet collection (JSON or YAML, with backups)."""

import contextlib
import json
import logging
import os
import stat
import tempfile
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from snipstore.config import BACKUP_PREFIX, StorageConfig
from snipstore.errors import ParseError, StorageError, ValidationError
from snipstore.models import Snippet, utcnow

logger = logging.getLogger(__name__)

# Version stamped into every written file
FORMAT_VERSION = "1.0.0"


def build_payload(snippets: Iterable[Snippet]) -> dict[str, Any]:
    """Wrap snippets in the persisted envelope with its metadata block."""
    records = [snippet.to_dict() for snippet in snippets]
    return {
        "snippets": records,
        "metadata": {
            "exportedAt": utcnow().isoformat(),
            "version": FORMAT_VERSION,
            "count": len(records),
        },
    }


def dump_payload(payload: Any, fmt: str) -> str:
    """Serialize a payload as JSON or YAML text."""
    if fmt == "yaml":
        return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True, indent=2)
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def parse_payload(text: str, fmt: str, path: Path | None = None) -> Any:
    """Parse JSON or YAML text, raising ParseError with the path on failure."""
    try:
        if fmt == "yaml":
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ParseError(
            f"Could not parse {fmt.upper()} snippets file",
            path=path,
            cause=e,
            solution="Fix the file by hand or restore it from a backup",
        ) from e


def snippet_records(data: Any, path: Path | None = None) -> list[Any]:
    """Extract the list of snippet records from a parsed payload.

    Accepts the ``{snippets, metadata}`` envelope or a bare list.
    """
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("snippets"), list):
        return data["snippets"]
    raise ParseError(
        "Invalid snippets file format",
        path=path,
        solution="The file must contain a 'snippets' list",
    )


def decode_snippets(data: Any, path: Path | None = None) -> list[Snippet]:
    """Turn a parsed payload into Snippet objects; any bad record fails the whole load."""
    snippets = []
    seen: set[str] = set()
    for index, record in enumerate(snippet_records(data, path)):
        try:
            snippet = Snippet.from_dict(record)
        except ValidationError as e:
            raise ParseError(f"Invalid snippet record at index {index}", path=path, cause=e) from e
        if snippet.id in seen:
            raise ParseError(f"Duplicate snippet id {snippet.id!r} at index {index}", path=path)
        seen.add(snippet.id)
        snippets.append(snippet)
    return snippets


def format_for_path(path: Path | str, default: str = "json") -> str:
    """Pick the serialization format from a file extension."""
    suffix = Path(path).suffix.lower()
    if suffix in (".yaml", ".yml"):
        return "yaml"
    if suffix == ".json":
        return "json"
    return default


def _target_mode(path: Path) -> int:
    """Permission bits for a file written to ``path``.

    An existing file keeps its mode; a new one gets the default the umask allows.
    """
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_atomic(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file + rename.

    A failed write leaves any previous file in place and no temp file behind.
    The written file keeps the mode of the file it replaces.
    """
    tmp_path: Path | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_path = Path(tmp.name)
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_path, _target_mode(path))
        os.replace(tmp_path, path)
    except OSError as e:
        if tmp_path is not None:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
        raise StorageError(
            "Could not write snippets file",
            path=path,
            cause=e,
            solution="Check file permissions and free disk space",
        ) from e


def read_collection(path: Path, fmt: str, missing_ok: bool = False) -> list[Snippet]:
    """Read and decode a snippets file."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        if missing_ok:
            logger.debug("No snippets file at %s, starting empty", path)
            return []
        raise StorageError("Snippets file not found", path=path, cause=e) from e
    except UnicodeDecodeError as e:
        raise ParseError("Snippets file is not valid UTF-8", path=path, cause=e) from e
    except OSError as e:
        raise StorageError(
            "Could not read snippets file",
            path=path,
            cause=e,
            solution="Check file permissions and ensure the storage location is accessible",
        ) from e

    if not text.strip():
        return []
    return decode_snippets(parse_payload(text, fmt, path), path)


def _is_writable(directory: Path) -> bool:
    """Whether ``directory`` (or its nearest existing parent) can be read and written."""
    while not directory.exists() and directory != directory.parent:
        directory = directory.parent
    return os.access(directory, os.R_OK | os.W_OK)


class StorageService:
    """Reads and writes the entire snippet collection as a single file.

    Relative paths from the config are resolved against the user's home
    directory for global storage and against ``workspace_root`` (default:
    the current directory) for workspace storage.
    """

    def __init__(
        self,
        config: StorageConfig | None = None,
        workspace_root: Path | str | None = None,
    ):
        self.config = config or StorageConfig.create_global()
        self.workspace_root = Path(workspace_root) if workspace_root else Path.cwd()
        self.last_backup_time = self._latest_backup_time()

    def _resolve(self, path: Path, config: StorageConfig | None = None) -> Path:
        config = config or self.config
        path = path.expanduser()
        if path.is_absolute():
            return path
        if config.location == "global":
            return Path.home() / path
        return self.workspace_root / path

    def get_config(self) -> StorageConfig:
        """A copy of the active configuration."""
        return self.config.clone()

    def set_storage_location(self, location: str, path: Path | str | None = None) -> None:
        """Point the service at another location, all or nothing.

        The new location is validated and its directory must be writable;
        otherwise the current config is kept and the error is raised.
        Nothing is moved or loaded.
        """
        candidate = self.config.clone()
        candidate.update(location=location, path=str(path) if path is not None else None).unwrap()

        directory = self._resolve(candidate.storage_file_path, candidate).parent
        if not _is_writable(directory):
            raise StorageError(
                "Storage location is not writable",
                path=directory,
                solution="Choose a directory you can write to",
            )

        self.config = candidate
        self.last_backup_time = self._latest_backup_time()
        logger.info("Storage location set to %s (%s)", location, self.file_path)

    @property
    def file_path(self) -> Path:
        return self._resolve(self.config.storage_file_path)

    @property
    def backup_directory(self) -> Path:
        return self._resolve(self.config.backup_directory)

    def load_snippets(self) -> list[Snippet]:
        """Load the collection; a missing file is an empty collection."""
        path = self.file_path
        snippets = read_collection(path, self.config.format, missing_ok=True)
        logger.info("Loaded %d snippets from %s", len(snippets), path)
        return snippets

    def save_snippets(self, snippets: Iterable[Snippet]) -> None:
        """Write a full snapshot of the collection, then rotate backups if due."""
        path = self.file_path
        payload = build_payload(snippets)
        content = dump_payload(payload, self.config.format)
        write_atomic(path, content)
        logger.info("Saved %d snippets to %s", payload["metadata"]["count"], path)
        self._backup_if_due(content)

    def _backup_if_due(self, content: str) -> None:
        if not self.config.is_backup_due(self.last_backup_time):
            return
        try:
            self._write_backup(content)
        except StorageError as e:
            logger.warning("Automatic backup failed: %s", e)

    def _write_backup(self, content: str) -> Path:
        now = utcnow()
        backup_path = self.backup_directory / self.config.backup_filename(now)
        write_atomic(backup_path, content)
        self.last_backup_time = now
        logger.info("Wrote backup %s", backup_path)
        return backup_path

    def create_backup(self, snippets: Iterable[Snippet] | None = None) -> Path:
        """Write a timestamped snapshot; defaults to the current file contents."""
        if snippets is None:
            snippets = self.load_snippets()
        return self._write_backup(dump_payload(build_payload(snippets), self.config.format))

    def list_backups(self) -> list[Path]:
        """Backup files, newest first."""
        directory = self.backup_directory
        try:
            if not directory.exists():
                return []
            backups = [
                p for p in directory.iterdir() if p.is_file() and p.name.startswith(BACKUP_PREFIX)
            ]
        except OSError as e:
            raise StorageError("Could not list backups", path=directory, cause=e) from e
        return sorted(backups, key=lambda p: p.name, reverse=True)

    def restore_from_backup(self, backup_path: Path | str) -> list[Snippet]:
        """Read a backup file. Nothing is written; the caller decides what to do with it."""
        backup_path = Path(backup_path)
        fmt = format_for_path(backup_path, self.config.format)
        return read_collection(backup_path, fmt)

    def check_access(self) -> bool:
        """Whether the storage directory (or its nearest existing parent) is writable."""
        return _is_writable(self.file_path.parent)

    def _latest_backup_time(self) -> datetime | None:
        try:
            backups = self.list_backups()
            if not backups:
                return None
            mtime = backups[0].stat().st_mtime
        except (OSError, StorageError) as e:
            logger.warning("Could not inspect existing backups: %s", e)
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)
