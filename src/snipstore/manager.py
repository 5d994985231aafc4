"""SnippetManager: the façade every caller goes through."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from snipstore.config import StorageConfig
from snipstore.errors import ImportFailedError, Result, StorageError, ValidationError
from snipstore.models import (
    EDITABLE_FIELDS,
    TITLE_MAX_LENGTH,
    ConflictRecord,
    ConflictStrategy,
    ImportReport,
    Snippet,
    UsageStats,
    new_snippet_id,
    parse_timestamp,
    validate_snippet_data,
)
from snipstore.query import SearchQuery
from snipstore.searcher import SearchEngine
from snipstore.storage import (
    StorageService,
    build_payload,
    dump_payload,
    format_for_path,
    parse_payload,
    snippet_records,
    write_atomic,
)

logger = logging.getLogger(__name__)

# Values an overwrite falls back to for fields missing from the incoming record
_EMPTY_CONTENT = {
    "description": "",
    "tags": [],
    "category": None,
    "prefix": None,
    "scope": None,
}


def _index(snippets: Iterable[Snippet]) -> dict[str, Snippet]:
    return {snippet.id: snippet for snippet in snippets}


def _as_query(query: SearchQuery | Mapping[str, Any] | None) -> SearchQuery:
    if isinstance(query, SearchQuery):
        return query
    return SearchQuery.from_dict(query)


def _union(first: list[str] | None, second: list[str] | None) -> list[str] | None:
    if first is None and second is None:
        return None
    merged = list(first or [])
    merged.extend(item for item in second or [] if item not in merged)
    return merged


class SnippetManager:
    """Owns the in-memory collection and keeps it in step with storage.

    Reads work on the in-memory collection only. Every mutation runs under a
    single re-entrant lock: the collection is changed, then the full snapshot
    is saved; if saving fails the in-memory change is rolled back and the
    error propagates. Snippets handed to callers are always copies.
    """

    def __init__(
        self,
        storage: StorageService | StorageConfig | None = None,
        search_engine: SearchEngine | None = None,
    ):
        if isinstance(storage, StorageConfig):
            storage = StorageService(storage)
        self.storage = storage or StorageService()
        self.search_engine = search_engine or SearchEngine()
        self._lock = threading.RLock()
        self._snippets = _index(self.storage.load_snippets())

    def __len__(self) -> int:
        with self._lock:
            return len(self._snippets)

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Persist after the body; restore the previous collection if anything fails."""
        with self._lock:
            snapshot = self._copy_collection()
            try:
                yield
                self.storage.save_snippets(self._snippets.values())
            except BaseException:
                self._snippets = snapshot
                raise

    def _copy_collection(self) -> dict[str, Snippet]:
        return {snippet_id: snippet.copy() for snippet_id, snippet in self._snippets.items()}

    def _find_by_title(self, title: str, exclude_id: str | None = None) -> Snippet | None:
        title = title.strip()
        for snippet in self._snippets.values():
            if snippet.title == title and snippet.id != exclude_id:
                return snippet
        return None

    def _ensure_title_available(self, title: Any, exclude_id: str | None = None) -> None:
        if not isinstance(title, str):
            return
        existing = self._find_by_title(title, exclude_id)
        if existing is not None:
            raise ValidationError(
                "Snippet with this title already exists",
                field="title",
                solution=f"Choose a different title or update snippet {existing.id}",
            )

    def validate_snippet(self, data: Mapping[str, Any]) -> Result[None]:
        """Run the same validation create/update use, without touching the store."""
        try:
            validate_snippet_data(data)
        except ValidationError as e:
            return Result.fail(e)
        return Result.ok()

    def create_snippet(self, data: Mapping[str, Any]) -> Snippet:
        snippet = Snippet.create(data)
        with self._lock:
            self._ensure_title_available(snippet.title)
            with self._transaction():
                self._snippets[snippet.id] = snippet
            logger.debug("Created snippet %s (%s)", snippet.id, snippet.title)
            return snippet.copy()

    def get_snippet(self, snippet_id: str) -> Snippet | None:
        with self._lock:
            snippet = self._snippets.get(snippet_id)
            return snippet.copy() if snippet else None

    def list_snippets(self) -> list[Snippet]:
        with self._lock:
            return [snippet.copy() for snippet in self._snippets.values()]

    def update_snippet(self, snippet_id: str, changes: Mapping[str, Any]) -> Snippet | None:
        """Update a snippet; ``None`` if the id is unknown."""
        with self._lock:
            snippet = self._snippets.get(snippet_id)
            if snippet is None:
                return None
            self._ensure_title_available(changes.get("title"), exclude_id=snippet_id)
            with self._transaction():
                self._snippets[snippet_id].update(changes)
            logger.debug("Updated snippet %s", snippet_id)
            return self._snippets[snippet_id].copy()

    def delete_snippet(self, snippet_id: str) -> bool:
        with self._lock:
            if snippet_id not in self._snippets:
                return False
            with self._transaction():
                del self._snippets[snippet_id]
            logger.debug("Deleted snippet %s", snippet_id)
            return True

    def increment_usage(self, snippet_id: str) -> Snippet | None:
        with self._lock:
            if snippet_id not in self._snippets:
                return None
            with self._transaction():
                self._snippets[snippet_id].increment_usage()
            return self._snippets[snippet_id].copy()

    def search_snippets(
        self, query: SearchQuery | Mapping[str, Any] | None = None
    ) -> list[Snippet]:
        query = _as_query(query)
        with self._lock:
            results = self.search_engine.search(self._snippets.values(), query)
            return [snippet.copy() for snippet in results]

    def get_languages(self) -> list[str]:
        with self._lock:
            return sorted({s.language for s in self._snippets.values()})

    def get_tags(self) -> list[str]:
        with self._lock:
            return sorted({tag for s in self._snippets.values() for tag in s.tags})

    def get_categories(self) -> list[str]:
        with self._lock:
            return sorted({s.category for s in self._snippets.values() if s.category})

    def get_usage_stats(self, top_n: int = 10) -> UsageStats:
        with self._lock:
            snippets = [snippet.copy() for snippet in self._snippets.values()]

        total_usage = sum(s.usage_count for s in snippets)
        tag_counts: Counter[str] = Counter()
        for snippet in snippets:
            tag_counts.update(set(snippet.tags))

        return UsageStats(
            total_snippets=len(snippets),
            total_usage=total_usage,
            average_usage=total_usage / len(snippets) if snippets else 0.0,
            most_used=sorted(snippets, key=lambda s: s.usage_count, reverse=True)[:top_n],
            language_distribution=dict(Counter(s.language for s in snippets).most_common()),
            tag_distribution=dict(tag_counts.most_common()),
            category_distribution=dict(
                Counter(s.category for s in snippets if s.category).most_common()
            ),
            recently_created=sorted(snippets, key=lambda s: s.created_at, reverse=True)[:top_n],
            recently_updated=sorted(snippets, key=lambda s: s.updated_at, reverse=True)[:top_n],
        )

    def export_snippets(
        self, query: SearchQuery | Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Export the collection (or the subset matching ``query``) as a payload."""
        query = _as_query(query)
        with self._lock:
            snippets = self.search_engine.search(self._snippets.values(), query)
            return build_payload(snippets)

    def export_to_file(
        self,
        path: Path | str,
        query: SearchQuery | Mapping[str, Any] | None = None,
        fmt: str | None = None,
    ) -> int:
        """Write an export payload to ``path``; returns the number of snippets written."""
        path = Path(path)
        fmt = fmt or format_for_path(path, self.storage.config.format)
        payload = self.export_snippets(query)
        write_atomic(path, dump_payload(payload, fmt))
        logger.info("Exported %d snippets to %s", payload["metadata"]["count"], path)
        return payload["metadata"]["count"]

    def import_from_file(
        self, path: Path | str, strategy: ConflictStrategy | str | None = None
    ) -> ImportReport:
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError("Could not read import file", path=path, cause=e) from e
        data = parse_payload(text, format_for_path(path), path) if text.strip() else []
        return self.import_snippets(data, strategy)

    def import_snippets(
        self, data: Any, strategy: ConflictStrategy | str | None = None
    ) -> ImportReport:
        """Import snippet records, resolving collisions by id or title.

        ``data`` is an export payload, a bare list of records, or a mapping
        with ``snippets`` and an optional ``conflictResolution``. An explicit
        ``strategy`` wins over the payload's; the default is ``skip``. Bad
        records are reported, not raised. The collection is saved once at
        the end; if that fails the import is rolled back and
        ``ImportFailedError`` carries the report.
        """
        records = snippet_records(data)
        if strategy is None and isinstance(data, Mapping):
            strategy = data.get("conflictResolution")
        try:
            strategy = ConflictStrategy(strategy or ConflictStrategy.SKIP)
        except ValueError as e:
            raise ValidationError(
                f"Unknown conflict resolution strategy: {strategy}",
                field="conflictResolution",
                solution=f"Use one of: {', '.join(s.value for s in ConflictStrategy)}",
            ) from e

        report = ImportReport()
        with self._lock:
            snapshot = self._copy_collection()
            changed = False
            for index, record in enumerate(records):
                label = (
                    repr(record.get("title"))
                    if isinstance(record, Mapping) and record.get("title")
                    else f"#{index}"
                )
                try:
                    changed |= self._import_one(record, strategy, report)
                except ValidationError as e:
                    report.errors.append(f"Snippet {label}: {'; '.join(e.errors)}")
                except Exception as e:
                    self._snippets = snapshot
                    raise ImportFailedError(
                        f"Import aborted at snippet {label}: {e}", report
                    ) from e

            if changed:
                try:
                    self.storage.save_snippets(self._snippets.values())
                except StorageError as e:
                    self._snippets = snapshot
                    raise ImportFailedError("Imported snippets could not be saved", report) from e

        logger.info(
            "Import finished: %d imported, %d skipped, %d errors",
            report.imported,
            report.skipped,
            report.failed,
        )
        return report

    def _import_one(
        self, record: Any, strategy: ConflictStrategy, report: ImportReport
    ) -> bool:
        """Import a single record; returns whether the collection changed."""
        if not isinstance(record, Mapping):
            raise ValidationError(
                f"Import record must be a mapping, got {type(record).__name__}",
                field="snippet",
                solution="Each imported snippet must be an object with title, code and language",
            )
        data = {name: record[name] for name in EDITABLE_FIELDS if name in record}
        validate_snippet_data(data)

        incoming_id = record.get("id")
        existing = self._snippets.get(str(incoming_id)) if incoming_id is not None else None
        reason = "id matches an existing snippet"
        if existing is None:
            existing = self._find_by_title(data["title"])
            reason = "title matches an existing snippet"

        if existing is None:
            snippet = Snippet.from_dict({**record, "id": incoming_id or new_snippet_id()})
            self._snippets[snippet.id] = snippet
            report.imported += 1
            return True

        title = data["title"].strip()
        conflict = ConflictRecord(
            title=title, existing_id=existing.id, resolution=strategy, reason=reason
        )

        if strategy is ConflictStrategy.SKIP:
            report.skipped += 1
            report.conflicts.append(conflict)
            return False

        if strategy is ConflictStrategy.RENAME:
            new_title = title
            counter = 1
            while self._find_by_title(new_title) is not None:
                suffix = f" ({counter})"
                # Shorten the base so the suffixed title stays within the limit
                base = title[: TITLE_MAX_LENGTH - len(suffix)].rstrip()
                new_title = f"{base}{suffix}"
                counter += 1
            snippet = Snippet.from_dict({**record, "id": new_snippet_id(), "title": new_title})
            self._snippets[snippet.id] = snippet
            conflict.new_title = new_title
            conflict.new_id = snippet.id
        elif strategy is ConflictStrategy.OVERWRITE:
            self._ensure_title_available(title, exclude_id=existing.id)
            existing.update({**_EMPTY_CONTENT, **data})
        else:
            self._merge_into(existing, record, data)

        report.imported += 1
        report.conflicts.append(conflict)
        return True

    def _merge_into(self, existing: Snippet, record: Mapping[str, Any], data: dict[str, Any]) -> None:
        """Field-level merge of an incoming record into ``existing``.

        Tags and scope are unioned, a missing category is filled in, usage is
        the higher count. Description, code, language and prefix come from
        the incoming record only when it carries a newer ``updatedAt``. The
        existing title and id are kept.
        """
        incoming_updated = record.get("updatedAt", record.get("updated_at"))
        try:
            incoming_newer = (
                incoming_updated is not None
                and parse_timestamp(incoming_updated) > existing.updated_at
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Invalid timestamp: {incoming_updated!r}",
                field="updatedAt",
                solution="Use ISO-8601 timestamps such as 2024-01-15T10:30:00Z",
            ) from e

        changes: dict[str, Any] = {
            "tags": _union(existing.tags, data.get("tags")),
            "scope": _union(existing.scope, data.get("scope")),
        }
        if not existing.category and data.get("category"):
            changes["category"] = data["category"]
        if incoming_newer:
            for name in ("description", "code", "language", "prefix"):
                if data.get(name):
                    changes[name] = data[name]

        incoming_usage = record.get("usageCount", record.get("usage_count"))
        existing.update(changes)
        if isinstance(incoming_usage, int) and not isinstance(incoming_usage, bool):
            existing.usage_count = max(existing.usage_count, incoming_usage)

    def create_backup(self) -> Path:
        """Write a backup of the current in-memory collection."""
        with self._lock:
            return self.storage.create_backup(self._snippets.values())

    def list_backups(self) -> list[Path]:
        return self.storage.list_backups()

    def reload(self) -> None:
        """Replace the in-memory collection with what is on disk."""
        with self._lock:
            self._snippets = _index(self.storage.load_snippets())
