"""Data models for snipstore."""

from __future__ import annotations

import dataclasses
import re
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from snipstore.errors import ValidationError

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
CODE_MAX_LENGTH = 50_000
CATEGORY_MAX_LENGTH = 100
PREFIX_MAX_LENGTH = 50
TAG_MAX_LENGTH = 50
MAX_TAGS = 20
MAX_SCOPE_ENTRIES = 10

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# Fields a caller may set through create/update
EDITABLE_FIELDS = (
    "title",
    "description",
    "code",
    "language",
    "tags",
    "category",
    "prefix",
    "scope",
)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (or pass through a datetime) into aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    raise TypeError(f"expected an ISO-8601 timestamp, got {type(value).__name__}")


def new_snippet_id() -> str:
    return str(uuid.uuid4())


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _check_string_list(
    values: Any, field_name: str, label: str, max_items: int, max_length: int | None
) -> list[str]:
    problems = []
    if not isinstance(values, (list, tuple)):
        return [f"{label} must be a list of strings"]
    if len(values) > max_items:
        problems.append(f"Maximum {max_items} {field_name} entries allowed")
    for value in values:
        if _is_blank(value):
            problems.append(f"All {field_name} entries must be non-empty strings")
            break
        if max_length is not None and len(value.strip()) > max_length:
            problems.append(f"Each {field_name} entry must be {max_length} characters or less")
            break
    return problems


def validate_snippet_data(data: Mapping[str, Any]) -> None:
    """Validate the editable fields of a snippet.

    Every violation is collected; the raised ``ValidationError`` names the
    first offending field and lists all messages.
    """
    problems: list[tuple[str, str]] = []

    title = data.get("title")
    if _is_blank(title):
        problems.append(("title", "Title is required"))
    elif len(title.strip()) > TITLE_MAX_LENGTH:
        problems.append(("title", f"Title must be {TITLE_MAX_LENGTH} characters or less"))

    description = data.get("description")
    if description is not None:
        if not isinstance(description, str):
            problems.append(("description", "Description must be a string"))
        elif len(description) > DESCRIPTION_MAX_LENGTH:
            problems.append(
                ("description", f"Description must be {DESCRIPTION_MAX_LENGTH} characters or less")
            )

    code = data.get("code")
    if _is_blank(code):
        problems.append(("code", "Code is required"))
    elif len(code) > CODE_MAX_LENGTH:
        problems.append(("code", f"Code must be {CODE_MAX_LENGTH:,} characters or less"))

    language = data.get("language")
    if _is_blank(language):
        problems.append(("language", "Language is required"))
    elif not _IDENTIFIER_RE.match(language.strip()):
        problems.append(
            (
                "language",
                "Language must contain only alphanumeric characters, hyphens, and underscores",
            )
        )

    tags = data.get("tags")
    if tags is not None:
        for message in _check_string_list(tags, "tags", "Tags", MAX_TAGS, TAG_MAX_LENGTH):
            problems.append(("tags", message))

    category = data.get("category")
    if category is not None:
        if not isinstance(category, str):
            problems.append(("category", "Category must be a string"))
        elif len(category.strip()) > CATEGORY_MAX_LENGTH:
            problems.append(
                ("category", f"Category must be {CATEGORY_MAX_LENGTH} characters or less")
            )

    prefix = data.get("prefix")
    if prefix is not None:
        if not isinstance(prefix, str):
            problems.append(("prefix", "Prefix must be a string"))
        elif prefix.strip():
            if len(prefix.strip()) > PREFIX_MAX_LENGTH:
                problems.append(("prefix", f"Prefix must be {PREFIX_MAX_LENGTH} characters or less"))
            if not _IDENTIFIER_RE.match(prefix.strip()):
                problems.append(
                    (
                        "prefix",
                        "Prefix must contain only alphanumeric characters, hyphens, and underscores",
                    )
                )

    scope = data.get("scope")
    if scope is not None:
        for message in _check_string_list(scope, "scope", "Scope", MAX_SCOPE_ENTRIES, None):
            problems.append(("scope", message))

    if problems:
        raise ValidationError(
            "Snippet validation failed",
            field=problems[0][0],
            errors=[message for _, message in problems],
            solution="Fix the listed fields and try again",
        )


def normalize_snippet_data(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return trimmed, independently copied editable fields of already-validated data."""
    category = data.get("category")
    prefix = data.get("prefix")
    scope = data.get("scope")
    return {
        "title": data["title"].strip(),
        "description": data.get("description") or "",
        "code": data["code"],
        "language": data["language"].strip(),
        "tags": [tag.strip() for tag in data.get("tags") or []],
        "category": category.strip() or None if category else None,
        "prefix": prefix.strip() or None if prefix else None,
        "scope": [entry.strip() for entry in scope] if scope is not None else None,
    }


@dataclass
class Snippet:
    """A stored code fragment with metadata and usage tracking.

    ``id`` and ``created_at`` are fixed once the instance exists. Every
    instance holds valid data: construction validates, and ``update`` checks
    the merged result before touching any field.
    """

    id: str
    title: str
    code: str
    language: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    category: str | None = None
    prefix: str | None = None
    scope: list[str] | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    usage_count: int = 0

    _IMMUTABLE_FIELDS: ClassVar[tuple[str, ...]] = ("id", "created_at")

    def __post_init__(self) -> None:
        if _is_blank(self.id):
            raise ValidationError(
                "Snippet id is required", field="id", solution="Give every snippet record an id"
            )
        if isinstance(self.usage_count, bool) or not isinstance(self.usage_count, int) or self.usage_count < 0:
            raise ValidationError(
                "Usage count must be a non-negative integer",
                field="usageCount",
                solution="Set usageCount to 0 or a positive whole number",
            )
        validate_snippet_data({name: getattr(self, name) for name in EDITABLE_FIELDS})
        self.tags = list(self.tags)
        if self.scope is not None:
            self.scope = list(self.scope)
        self.updated_at = ensure_utc(self.updated_at)
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self._IMMUTABLE_FIELDS and name in self.__dict__:
            raise AttributeError(f"Snippet.{name} cannot be reassigned")
        super().__setattr__(name, value)

    @classmethod
    def create(cls, data: Mapping[str, Any]) -> Snippet:
        """Build a brand-new snippet: fresh id, timestamps stamped, zero usage."""
        validate_snippet_data(data)
        now = utcnow()
        return cls(
            id=new_snippet_id(),
            created_at=now,
            updated_at=now,
            usage_count=0,
            **normalize_snippet_data(data),
        )

    @classmethod
    def from_dict(cls, bundle: Mapping[str, Any]) -> Snippet:
        """Rebuild a snippet from its serialised bundle.

        Accepts the camelCase keys of the file format as well as the
        attribute names. Missing timestamps default to now, a missing usage
        count to zero.
        """
        if not isinstance(bundle, Mapping):
            raise ValidationError(
                f"Snippet record must be a mapping, got {type(bundle).__name__}",
                field="snippet",
                solution="Store each snippet as an object with title, code and language",
            )

        def pick(camel: str, snake: str) -> Any:
            return bundle[camel] if camel in bundle else bundle.get(snake)

        stamps = {}
        for camel, snake in (("createdAt", "created_at"), ("updatedAt", "updated_at")):
            raw = pick(camel, snake)
            try:
                stamps[snake] = parse_timestamp(raw) if raw is not None else utcnow()
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    f"Invalid timestamp: {raw!r}",
                    field=camel,
                    solution="Use ISO-8601 timestamps such as 2024-01-15T10:30:00Z",
                ) from e

        usage_count = pick("usageCount", "usage_count")
        data = {name: bundle.get(name) for name in EDITABLE_FIELDS}
        if data["tags"] is None:
            data["tags"] = []
        validate_snippet_data(data)

        raw_id = bundle.get("id")
        return cls(
            id=str(raw_id) if raw_id is not None else "",
            usage_count=usage_count if usage_count is not None else 0,
            **stamps,
            **normalize_snippet_data(data),
        )

    def update(self, changes: Mapping[str, Any]) -> None:
        """Apply ``changes`` to the editable fields, all or nothing."""
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(
                "Snippet update contains fields that cannot be changed",
                field=unknown[0],
                errors=[f"Field cannot be updated: {name}" for name in unknown],
                solution=f"Only these fields are editable: {', '.join(EDITABLE_FIELDS)}",
            )

        merged = {**self.to_data(), **changes}
        validate_snippet_data(merged)
        normalized = normalize_snippet_data(merged)

        for name in changes:
            setattr(self, name, normalized[name])
        self.updated_at = max(utcnow(), self.updated_at)

    def increment_usage(self) -> None:
        self.usage_count += 1
        self.updated_at = max(utcnow(), self.updated_at)

    def matches(self, text: str) -> bool:
        """Case-insensitive substring test across the searchable fields."""
        needle = text.lower()
        haystacks = [self.title, self.description, self.code, self.language, *self.tags]
        if self.category:
            haystacks.append(self.category)
        return any(needle in value.lower() for value in haystacks)

    def has_tags(self, tags: Sequence[str]) -> bool:
        """True iff every requested tag is present (vacuously true for none)."""
        return all(tag in self.tags for tag in tags)

    def has_language(self, language: str) -> bool:
        return self.language == language

    def has_category(self, category: str) -> bool:
        return self.category == category

    def to_data(self) -> dict[str, Any]:
        """Editable fields only, with independent copies of list fields."""
        return {
            "title": self.title,
            "description": self.description,
            "code": self.code,
            "language": self.language,
            "tags": list(self.tags),
            "category": self.category,
            "prefix": self.prefix,
            "scope": list(self.scope) if self.scope is not None else None,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialisable bundle in the persisted file format."""
        return {
            "id": self.id,
            **self.to_data(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "usageCount": self.usage_count,
        }

    def copy(self) -> Snippet:
        """Independent deep copy."""
        return dataclasses.replace(self)


class ConflictStrategy(str, Enum):
    """How an imported snippet that collides with an existing one is handled."""

    SKIP = "skip"  # Keep the existing snippet untouched
    OVERWRITE = "overwrite"  # Replace the existing snippet's content
    RENAME = "rename"  # Keep both; the import gets a new id and a suffixed title
    MERGE = "merge"  # Field-level union into the existing snippet


@dataclass
class ConflictRecord:
    """One collision met during an import and what was done about it."""

    title: str
    existing_id: str
    resolution: ConflictStrategy
    reason: str
    new_title: str | None = None
    new_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "existingId": self.existing_id,
            "resolution": self.resolution.value,
            "reason": self.reason,
            "newTitle": self.new_title,
            "newId": self.new_id,
        }


@dataclass
class ImportReport:
    """Outcome of an import: counts plus per-item errors and conflicts."""

    imported: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    conflicts: list[ConflictRecord] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def processed(self) -> int:
        return self.imported + self.skipped + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
        }


@dataclass
class UsageStats:
    """Aggregate usage figures over the whole collection."""

    total_snippets: int
    total_usage: int
    average_usage: float
    most_used: list[Snippet] = field(default_factory=list)
    language_distribution: dict[str, int] = field(default_factory=dict)
    tag_distribution: dict[str, int] = field(default_factory=dict)
    category_distribution: dict[str, int] = field(default_factory=dict)
    recently_created: list[Snippet] = field(default_factory=list)
    recently_updated: list[Snippet] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalSnippets": self.total_snippets,
            "totalUsage": self.total_usage,
            "averageUsage": self.average_usage,
            "mostUsed": [
                {"id": s.id, "title": s.title, "usageCount": s.usage_count} for s in self.most_used
            ],
            "languageDistribution": dict(self.language_distribution),
            "tagDistribution": dict(self.tag_distribution),
            "categoryDistribution": dict(self.category_distribution),
            "recentlyCreated": [s.id for s in self.recently_created],
            "recentlyUpdated": [s.id for s in self.recently_updated],
        }
