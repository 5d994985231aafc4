"""Immutable search query value for filtering and sorting snippets."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from snipstore.errors import Result, ValidationError
from snipstore.models import ensure_utc, parse_timestamp

SORT_FIELDS = ("title", "created_at", "usage_count")
SORT_ORDERS = ("asc", "desc")

# Wire spellings of the sort fields
_SORT_ALIASES = {
    "createdAt": "created_at",
    "usageCount": "usage_count",
}
_SORT_WIRE_NAMES = {value: key for key, value in _SORT_ALIASES.items()}

_TAGS_SOLUTION = 'Pass tags as a list such as ["http", "async"]'


@dataclass(frozen=True)
class DateRange:
    """Inclusive ``[start, end]`` window over snippet creation time."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        for name in ("start", "end"):
            value = getattr(self, name)
            if not isinstance(value, datetime):
                raise ValidationError(
                    f"Date range {name} must be a datetime",
                    field=f"date_range.{name}",
                    solution="Pass datetime objects for both ends of the range",
                )
            object.__setattr__(self, name, ensure_utc(value))
        if self.start > self.end:
            raise ValidationError(
                "Start date must be before end date",
                field="date_range",
                solution="Ensure the start date is before the end date",
            )

    def contains(self, moment: datetime) -> bool:
        return self.start <= ensure_utc(moment) <= self.end


@dataclass(frozen=True)
class SearchQuery:
    """A validated filter + sort request.

    Instances never change; every ``add_*``/``set_sorting`` call returns a
    ``Result`` wrapping a new query. Constructing an invalid query raises
    ``ValidationError``.
    """

    text: str | None = None
    language: str | None = None
    tags: tuple[str, ...] | None = None
    category: str | None = None
    date_range: DateRange | None = None
    sort_by: str | None = None
    sort_order: str | None = None

    def __post_init__(self) -> None:
        for name in ("text", "language", "category"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ValidationError(
                    f"Search {name} must be a string",
                    field=name,
                    solution=f"Pass {name} as text or leave it unset",
                )

        if self.tags is not None:
            if isinstance(self.tags, str) or not isinstance(self.tags, Sequence):
                raise ValidationError(
                    "Tags filter must be a list of strings", field="tags", solution=_TAGS_SOLUTION
                )
            if not all(isinstance(tag, str) for tag in self.tags):
                raise ValidationError(
                    "Tags filter must contain only strings", field="tags", solution=_TAGS_SOLUTION
                )
            object.__setattr__(self, "tags", tuple(self.tags))

        if self.date_range is not None and not isinstance(self.date_range, DateRange):
            raise ValidationError(
                "Date range must be a DateRange",
                field="date_range",
                solution="Build the range with DateRange(start, end)",
            )

        if self.sort_by is not None:
            sort_by = _SORT_ALIASES.get(self.sort_by, self.sort_by)
            if sort_by not in SORT_FIELDS:
                raise ValidationError(
                    f"Sort field must be one of: {', '.join(SORT_FIELDS)}",
                    field="sort_by",
                    solution="Sort by title, created_at or usage_count",
                )
            object.__setattr__(self, "sort_by", sort_by)

        if self.sort_order is not None and self.sort_order not in SORT_ORDERS:
            raise ValidationError(
                f"Sort order must be one of: {', '.join(SORT_ORDERS)}",
                field="sort_order",
                solution="Use 'asc' or 'desc'",
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SearchQuery:
        """Build a query from a plain mapping (camelCase keys accepted)."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValidationError(
                "Search query must be a mapping",
                field="query",
                solution="Pass a SearchQuery or a dict of filters",
            )

        date_range = data.get("date_range", data.get("dateRange"))
        if isinstance(date_range, Mapping):
            try:
                date_range = DateRange(
                    parse_timestamp(date_range["start"]), parse_timestamp(date_range["end"])
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ValidationError(
                    "Date range needs ISO-8601 'start' and 'end'",
                    field="date_range",
                    solution="Give dateRange as ISO-8601 start and end dates, e.g. 2024-01-01",
                ) from e

        return cls(
            text=data.get("text"),
            language=data.get("language"),
            tags=data.get("tags"),
            category=data.get("category"),
            date_range=date_range,
            sort_by=data.get("sort_by", data.get("sortBy")),
            sort_order=data.get("sort_order", data.get("sortOrder")),
        )

    @classmethod
    def with_text(cls, text: str) -> SearchQuery:
        return cls(text=text)

    @classmethod
    def with_language(cls, language: str) -> SearchQuery:
        return cls(language=language)

    @classmethod
    def with_tags(cls, tags: Sequence[str]) -> SearchQuery:
        return cls(tags=tuple(tags))

    @classmethod
    def with_category(cls, category: str) -> SearchQuery:
        return cls(category=category)

    @classmethod
    def with_date_range(cls, start: datetime, end: datetime) -> SearchQuery:
        return cls(date_range=DateRange(start, end))

    def _derive(self, **changes: Any) -> Result[SearchQuery]:
        try:
            return Result.ok(dataclasses.replace(self, **changes))
        except ValidationError as e:
            return Result.fail(e)

    def add_text(self, text: str) -> Result[SearchQuery]:
        return self._derive(text=text)

    def add_language(self, language: str) -> Result[SearchQuery]:
        return self._derive(language=language)

    def add_tags(self, tags: Sequence[str]) -> Result[SearchQuery]:
        if isinstance(tags, str):
            return Result.fail(
                ValidationError(
                    "Tags filter must be a list of strings", field="tags", solution=_TAGS_SOLUTION
                )
            )
        return self._derive(tags=tuple(tags))

    def add_category(self, category: str) -> Result[SearchQuery]:
        return self._derive(category=category)

    def add_date_range(self, start: datetime, end: datetime) -> Result[SearchQuery]:
        try:
            date_range = DateRange(start, end)
        except ValidationError as e:
            return Result.fail(e)
        return self._derive(date_range=date_range)

    def set_sorting(self, sort_by: str, sort_order: str = "asc") -> Result[SearchQuery]:
        return self._derive(sort_by=sort_by, sort_order=sort_order)

    def clear(self) -> SearchQuery:
        return SearchQuery()

    def is_empty(self) -> bool:
        """True when no filter is set (sorting does not count as a filter)."""
        return (
            not self.text
            and not self.language
            and not self.tags
            and not self.category
            and self.date_range is None
        )

    def has_filters(self) -> bool:
        return not self.is_empty()

    def filter_summary(self) -> list[str]:
        """Human-readable description of the active filters."""
        summary = []
        if self.text:
            summary.append(f'text: "{self.text}"')
        if self.language:
            summary.append(f"language: {self.language}")
        if self.tags:
            summary.append(f"tags: [{', '.join(self.tags)}]")
        if self.category:
            summary.append(f"category: {self.category}")
        if self.date_range:
            summary.append(
                f"date range: {self.date_range.start.date()} - {self.date_range.end.date()}"
            )
        if self.sort_by:
            summary.append(f"sort: {self.sort_by} {self.sort_order or 'asc'}")
        return summary

    def clone(self) -> SearchQuery:
        return dataclasses.replace(self)

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping in wire form; lists and dates are fresh objects."""
        return {
            "text": self.text,
            "language": self.language,
            "tags": list(self.tags) if self.tags is not None else None,
            "category": self.category,
            "dateRange": (
                {
                    "start": self.date_range.start.isoformat(),
                    "end": self.date_range.end.isoformat(),
                }
                if self.date_range
                else None
            ),
            "sortBy": _SORT_WIRE_NAMES.get(self.sort_by, self.sort_by),
            "sortOrder": self.sort_order,
        }
