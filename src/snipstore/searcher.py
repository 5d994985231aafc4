"""Filtering and sorting of snippets against a SearchQuery."""

from collections.abc import Callable, Iterable
from typing import Any

from snipstore.models import Snippet
from snipstore.query import SearchQuery

_SORT_KEYS: dict[str, Callable[[Snippet], Any]] = {
    "title": lambda s: s.title.casefold(),
    "created_at": lambda s: s.created_at,
    "usage_count": lambda s: s.usage_count,
}


class SearchEngine:
    """Pure evaluation of queries over an in-memory collection.

    Filters are conjunctive: text, then language, tags (all required),
    category and creation date range. Sorting is stable, so snippets that
    compare equal keep their collection order in both directions.
    """

    def search(self, snippets: Iterable[Snippet], query: SearchQuery) -> list[Snippet]:
        results = self.filter(snippets, query)
        if query.sort_by:
            results = self.sort(results, query.sort_by, query.sort_order or "asc")
        return results

    def filter(self, snippets: Iterable[Snippet], query: SearchQuery) -> list[Snippet]:
        results = list(snippets)

        if query.text:
            results = [s for s in results if s.matches(query.text)]

        if query.language:
            results = [s for s in results if s.has_language(query.language)]

        if query.tags:
            results = [s for s in results if s.has_tags(query.tags)]

        if query.category:
            results = [s for s in results if s.has_category(query.category)]

        if query.date_range:
            results = [s for s in results if query.date_range.contains(s.created_at)]

        return results

    @staticmethod
    def sort(snippets: Iterable[Snippet], sort_by: str, sort_order: str = "asc") -> list[Snippet]:
        # sorted() keeps equal elements in input order even with reverse=True
        return sorted(snippets, key=_SORT_KEYS[sort_by], reverse=sort_order == "desc")
