"""snipstore: a personal code-snippet store with search, backups and import/export."""

from snipstore.config import StorageConfig
from snipstore.errors import (
    ImportFailedError,
    ParseError,
    Result,
    SnippetStoreError,
    StorageError,
    ValidationError,
)
from snipstore.manager import SnippetManager
from snipstore.models import ConflictStrategy, ImportReport, Snippet, UsageStats
from snipstore.query import DateRange, SearchQuery
from snipstore.searcher import SearchEngine
from snipstore.storage import StorageService

__version__ = "0.1.0"

__all__ = [
    "ConflictStrategy",
    "DateRange",
    "ImportFailedError",
    "ImportReport",
    "ParseError",
    "Result",
    "SearchEngine",
    "SearchQuery",
    "Snippet",
    "SnippetManager",
    "SnippetStoreError",
    "StorageConfig",
    "StorageError",
    "StorageService",
    "UsageStats",
    "ValidationError",
    "__version__",
]
