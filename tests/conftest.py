"""Pytest fixtures for snipstore tests."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from snipstore.config import StorageConfig
from snipstore.manager import SnippetManager
from snipstore.models import Snippet
from snipstore.storage import StorageService


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store_path(temp_dir):
    return temp_dir / "snippets.json"


@pytest.fixture
def storage(store_path):
    """A storage service on a temp file, without automatic backups."""
    config = StorageConfig(location="global", path=str(store_path), auto_backup=False)
    return StorageService(config)


@pytest.fixture
def manager(storage):
    return SnippetManager(storage)


@pytest.fixture
def snippet_data():
    """Valid data for creating a snippet."""
    return {
        "title": "Read a JSON file",
        "description": "Load JSON from disk",
        "code": "with open(path) as f:\n    data = json.load(f)",
        "language": "python",
        "tags": ["io", "json"],
        "category": "files",
    }


@pytest.fixture
def sample_snippets():
    """Three snippets with fixed timestamps and usage counts 5, 2, 8."""
    return [
        Snippet(
            id="snip-1",
            title="Fetch URL",
            code="requests.get(url)",
            language="python",
            tags=["http", "web"],
            category="network",
            created_at=datetime(2023, 3, 1, 12, 0, tzinfo=timezone.utc),
            updated_at=datetime(2023, 3, 1, 12, 0, tzinfo=timezone.utc),
            usage_count=5,
        ),
        Snippet(
            id="snip-2",
            title="array map",
            code="xs.map(x => x * 2)",
            language="javascript",
            tags=["arrays"],
            created_at=datetime(2023, 6, 15, 8, 30, tzinfo=timezone.utc),
            updated_at=datetime(2023, 6, 15, 8, 30, tzinfo=timezone.utc),
            usage_count=2,
        ),
        Snippet(
            id="snip-3",
            title="Async fetch",
            description="aiohttp session GET",
            code="async with session.get(url) as resp: ...",
            language="python",
            tags=["http", "async"],
            category="network",
            created_at=datetime(2023, 12, 31, 23, 59, tzinfo=timezone.utc),
            updated_at=datetime(2023, 12, 31, 23, 59, tzinfo=timezone.utc),
            usage_count=8,
        ),
    ]
