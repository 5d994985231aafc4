"""Tests for the models module."""

from datetime import timedelta

import pytest

from snipstore.errors import ValidationError
from snipstore.models import Snippet, validate_snippet_data


def test_create_snippet(snippet_data):
    """Test a new snippet gets an id, matching timestamps and zero usage."""
    snippet = Snippet.create(snippet_data)

    assert snippet.id
    assert snippet.title == snippet_data["title"]
    assert snippet.code == snippet_data["code"]
    assert snippet.tags == ["io", "json"]
    assert snippet.usage_count == 0
    assert snippet.created_at == snippet.updated_at
    assert snippet.created_at.tzinfo is not None


def test_create_trims_and_copies(snippet_data):
    """Test title and tags are trimmed and the input list is not aliased."""
    snippet_data["title"] = "  Padded title  "
    snippet_data["tags"] = [" io "]
    snippet = Snippet.create(snippet_data)

    assert snippet.title == "Padded title"
    assert snippet.tags == ["io"]
    snippet_data["tags"].append("other")
    assert snippet.tags == ["io"]


def test_ids_are_unique(snippet_data):
    ids = {Snippet.create(snippet_data).id for _ in range(50)}
    assert len(ids) == 50


def test_validation_collects_all_problems():
    """Test every violation is reported and the first field is named."""
    with pytest.raises(ValidationError) as exc_info:
        validate_snippet_data({"title": "   ", "code": "", "language": "c plus plus"})

    error = exc_info.value
    assert error.field == "title"
    assert "Title is required" in error.errors
    assert "Code is required" in error.errors
    assert any("Language must contain only" in message for message in error.errors)


@pytest.mark.parametrize(
    "changes,field",
    [
        ({"title": "x" * 101}, "title"),
        ({"description": "x" * 501}, "description"),
        ({"tags": [f"t{i}" for i in range(21)]}, "tags"),
        ({"tags": ["ok", ""]}, "tags"),
        ({"tags": "not-a-list"}, "tags"),
        ({"prefix": "has space"}, "prefix"),
        ({"scope": ["python"] * 11}, "scope"),
    ],
)
def test_validation_limits(snippet_data, changes, field):
    with pytest.raises(ValidationError) as exc_info:
        Snippet.create({**snippet_data, **changes})
    assert exc_info.value.field == field


def test_update_applies_changes(snippet_data):
    snippet = Snippet.create(snippet_data)
    before = snippet.updated_at

    snippet.update({"title": "Renamed", "tags": ["io"]})

    assert snippet.title == "Renamed"
    assert snippet.tags == ["io"]
    assert snippet.code == snippet_data["code"]
    assert snippet.updated_at >= before


def test_invalid_update_changes_nothing(snippet_data):
    """Test a rejected update leaves every field, including updated_at, untouched."""
    snippet = Snippet.create(snippet_data)
    before = snippet.to_dict()

    with pytest.raises(ValidationError):
        snippet.update({"description": "new description", "code": "   "})

    assert snippet.to_dict() == before


def test_update_rejects_identity_fields(snippet_data):
    snippet = Snippet.create(snippet_data)
    before = snippet.to_dict()

    with pytest.raises(ValidationError) as exc_info:
        snippet.update({"id": "other", "usage_count": 100})

    assert exc_info.value.field == "id"
    assert snippet.to_dict() == before


def test_identity_cannot_be_reassigned(snippet_data):
    snippet = Snippet.create(snippet_data)
    with pytest.raises(AttributeError):
        snippet.id = "new-id"
    with pytest.raises(AttributeError):
        snippet.created_at = snippet.created_at + timedelta(days=1)


def test_increment_usage(snippet_data):
    """Test N increments add exactly N and never move updated_at backwards."""
    snippet = Snippet.create(snippet_data)
    previous = snippet.updated_at

    for _ in range(5):
        snippet.increment_usage()
        assert snippet.updated_at >= previous
        previous = snippet.updated_at

    assert snippet.usage_count == 5


def test_matches_is_case_insensitive(snippet_data):
    snippet = Snippet.create(snippet_data)

    assert snippet.matches("JSON FILE")
    assert snippet.matches("json.load")
    assert snippet.matches("PYTHON")
    assert snippet.matches("Files")  # category
    assert snippet.matches("io")  # tag
    assert not snippet.matches("rust")


def test_has_tags(snippet_data):
    snippet = Snippet.create(snippet_data)

    assert snippet.has_tags([])
    assert snippet.has_tags(["io"])
    assert snippet.has_tags(["json", "io"])
    assert not snippet.has_tags(["io", "http"])


def test_dict_round_trip(snippet_data):
    snippet = Snippet.create(snippet_data)
    snippet.increment_usage()

    bundle = snippet.to_dict()
    assert bundle["usageCount"] == 1
    assert isinstance(bundle["createdAt"], str)

    restored = Snippet.from_dict(bundle)
    assert restored == snippet


def test_from_dict_defaults(snippet_data):
    """Test missing usage count and tags fall back to their defaults."""
    bundle = {"id": "abc", **snippet_data}
    del bundle["tags"]

    snippet = Snippet.from_dict(bundle)
    assert snippet.usage_count == 0
    assert snippet.tags == []


def test_from_dict_rejects_bad_records(snippet_data):
    with pytest.raises(ValidationError):
        Snippet.from_dict(snippet_data)  # no id
    with pytest.raises(ValidationError):
        Snippet.from_dict({"id": "x", **snippet_data, "usageCount": -1})
    with pytest.raises(ValidationError):
        Snippet.from_dict({"id": "x", **snippet_data, "createdAt": "yesterday"})


def test_copies_are_independent(snippet_data):
    snippet = Snippet.create(snippet_data)

    duplicate = snippet.copy()
    duplicate.tags.append("extra")
    data = snippet.to_data()
    data["tags"].append("more")

    assert snippet.tags == ["io", "json"]
    assert duplicate == Snippet.from_dict({**snippet.to_dict(), "tags": ["io", "json", "extra"]})


def test_validation_errors_carry_solution(snippet_data):
    with pytest.raises(ValidationError) as exc_info:
        Snippet.create({**snippet_data, "code": ""})
    assert exc_info.value.solution

    with pytest.raises(ValidationError) as exc_info:
        Snippet.from_dict({"id": "x", **snippet_data, "usageCount": "many"})
    assert exc_info.value.field == "usageCount"
    assert exc_info.value.solution

    with pytest.raises(ValidationError) as exc_info:
        Snippet.from_dict({"id": "x", **snippet_data, "updatedAt": "later"})
    assert exc_info.value.field == "updatedAt"
    assert exc_info.value.solution


def test_from_dict_rejects_non_list_tags(snippet_data):
    with pytest.raises(ValidationError) as exc_info:
        Snippet.from_dict({"id": "x", **snippet_data, "tags": "python"})
    assert exc_info.value.field == "tags"
