"""Tests for the storage module."""

import json
import os
import stat

import pytest
import yaml

from snipstore.config import StorageConfig
from snipstore.errors import ParseError, StorageError, ValidationError
from snipstore.storage import FORMAT_VERSION, StorageService, format_for_path


def test_missing_file_loads_empty(storage, store_path):
    """Test loading a store that was never written gives an empty collection."""
    assert not store_path.exists()
    assert storage.load_snippets() == []


def test_blank_file_loads_empty(storage, store_path):
    store_path.write_text("  \n")
    assert storage.load_snippets() == []


def test_save_and_load_json(storage, store_path, sample_snippets):
    storage.save_snippets(sample_snippets)

    data = json.loads(store_path.read_text())
    assert data["metadata"]["version"] == FORMAT_VERSION
    assert data["metadata"]["count"] == 3
    assert data["snippets"][0]["usageCount"] == 5

    assert storage.load_snippets() == sample_snippets


def test_save_and_load_yaml(temp_dir, sample_snippets):
    config = StorageConfig(path=str(temp_dir / "snippets.yaml"), format="yaml", auto_backup=False)
    storage = StorageService(config)

    storage.save_snippets(sample_snippets)

    data = yaml.safe_load((temp_dir / "snippets.yaml").read_text())
    assert data["metadata"]["count"] == 3
    assert storage.load_snippets() == sample_snippets


def test_save_empty_collection(storage):
    storage.save_snippets([])
    assert storage.load_snippets() == []


def test_bare_list_is_accepted(storage, store_path, sample_snippets):
    store_path.write_text(json.dumps([s.to_dict() for s in sample_snippets]))
    assert [s.id for s in storage.load_snippets()] == ["snip-1", "snip-2", "snip-3"]


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        '{"items": []}',
        '{"snippets": [{"id": "a", "title": "", "code": "x", "language": "py"}]}',
        '"just a string"',
        "null",
    ],
)
def test_corrupt_file_raises_parse_error(storage, store_path, content):
    """Test unreadable content fails loudly and names the file."""
    store_path.write_text(content)

    with pytest.raises(ParseError) as exc_info:
        storage.load_snippets()

    assert exc_info.value.path == store_path
    assert str(store_path) in str(exc_info.value)


def test_duplicate_ids_raise_parse_error(storage, store_path, sample_snippets):
    records = [sample_snippets[0].to_dict(), {**sample_snippets[1].to_dict(), "id": "snip-1"}]
    store_path.write_text(json.dumps({"snippets": records}))

    with pytest.raises(ParseError, match="Duplicate snippet id"):
        storage.load_snippets()


def test_failed_write_keeps_previous_file(storage, store_path, sample_snippets, monkeypatch):
    """Test a failing rename leaves the old file intact and no temp file behind."""
    storage.save_snippets(sample_snippets[:1])
    before = store_path.read_bytes()

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("snipstore.storage.os.replace", broken_replace)

    with pytest.raises(StorageError) as exc_info:
        storage.save_snippets(sample_snippets)

    assert isinstance(exc_info.value.cause, OSError)
    assert store_path.read_bytes() == before
    assert [p.name for p in store_path.parent.iterdir()] == [store_path.name]


def test_automatic_backup_respects_interval(temp_dir, sample_snippets):
    config = StorageConfig(path=str(temp_dir / "snippets.json"))
    storage = StorageService(config)

    storage.save_snippets(sample_snippets)
    storage.save_snippets(sample_snippets[:1])

    backups = storage.list_backups()
    assert len(backups) == 1
    assert backups[0].parent == temp_dir / "backups"
    assert backups[0].name.startswith("snippets-backup-")
    assert storage.last_backup_time is not None


def test_no_backup_when_disabled(storage, temp_dir, sample_snippets):
    storage.save_snippets(sample_snippets)

    assert storage.list_backups() == []
    assert not (temp_dir / "backups").exists()


def test_backup_failure_does_not_fail_save(temp_dir, sample_snippets):
    """Test an unwritable backup directory only logs a warning."""
    (temp_dir / "backups").write_text("in the way")
    storage = StorageService(StorageConfig(path=str(temp_dir / "snippets.json")))

    storage.save_snippets(sample_snippets)

    assert storage.load_snippets() == sample_snippets
    assert storage.last_backup_time is None


def test_create_list_and_restore_backup(storage, sample_snippets):
    storage.save_snippets(sample_snippets)

    first = storage.create_backup()
    second = storage.create_backup(sample_snippets[:1])

    assert storage.list_backups() == [second, first]
    assert storage.restore_from_backup(first) == sample_snippets
    assert storage.restore_from_backup(second) == sample_snippets[:1]


def test_restore_missing_backup_raises(storage, temp_dir):
    with pytest.raises(StorageError):
        storage.restore_from_backup(temp_dir / "backups" / "nope.json")


def test_workspace_paths_resolve_against_root(temp_dir):
    storage = StorageService(StorageConfig.create_workspace(), workspace_root=temp_dir)

    assert storage.file_path == temp_dir / ".snipstore" / "snippets.json"
    assert storage.backup_directory == temp_dir / ".snipstore" / "backups"
    assert storage.check_access()


def test_format_for_path():
    assert format_for_path("export.yml") == "yaml"
    assert format_for_path("export.YAML") == "yaml"
    assert format_for_path("export.json", "yaml") == "json"
    assert format_for_path("export.txt", "yaml") == "yaml"


def test_non_list_tags_fail_the_load(storage, store_path, sample_snippets):
    """Test a record whose tags are not a list is rejected, not silently emptied."""
    record = {**sample_snippets[0].to_dict(), "tags": "python"}
    store_path.write_text(json.dumps({"snippets": [record]}))

    with pytest.raises(ParseError) as exc_info:
        storage.load_snippets()

    assert exc_info.value.path == store_path
    assert store_path.read_text() == json.dumps({"snippets": [record]})


def test_missing_tags_default_to_empty(storage, store_path, sample_snippets):
    record = sample_snippets[0].to_dict()
    del record["tags"]
    store_path.write_text(json.dumps({"snippets": [record]}))

    assert storage.load_snippets()[0].tags == []


def test_new_file_mode_follows_umask(storage, store_path):
    umask = os.umask(0o022)
    try:
        storage.save_snippets([])
    finally:
        os.umask(umask)

    assert stat.S_IMODE(store_path.stat().st_mode) == 0o644


def test_save_keeps_existing_file_mode(storage, store_path, sample_snippets):
    storage.save_snippets([])
    store_path.chmod(0o640)

    storage.save_snippets(sample_snippets)

    assert stat.S_IMODE(store_path.stat().st_mode) == 0o640


def test_get_config_returns_copy(storage):
    config = storage.get_config()
    config.update(format="yaml")

    assert storage.config.format == "json"


def test_set_storage_location(storage, temp_dir, sample_snippets):
    target = temp_dir / "elsewhere" / "snippets.json"

    storage.set_storage_location("global", target)

    assert storage.file_path == target
    assert storage.config.location == "global"
    storage.save_snippets(sample_snippets)
    assert target.exists()


def test_set_storage_location_to_workspace(temp_dir):
    storage = StorageService(
        StorageConfig(path=str(temp_dir / "snippets.json"), auto_backup=False),
        workspace_root=temp_dir,
    )

    storage.set_storage_location("workspace")

    assert storage.config.location == "workspace"
    assert storage.file_path == temp_dir / ".snipstore" / "snippets.json"


@pytest.mark.parametrize(
    "location,path",
    [
        ("cloud", None),
        ("global", "relative/snippets.json"),
    ],
)
def test_set_storage_location_invalid_keeps_config(storage, store_path, location, path):
    with pytest.raises(ValidationError):
        storage.set_storage_location(location, path)

    assert storage.file_path == store_path
    assert storage.config.location == "global"


def test_set_storage_location_unwritable_keeps_config(storage, store_path, temp_dir, monkeypatch):
    monkeypatch.setattr("snipstore.storage.os.access", lambda path, mode: False)

    with pytest.raises(StorageError, match="not writable"):
        storage.set_storage_location("global", temp_dir / "locked" / "snippets.json")

    assert storage.file_path == store_path
