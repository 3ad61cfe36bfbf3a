"""Key-value storage tests — MemoryStorage and file-backed JsonFileStorage."""

import json

import pytest

from quotedesk.core.fallback_queue import LocalFallbackQueue
from quotedesk.infrastructure.key_value_storage import JsonFileStorage, MemoryStorage


def test_memory_storage_basic_operations():
    storage = MemoryStorage({"a": "1"})

    assert storage.get_item("a") == "1"
    storage.set_item("b", "2")
    storage.remove_item("a")
    storage.remove_item("missing")

    assert storage.get_item("a") is None
    assert storage.get_item("b") == "2"
    assert storage.ping() is True


def test_file_storage_round_trip(tmp_path):
    path = tmp_path / "queue" / "pending.json"
    storage = JsonFileStorage(path)

    assert storage.get_item("k") is None
    storage.set_item("k", "v")
    storage.set_item("other", "w")
    storage.remove_item("other")

    assert json.loads(path.read_text()) == {"k": "v"}
    assert JsonFileStorage(path).get_item("k") == "v"


def test_file_storage_leaves_no_temp_files(tmp_path):
    storage = JsonFileStorage(tmp_path / "pending.json")
    for i in range(3):
        storage.set_item("k", str(i))

    assert [p.name for p in tmp_path.iterdir()] == ["pending.json"]


def test_file_storage_corrupt_document_raises(tmp_path):
    path = tmp_path / "pending.json"
    path.write_text("{truncated")
    storage = JsonFileStorage(path)

    with pytest.raises(ValueError):
        storage.get_item("k")
    assert storage.ping() is False


def test_file_storage_non_object_document_raises(tmp_path):
    path = tmp_path / "pending.json"
    path.write_text("[1, 2]")

    with pytest.raises(ValueError):
        JsonFileStorage(path).get_item("k")


def test_file_storage_ping_creates_directory(tmp_path):
    storage = JsonFileStorage(tmp_path / "new" / "pending.json")
    assert storage.ping() is True
    assert (tmp_path / "new").is_dir()


def test_queue_survives_restart_on_file_storage(tmp_path):
    path = tmp_path / "pending.json"
    entry = LocalFallbackQueue(JsonFileStorage(path)).enqueue({"email": "a@example.com"})

    reopened = LocalFallbackQueue(JsonFileStorage(path))

    assert [e.correlation_id for e in reopened.list()] == [entry.correlation_id]
