"""Tests for the JSON file durable tier and the snapshot record format."""

import json
from pathlib import Path

import pytest

from conftest import make_document, make_snapshot
from ipmap.adapters.storage.file_store import FileSnapshotStore
from ipmap.core.errors import CacheStorageError
from ipmap.models.snapshot import VersionedSnapshot


def test_missing_file_reads_as_none(tmp_path: Path) -> None:
    store = FileSnapshotStore(tmp_path / "absent.json")

    assert store.read() is None
    assert store.size_bytes() is None
    assert store.delete() is False


def test_write_creates_directory_and_record(tmp_path: Path) -> None:
    store = FileSnapshotStore(tmp_path / "nested" / "dir" / "snapshot.json")

    store.write(make_snapshot("v1", captured_at=1234.5))

    record = json.loads(store.path.read_text(encoding="utf-8"))
    assert record == {
        "data": make_document("v1"),
        "timestamp": 1234.5,
        "createDate": "2024-01-01-00-00-00",
        "syncToken": "v1",
    }
    assert store.size_bytes() == store.path.stat().st_size


def test_write_leaves_no_temporary_files(tmp_path: Path) -> None:
    store = FileSnapshotStore(tmp_path / "snapshot.json")

    store.write(make_snapshot("v1"))
    store.write(make_snapshot("v2"))

    assert [p.name for p in tmp_path.iterdir()] == ["snapshot.json"]
    assert store.read().source_version_token == "v2"


def test_read_reuses_parsed_snapshot_until_file_changes(tmp_path: Path) -> None:
    store = FileSnapshotStore(tmp_path / "snapshot.json")
    store.write(make_snapshot("v1"))

    first = store.read()
    assert store.read() is first

    FileSnapshotStore(store.path).write(make_snapshot("v2-longer-token"))
    assert store.read().source_version_token == "v2-longer-token"


@pytest.mark.parametrize(
    "content",
    ["{truncated", "[1, 2, 3]", '{"data": [], "timestamp": 1, "createDate": "x", "syncToken": "y"}'],
    ids=["bad-json", "not-an-object", "data-not-an-object"],
)
def test_invalid_file_raises_storage_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "snapshot.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(CacheStorageError):
        FileSnapshotStore(path).read()


def test_write_failure_raises_storage_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = FileSnapshotStore(blocker / "snapshot.json")

    with pytest.raises(CacheStorageError) as exc_info:
        store.write(make_snapshot("v1"))

    assert exc_info.value.code == "cache_write_failed"


def test_snapshot_payload_is_read_only() -> None:
    document = make_document("v1")
    snapshot = VersionedSnapshot.capture(document, now=10.0)

    document["syncToken"] = "mutated"

    assert snapshot.payload["syncToken"] == "v1"
    with pytest.raises(TypeError):
        snapshot.payload["syncToken"] = "v2"  # type: ignore[index]


def test_snapshot_age_and_version_helpers() -> None:
    snapshot = make_snapshot("v1", captured_at=100.0)

    assert snapshot.age(160.0) == 60.0
    assert snapshot.age(50.0) == 0.0
    assert snapshot.is_expired(160.0, 60) is True
    assert snapshot.is_expired(159.9, 60) is False
    assert snapshot.same_version_as(make_snapshot("v1", captured_at=999.0))
    assert not snapshot.same_version_as(make_snapshot("v1", create_date="2025-01-01-00-00-00"))


def test_from_record_rejects_missing_fields() -> None:
    with pytest.raises(CacheStorageError) as exc_info:
        VersionedSnapshot.from_record({"data": {}, "timestamp": 1})

    assert exc_info.value.code == "cache_record_invalid"
