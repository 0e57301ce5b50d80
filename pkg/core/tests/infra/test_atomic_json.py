"""
Tests for AtomicJsonStore: locking, the temp-then-rename write and the
three-way read outcome of read-modify-write.
"""

import json
import logging
import re
import threading

import pytest

from fakes import FIXED_MS, RecordingStore

from remoteviewer.infra.atomic_json import (
    AtomicJsonStore,
    ResourceLockTable,
    serialize_document,
    temp_name,
)
from remoteviewer.infra.exceptions import (
    CorruptedStateError,
    NotFoundError,
    RemoteViewerError,
    RemoteStoreError,
    SerializationError,
    TransientNetworkError,
)
from remoteviewer.infra.json_repair import DocumentRepairer


def leftover_temps(directory):
    return [p.name for p in directory.rglob(".*.tmp-*")]


def test_write_then_read(atomic, data_dir):
    location = atomic.write("schedule.json", {"channels": {"1": {"type": "24hour", "slots": []}}})

    assert location == str(data_dir / "schedule.json")
    assert atomic.read("schedule.json", None) == {"channels": {"1": {"type": "24hour", "slots": []}}}
    assert leftover_temps(data_dir) == []


def test_read_missing_returns_copy_of_default(atomic):
    default = {"channels": {}}
    value = atomic.read("schedule.json", default)
    value["channels"]["x"] = 1
    assert default == {"channels": {}}


def test_read_raises_on_network_error(local_store):
    store = RecordingStore(local_store, fail_download=TransientNetworkError("timed out"))
    with pytest.raises(TransientNetworkError):
        AtomicJsonStore(store).read("schedule.json", {})


def test_read_raises_on_corrupted_document(atomic, data_dir):
    (data_dir / "schedule.json").write_text('{"channels": {', encoding="utf-8")
    with pytest.raises(CorruptedStateError):
        atomic.read("schedule.json", {})


def test_concurrent_updates_do_not_lose_increments(local_store, data_dir):
    slow = RecordingStore(local_store, download_delay=0.005)
    store = AtomicJsonStore(slow)

    def increment(document):
        document["count"] += 1
        return document

    threads = [
        threading.Thread(target=store.atomic_update, args=("counter.json", increment, {"count": 0}))
        for _ in range(20)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert json.loads((data_dir / "counter.json").read_text())["count"] == 20


def test_stores_sharing_a_lock_table_serialize_each_other(local_store, data_dir):
    table = ResourceLockTable()
    slow = RecordingStore(local_store, download_delay=0.02)
    first = AtomicJsonStore(slow, locks=table)
    second = AtomicJsonStore(slow, locks=table)
    assert first.locks is table
    assert second.locks is table

    def increment(document):
        document["count"] += 1
        return document

    threads = [
        threading.Thread(
            target=store.atomic_update, args=("counter.json", increment, {"count": 0})
        )
        for store in [first, second] * 5
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert json.loads((data_dir / "counter.json").read_text())["count"] == 10


def test_updates_of_different_documents_use_different_locks():
    table = ResourceLockTable()
    assert table.lock_for("a.json") is table.lock_for("a.json")
    assert table.lock_for("a.json") is not table.lock_for("b.json")
    assert len(table) == 2


def test_safe_mode_aborts_on_network_error(local_store, data_dir):
    (data_dir / "schedule.json").write_text('{"channels": {"1": {}}}', encoding="utf-8")
    store = RecordingStore(local_store, fail_download=TransientNetworkError("connection reset"))
    modifier_calls = []

    with pytest.raises(TransientNetworkError):
        AtomicJsonStore(store).atomic_update(
            "schedule.json",
            lambda doc: modifier_calls.append(doc),
            {"channels": {}},
            require_existing_on_error=True,
        )

    assert modifier_calls == []
    assert store.ops("upload") == []
    assert json.loads((data_dir / "schedule.json").read_text()) == {"channels": {"1": {}}}


def test_legacy_mode_falls_back_to_default_with_warning(local_store, data_dir, caplog):
    store = RecordingStore(local_store, fail_download=TransientNetworkError("connection reset"))

    with caplog.at_level(logging.WARNING, logger="remoteviewer.infra.atomic_json"):
        result = AtomicJsonStore(store).atomic_update(
            "schedule.json",
            lambda doc: {**doc, "seeded": True},
            {"channels": {}},
        )

    assert result == {"channels": {}, "seeded": True}
    assert "OVERWRITTEN" in caplog.text
    assert json.loads((data_dir / "schedule.json").read_text()) == result


def test_missing_document_seeds_default(atomic, data_dir):
    atomic.atomic_update("media-index.json", lambda doc: doc["items"].append("a") or doc, {"items": []})
    assert json.loads((data_dir / "media-index.json").read_text()) == {"items": ["a"]}


def test_require_existing_raises_not_found(atomic, data_dir):
    with pytest.raises(NotFoundError):
        atomic.atomic_update("schedule.json", lambda doc: doc, {}, require_existing=True)
    assert not (data_dir / "schedule.json").exists()


def test_modifier_returning_none_keeps_in_place_changes(atomic):
    def modifier(document):
        document["channels"]["1"] = {"type": "looping", "playlist": []}

    result = atomic.atomic_update("schedule.json", modifier, {"channels": {}})
    assert result == {"channels": {"1": {"type": "looping", "playlist": []}}}


def test_modifier_error_leaves_document_untouched(atomic, data_dir):
    atomic.write("schedule.json", {"channels": {}})

    def modifier(document):
        raise ValueError("rejected")

    with pytest.raises(ValueError):
        atomic.atomic_update("schedule.json", modifier, {"channels": {}})
    assert json.loads((data_dir / "schedule.json").read_text()) == {"channels": {}}


def test_rename_failure_deletes_temp_and_keeps_target(local_store, data_dir):
    (data_dir / "schedule.json").write_text('{"channels": {}}', encoding="utf-8")
    store = RecordingStore(local_store, fail_rename=RemoteStoreError("permission denied"))

    with pytest.raises(RemoteStoreError):
        AtomicJsonStore(store).write("schedule.json", {"channels": {"new": {}}})

    assert leftover_temps(data_dir) == []
    assert store.ops("delete") == store.ops("upload")
    assert json.loads((data_dir / "schedule.json").read_text()) == {"channels": {}}


def test_upload_failure_never_touches_target(local_store, data_dir):
    (data_dir / "schedule.json").write_text('{"channels": {}}', encoding="utf-8")
    store = RecordingStore(local_store, fail_upload_for=".tmp-")

    with pytest.raises(TransientNetworkError):
        AtomicJsonStore(store).write("schedule.json", {"channels": {"new": {}}})

    assert store.ops("rename") == []
    assert json.loads((data_dir / "schedule.json").read_text()) == {"channels": {}}


@pytest.mark.parametrize("value", [{"x": float("nan")}, {"x": {1, 2}}, {"x": object()}])
def test_unserializable_documents_are_rejected_before_upload(local_store, value):
    store = RecordingStore(local_store)
    with pytest.raises(SerializationError):
        AtomicJsonStore(store).write("schedule.json", value)
    assert store.ops("upload") == []


def test_serialize_document_round_trips():
    payload = serialize_document({"title": "Café", "n": [1, 2]})
    assert json.loads(payload.decode("utf-8")) == {"title": "Café", "n": [1, 2]}


def test_temp_name_is_hidden_sibling():
    name = temp_name("sub/schedule.json", 1700000000000)
    assert re.fullmatch(r"sub/\.schedule\.json\.tmp-1700000000000-[0-9a-f]{8}", name)


def test_corrupted_document_is_repaired_during_update(atomic, data_dir):
    raw = '{"channels": {"1": {"type": "24hour", "slots": []}, "2": {"type": "loop'
    (data_dir / "schedule.json").write_text(raw, encoding="utf-8")

    def add_channel(document):
        document["channels"]["3"] = {"type": "24hour", "slots": []}
        return document

    result = atomic.atomic_update(
        "schedule.json",
        add_channel,
        {"channels": {}},
        require_existing_on_error=True,
        repair_key="channels",
    )

    assert set(result["channels"]) == {"1", "3"}
    backup = data_dir / f"schedule.backup.{FIXED_MS}.json"
    assert backup.read_text(encoding="utf-8") == raw


def test_corrupted_document_without_repair_key_aborts_in_safe_mode(atomic, data_dir):
    (data_dir / "schedule.json").write_text("{{{", encoding="utf-8")
    with pytest.raises(CorruptedStateError):
        atomic.atomic_update("schedule.json", lambda d: d, {}, require_existing_on_error=True)
    assert (data_dir / "schedule.json").read_text() == "{{{"


def test_unrecoverable_document_aborts_in_safe_mode(atomic, data_dir):
    (data_dir / "schedule.json").write_text("garbage", encoding="utf-8")
    with pytest.raises(CorruptedStateError):
        atomic.atomic_update(
            "schedule.json", lambda d: d, {}, require_existing_on_error=True, repair_key="channels"
        )
    assert (data_dir / "schedule.json").read_text() == "garbage"
    assert (data_dir / f"schedule.backup.{FIXED_MS}.json").read_text() == "garbage"


def test_repair_leaves_valid_document_alone(atomic, data_dir):
    atomic.write("schedule.json", {"channels": {"1": {}, "2": {}}})

    report = atomic.repair("schedule.json")

    assert report.was_corrupted is False
    assert report.entries == ["1", "2"]
    assert list(data_dir.glob("schedule.backup.*")) == []


def test_repair_requires_repairer(local_store):
    with pytest.raises(RemoteViewerError, match="No repairer"):
        AtomicJsonStore(local_store).repair("schedule.json")


def test_repair_writes_recovered_document(local_store, data_dir):
    raw = b'{"channels": {"a": {"type": "24hour", "slots": []}, "b": {"type": "24h'
    (data_dir / "schedule.json").write_bytes(raw)
    store = AtomicJsonStore(local_store, repairer=DocumentRepairer(local_store, clock_ms=lambda: 42))

    report = store.repair("schedule.json", "channels")

    assert report.was_corrupted is True
    assert report.entries == ["a"]
    assert report.backup_location == str(data_dir / "schedule.backup.42.json")
    assert (data_dir / "schedule.backup.42.json").read_bytes() == raw
    assert json.loads((data_dir / "schedule.json").read_text()) == {
        "channels": {"a": {"type": "24hour", "slots": []}}
    }
