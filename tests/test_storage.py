"""
tests/test_storage.py - Storage Ports, SessionStore, PackStore

Every store test runs against both the in-memory port and the file port.
"""

import dataclasses
import json
from datetime import datetime

import pytest

from mapper.stimuli import DEMO_10, StimulusList
from mapper.storage import (
    DRAFT_KEY,
    SESSIONS_KEY,
    STAGING_SUFFIX,
    JsonFileStorage,
    MemoryStorage,
    PackInUseError,
    PackStore,
    SessionStore,
)
from mapper.types_session import ImportedFrom


@pytest.fixture(params=["memory", "files"])
def storage(request, tmp_path):
    if request.param == "memory":
        return MemoryStorage()
    return JsonFileStorage(str(tmp_path / "store"))


@pytest.fixture
def store(storage):
    return SessionStore(storage)


def renamed(session, new_id, completed_at=None, **kwargs):
    return dataclasses.replace(
        session,
        id=new_id,
        completed_at=completed_at or session.completed_at,
        **kwargs,
    )


class TestPorts:
    """get/set/remove/keys contract."""

    def test_round_trip(self, storage):
        assert storage.get("k") is None
        assert storage.set("k", "value")
        assert storage.get("k") == "value"
        assert storage.keys() == ["k"]
        storage.remove("k")
        assert storage.get("k") is None

    def test_remove_missing(self, storage):
        storage.remove("missing")

    def test_overwrite(self, storage):
        storage.set("k", "a")
        storage.set("k", "b")
        assert storage.get("k") == "b"

    def test_file_port_undecodable_reads_absent(self, tmp_path):
        port = JsonFileStorage(str(tmp_path))
        (tmp_path / f"{SESSIONS_KEY}.json").write_bytes(b"\xff\xfe\x00garbage")
        assert port.get(SESSIONS_KEY) is None
        store = SessionStore(port)
        assert store.load("x") is None
        assert store.list() == []
        assert store.save_draft({"id": "d"})

    def test_file_port_leaves_no_temp_files(self, tmp_path):
        port = JsonFileStorage(str(tmp_path))
        port.set("k", "v")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["k.json"]


class TestSessionStore:
    """Saved sessions survive a round trip through storage."""

    def test_save_load(self, store, sample_session):
        assert store.save(sample_session)
        loaded = store.load(sample_session.id)
        assert loaded == sample_session
        assert store.exists(sample_session.id)

    def test_missing(self, store):
        assert store.load("nope") is None
        assert not store.exists("nope")

    def test_list_newest_first(self, store, sample_session):
        store.save(renamed(sample_session, "old", "2026-01-01T00:00:00.000Z"))
        store.save(renamed(sample_session, "new", "2026-03-01T00:00:00.000Z"))
        entries = store.list()
        assert [e.id for e in entries] == ["new", "old"]
        assert entries[0].total_trials == 8
        assert entries[0].stimulus_list_id == "demo-10"
        assert entries[0].to_dict()["totalTrials"] == 8

    def test_delete(self, store, sample_session):
        store.save(sample_session)
        store.delete(sample_session.id)
        assert store.load(sample_session.id) is None
        store.delete("never-there")

    def test_delete_all(self, store, sample_session):
        store.save(sample_session)
        store.delete_all()
        assert store.list() == []

    def test_delete_imported(self, store, sample_session):
        store.save(sample_session)
        store.save(renamed(
            sample_session, "imported",
            imported_from=ImportedFrom("pkg_v1", "ab" * 32, sample_session.id),
        ))
        assert store.delete_imported() == 1
        assert [e.id for e in store.list()] == [sample_session.id]

    def test_non_object_entries_ignored(self, storage, store, sample_session):
        storage.set(SESSIONS_KEY, json.dumps({
            "schemaVersion": 3,
            "sessions": {"a": "garbage", "b": [1, 2], sample_session.id: sample_session.to_dict()},
        }))
        assert store.load("a") is None
        assert not store.exists("b")
        assert [e.id for e in store.list()] == [sample_session.id]
        assert store.referenced_packs() == {"demo-10@1.0.0"}
        assert store.delete_imported() == 0
        assert store.delete_older_than(datetime(2000, 1, 1)) == 0

    def test_non_object_config_skipped_in_pack_refs(self, storage, store):
        storage.set(SESSIONS_KEY, json.dumps({"schemaVersion": 3, "sessions": {"a": {"config": "x"}}}))
        assert store.referenced_packs() == set()
        assert store.list() == []

    def test_delete_older_than(self, store, sample_session):
        store.save(renamed(sample_session, "old", "2025-06-01T00:00:00.000Z"))
        store.save(renamed(sample_session, "new", "2026-06-01T00:00:00.000Z"))
        assert store.delete_older_than(datetime(2026, 1, 1)) == 1
        assert [e.id for e in store.list()] == ["new"]

    def test_envelope_layout(self, storage, store, sample_session):
        store.save(sample_session)
        data = json.loads(storage.get(SESSIONS_KEY))
        assert data["schemaVersion"] == 3
        assert list(data["sessions"]) == [sample_session.id]
        assert storage.get(SESSIONS_KEY + STAGING_SUFFIX) is None

    def test_legacy_bare_map(self, storage, store, sample_session):
        storage.set(SESSIONS_KEY, json.dumps({sample_session.id: sample_session.to_dict()}))
        assert store.load(sample_session.id) == sample_session

    def test_corrupt_json_reads_empty(self, storage, store):
        storage.set(SESSIONS_KEY, "{not json")
        assert store.list() == []

    def test_unreadable_session_skipped(self, storage, store, sample_session):
        storage.set(SESSIONS_KEY, json.dumps({
            "schemaVersion": 3,
            "sessions": {"bad": {"trials": []}, sample_session.id: sample_session.to_dict()},
        }))
        assert [e.id for e in store.list()] == [sample_session.id]

    def test_leftover_staging_discarded(self, storage, store, sample_session):
        store.save(sample_session)
        storage.set(SESSIONS_KEY + STAGING_SUFFIX, "{}")
        assert store.exists(sample_session.id)
        assert storage.get(SESSIONS_KEY + STAGING_SUFFIX) is None

    def test_export_all(self, store, sample_session):
        store.save(sample_session)
        data = json.loads(store.export_all())
        assert data["sessions"][sample_session.id]["id"] == sample_session.id

    def test_referenced_packs(self, store, sample_session):
        store.save(sample_session)
        assert store.referenced_packs() == {"demo-10@1.0.0"}


class TestDraft:
    """Single draft slot with defaults filled on load."""

    def test_round_trip_with_defaults(self, store):
        store.save_draft({"id": "draft_1", "wordList": ["a", "b"]})
        draft = store.load_draft()
        assert draft["id"] == "draft_1"
        assert draft["stimulusOrder"] == ["a", "b"]
        assert draft["orderPolicy"] == "fixed"
        assert draft["currentIndex"] == 0
        assert draft["trials"] == []
        assert draft["seedUsed"] is None

    def test_without_id_is_absent(self, store):
        store.save_draft({"wordList": ["a"]})
        assert store.load_draft() is None

    def test_corrupt(self, storage, store):
        storage.set(DRAFT_KEY, "oops")
        assert store.load_draft() is None

    def test_delete(self, store):
        store.save_draft({"id": "d"})
        store.delete_draft()
        assert store.load_draft() is None

    def test_lock_passthrough(self, storage):
        clock = iter(range(0, 10_000_000, 1000)).__next__
        a = SessionStore(storage, lock_ttl_ms=120_000, clock=clock)
        b = SessionStore(storage, lock_ttl_ms=120_000, clock=clock)
        assert a.acquire_draft_lock("tab-a")
        assert b.is_draft_locked_by_other("tab-b")
        assert not b.acquire_draft_lock("tab-b")
        a.release_draft_lock("tab-a")
        assert b.acquire_draft_lock("tab-b")


class TestPackStore:
    """Custom packs keyed by id@version; in-use packs are protected."""

    @pytest.fixture
    def custom(self):
        return StimulusList.from_dict(dict(DEMO_10.to_dict(), id="custom", version="0.1.0"))

    def test_save_load_list(self, storage, custom):
        packs = PackStore(storage)
        assert packs.save(custom)
        assert packs.exists("custom", "0.1.0")
        assert packs.load("custom", "0.1.0") == custom
        assert [p.key for p in packs.list()] == ["custom@0.1.0"]

    def test_delete_unreferenced(self, storage, custom):
        packs = PackStore(storage, SessionStore(storage))
        packs.save(custom)
        assert packs.delete("custom", "0.1.0")
        assert not packs.exists("custom", "0.1.0")

    def test_delete_missing(self, storage):
        assert not PackStore(storage).delete("nope", "1")

    def test_delete_in_use_refused(self, storage, sample_session):
        sessions = SessionStore(storage)
        sessions.save(sample_session)
        packs = PackStore(storage, sessions)
        packs.save(DEMO_10)
        with pytest.raises(PackInUseError):
            packs.delete("demo-10", "1.0.0")
        assert packs.exists("demo-10", "1.0.0")

    def test_force_delete(self, storage, sample_session):
        sessions = SessionStore(storage)
        sessions.save(sample_session)
        packs = PackStore(storage, sessions)
        packs.save(DEMO_10)
        assert packs.delete("demo-10", "1.0.0", force=True)
        assert not packs.exists("demo-10", "1.0.0")

    def test_invalid_stored_pack_skipped(self, storage, custom):
        packs = PackStore(storage)
        packs.save(custom)
        raw = json.loads(storage.get("complex-mapper-custom-packs"))
        raw["custom@0.1.0"]["words"] = []
        storage.set("complex-mapper-custom-packs", json.dumps(raw))
        assert packs.load("custom", "0.1.0") is None
        assert packs.list() == []

    def test_non_object_stored_pack_skipped(self, storage, custom):
        packs = PackStore(storage)
        packs.save(custom)
        raw = json.loads(storage.get("complex-mapper-custom-packs"))
        raw["junk@1"] = "not a pack"
        storage.set("complex-mapper-custom-packs", json.dumps(raw))
        assert packs.load("junk", "1") is None
        assert [p.key for p in packs.list()] == ["custom@0.1.0"]
