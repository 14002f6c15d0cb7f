import json
import os

import pytest

from ufo_keyserver.errors import StorageFailure
from ufo_keyserver.identity import Identity
from ufo_keyserver.models import KeyRecord
from ufo_keyserver.registry import KeyRegistry
from ufo_keyserver.stores import JsonFileStore, MemoryStore, SQLiteStore, open_store


def _record(key="UFO-AB12CD34-48H", identity=Identity(uid="42", place="100")):
    return KeyRecord(key=key, identity=identity, issued_at=10, expires_at=20, uses_count=3)


def test_json_store_survives_restart(tmp_path, clock, alice):
    path = tmp_path / "keys.json"
    registry = KeyRegistry(store=JsonFileStore(path), clock=clock)
    record, _ = registry.issue(alice)

    reloaded = KeyRegistry(store=JsonFileStore(path), clock=clock)
    again, reused = reloaded.issue(alice)
    assert reused
    assert again.key == record.key
    assert again.expires_at == record.expires_at


def test_json_store_atomic_write_leaves_no_temp(tmp_path):
    path = tmp_path / "data" / "keys.json"
    store = JsonFileStore(path)
    store.put(_record())
    store.save()

    assert not os.path.exists(str(path) + ".tmp")
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["keys"]["UFO-AB12CD34-48H"]["identity"] == {"uid": "42", "place": "100"}
    assert data["keys"]["UFO-AB12CD34-48H"]["uses_count"] == 3


def test_json_store_ignores_corrupt_file(tmp_path, caplog):
    path = tmp_path / "keys.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)
    assert list(store.records()) == []
    assert "Ignoring unreadable key store" in caplog.text


def test_json_store_write_failure(tmp_path, clock, alice):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = JsonFileStore(blocker / "keys.json")
    registry = KeyRegistry(store=store, clock=clock)

    with pytest.raises(StorageFailure):
        registry.issue(alice)
    # memory stays authoritative
    assert registry.active_for(alice) is not None


def test_sqlite_store_round_trip(tmp_path):
    path = tmp_path / "keys.db"
    store = SQLiteStore(str(path))
    store.put(_record())
    store.put(_record(key="UFO-UNBOUND1-48H", identity=None))
    store.save()
    store.close()

    reopened = SQLiteStore(str(path))
    got = reopened.get("UFO-AB12CD34-48H")
    assert got == _record()
    assert reopened.get("UFO-UNBOUND1-48H").identity is None

    reopened.delete("UFO-AB12CD34-48H")
    reopened.save()
    reopened.close()
    assert SQLiteStore(str(path)).get("UFO-AB12CD34-48H") is None


def test_sqlite_out_of_range_values_are_storage_failures(tmp_path):
    store = SQLiteStore(str(tmp_path / "keys.db"))
    store.put(KeyRecord(key="UFO-AB12CD34-48H", identity=Identity(uid="42", place="100"),
                        issued_at=10, expires_at=2 ** 70))
    with pytest.raises(StorageFailure):
        store.save()
    with pytest.raises(StorageFailure):
        store.log_event("issued", 2 ** 70, {})


def test_sqlite_audit_log(tmp_path):
    store = SQLiteStore(str(tmp_path / "keys.db"))
    store.log_event("issued", "UFO-AB12CD34-48H", {"identity": "42:100"})
    action, details = store.db.execute("SELECT action, details FROM audit_log").fetchone()
    assert action == "issued"
    assert json.loads(details) == {"identity": "42:100"}


def test_sqlite_schema_exists(tmp_path):
    store = SQLiteStore(str(tmp_path / "keys.db"))
    cols = [row[1] for row in store.db.execute("PRAGMA table_info(keys)").fetchall()]
    for col in ("key", "uid", "place", "issued_at", "expires_at", "reusable", "uses_count", "max_uses"):
        assert col in cols


def test_memory_store_audit_is_bounded():
    store = MemoryStore()
    for i in range(1500):
        store.log_event("issued", str(i), {})
    assert len(store.audit) == 1000


def test_open_store(tmp_path):
    assert isinstance(open_store("memory"), MemoryStore)
    assert isinstance(open_store("json", str(tmp_path / "k.json")), JsonFileStore)
    assert isinstance(open_store("sqlite", str(tmp_path / "k.db")), SQLiteStore)
    with pytest.raises(ValueError):
        open_store("redis")
