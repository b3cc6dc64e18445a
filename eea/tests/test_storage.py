# eea/tests/test_storage.py
import pytest

from eea.storage import (
    AttestationRecord,
    AttestationStore,
    InMemoryKeyValueStore,
    SQLiteKeyValueStore,
    make_kv,
)


class _Clock:
    def __init__(self):
        self.now = 1_000.0

    def __call__(self):
        return self.now


@pytest.fixture(params=["mem", "sqlite"])
def kv_and_clock(request, tmp_path):
    clock = _Clock()
    if request.param == "mem":
        store = InMemoryKeyValueStore(clock=clock)
    else:
        store = SQLiteKeyValueStore(str(tmp_path / "kv.db"), clock=clock)
    yield store, clock
    if isinstance(store, SQLiteKeyValueStore):
        store.close()


def _record(aid="eea_A", digest="sha256:" + "0" * 64):
    return AttestationRecord(
        attestation_id=aid,
        schema_version="eea.v1",
        attested_at="2024-12-27T10:30:10.000Z",
        event_hash=digest,
        attestation_sig="hmacsha256:" + "f" * 64,
        canonical_event={"amount": "1.00", "references": {"k": "v"}},
    )


def test_get_put_delete(kv_and_clock):
    kv, _ = kv_and_clock
    assert kv.get("k") is None
    kv.put("k", "v")
    assert kv.get("k") == "v"
    kv.put("k", "v2")
    assert kv.get("k") == "v2"
    kv.delete("k")
    assert kv.get("k") is None
    kv.delete("k")


def test_ttl_expiry(kv_and_clock):
    kv, clock = kv_and_clock
    kv.put("k", "v", ttl_seconds=10)
    clock.now += 9
    assert kv.get("k") == "v"
    clock.now += 1
    assert kv.get("k") is None


def test_sqlite_purge_and_persistence(tmp_path):
    clock = _Clock()
    path = str(tmp_path / "kv.db")
    kv = SQLiteKeyValueStore(path, clock=clock)
    kv.put("old", "1", ttl_seconds=1)
    kv.put("keep", "2")
    clock.now += 5
    assert kv.purge_expired() == 1
    kv.close()

    reopened = SQLiteKeyValueStore(path, clock=clock)
    assert reopened.get("keep") == "2"
    assert reopened.get("old") is None
    reopened.close()


def test_make_kv(tmp_path):
    assert isinstance(make_kv(None), InMemoryKeyValueStore)
    assert isinstance(make_kv("mem://"), InMemoryKeyValueStore)
    kv = make_kv(f"sqlite:///{tmp_path / 'x.db'}")
    assert isinstance(kv, SQLiteKeyValueStore)
    kv.close()
    with pytest.raises(ValueError):
        make_kv("redis://localhost")


def test_attestation_store_round_trip(kv_and_clock):
    kv, _ = kv_and_clock
    store = AttestationStore(kv, retention_seconds=30 * 86400)
    rec = _record()
    store.put(rec)
    assert store.get_by_id("eea_A") == rec
    assert store.get_id_by_hash(rec.event_hash) == "eea_A"
    assert store.get_by_id("eea_B") is None
    assert store.get_id_by_hash("sha256:" + "1" * 64) is None


def test_record_and_index_share_retention(kv_and_clock):
    kv, clock = kv_and_clock
    store = AttestationStore(kv, retention_seconds=60)
    rec = _record()
    store.put(rec)
    clock.now += 61
    assert store.get_by_id(rec.attestation_id) is None
    assert store.get_id_by_hash(rec.event_hash) is None


def test_key_layout(kv_and_clock):
    kv, _ = kv_and_clock
    store = AttestationStore(kv, retention_seconds=60)
    rec = _record()
    store.put(rec)
    assert kv.get("hash:" + rec.event_hash) == rec.attestation_id
    assert AttestationRecord.from_json(kv.get("attestation:" + rec.attestation_id)) == rec


def test_retention_must_be_positive():
    with pytest.raises(ValueError):
        AttestationStore(InMemoryKeyValueStore(), retention_seconds=0)
