# eea/tests/test_auth.py
import hashlib
import json

import pytest

from eea.auth import (
    PLAN_RATE_LIMITS,
    ApiKeyEntry,
    KeyRegistry,
    generate_api_key,
    hash_api_key,
)
from eea.errors import Unauthorized
from eea.storage import InMemoryKeyValueStore


@pytest.fixture
def registry():
    return KeyRegistry(InMemoryKeyValueStore(), default_rate_limit=60, clock=lambda: 1_735_295_410.0)


def test_key_material():
    raw = generate_api_key()
    assert len(raw) == 64
    int(raw, 16)
    assert hash_api_key(raw) == "sha256:" + hashlib.sha256(raw.encode()).hexdigest()


def test_create_then_authenticate(registry):
    raw, key_hash, entry = registry.create("tenant-a", "enterprise", description="ops")
    assert key_hash == hash_api_key(raw)
    assert entry.rate_limit_per_min == PLAN_RATE_LIMITS["enterprise"]
    assert entry.created_at == "2024-12-27T10:30:10.000Z"
    got = registry.authenticate(raw)
    assert got.key_id == "tenant-a"
    assert got.description == "ops"


def test_raw_key_is_not_stored():
    kv = InMemoryKeyValueStore()
    raw, key_hash, _ = KeyRegistry(kv).create("t", "free")
    assert kv.get("apikeyhash:" + key_hash) is not None
    assert raw not in kv.get("apikeyhash:" + key_hash)


def test_missing_unknown_and_disabled_keys(registry):
    with pytest.raises(Unauthorized) as ei:
        registry.authenticate(None)
    assert ei.value.message == "Missing x-api-key header"

    with pytest.raises(Unauthorized) as unknown:
        registry.authenticate("nope")

    raw, key_hash, _ = registry.create("tenant-b", "free")
    registry.disable(key_hash)
    with pytest.raises(Unauthorized) as disabled:
        registry.authenticate(raw)

    assert unknown.value.message == disabled.value.message == "Invalid API key"


def test_disable_unknown_hash(registry):
    assert registry.disable("sha256:" + "0" * 64) is None


def test_rate_limit_fallback_to_default(registry):
    assert registry.rate_limit_for(ApiKeyEntry(key_id="x", rate_limit_per_min=0)) == 60
    assert registry.rate_limit_for(ApiKeyEntry(key_id="x", rate_limit_per_min=5)) == 5


def test_entry_without_limit_field_reads_as_default():
    kv = InMemoryKeyValueStore()
    raw = "legacy-key"
    kv.put(
        "apikeyhash:" + hash_api_key(raw),
        json.dumps({"key_id": "legacy", "status": "active", "plan": "standard"}),
    )
    reg = KeyRegistry(kv, default_rate_limit=42)
    entry = reg.authenticate(raw)
    assert reg.rate_limit_for(entry) == 42


def test_unreadable_entry_is_unauthorized():
    kv = InMemoryKeyValueStore()
    kv.put("apikeyhash:" + hash_api_key("k"), "{broken")
    with pytest.raises(Unauthorized):
        KeyRegistry(kv).authenticate("k")


@pytest.mark.parametrize("stored", ["[1, 2]", '"active"', "null", "42"])
def test_non_object_entry_is_unauthorized(stored):
    kv = InMemoryKeyValueStore()
    kv.put("apikeyhash:" + hash_api_key("k"), stored)
    reg = KeyRegistry(kv)
    assert reg.lookup(hash_api_key("k")) is None
    with pytest.raises(Unauthorized):
        reg.authenticate("k")
