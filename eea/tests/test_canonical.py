# eea/tests/test_canonical.py
import math

import pytest

from eea.canonical import canonical_bytes, canonical_json, canonicalize
from eea.hashing import event_hash


def test_key_order_does_not_change_hash():
    a = canonicalize({"b": 2, "a": 1})
    b = canonicalize({"a": 1, "b": 2})
    assert canonical_bytes(a) == canonical_bytes(b) == b'{"a":1,"b":2}'
    assert event_hash(a) == event_hash(b)


def test_nested_maps_and_arrays_are_sorted_recursively():
    ev = {"z": {"y": 1, "x": [{"d": 1, "c": 2}, 3]}, "a": "s"}
    assert canonical_json(canonicalize(ev)) == '{"a":"s","z":{"x":[{"c":2,"d":1},3],"y":1}}'


def test_nulls_dropped_in_maps_kept_in_arrays():
    ev = {"a": None, "b": {"c": None, "d": 1}, "e": [None, 1]}
    assert canonicalize(ev) == {"b": {"d": 1}, "e": [None, 1]}


def test_null_and_absent_fields_hash_the_same():
    with_null = {"amount": "1.00", "meta": None}
    without = {"amount": "1.00"}
    assert event_hash(canonicalize(with_null)) == event_hash(canonicalize(without))


def test_array_order_is_preserved():
    assert canonicalize({"a": [3, 1, 2]}) == {"a": [3, 1, 2]}
    assert event_hash(canonicalize({"a": [1, 2]})) != event_hash(canonicalize({"a": [2, 1]}))


def test_unicode_is_serialized_as_utf8():
    assert canonical_bytes({"n": "café"}) == '{"n":"café"}'.encode("utf-8")


def test_rejects_values_outside_json():
    with pytest.raises(TypeError):
        canonicalize({"a": object()})
    with pytest.raises(TypeError):
        canonicalize({"a": math.inf})
    with pytest.raises(TypeError):
        canonicalize(["not", "a", "map"])


def test_integral_floats_are_the_same_number_as_ints():
    as_int = canonicalize({"references": {"qty": 1}, "payload": {"items": [100, 2.5]}})
    as_float = canonicalize({"references": {"qty": 1.0}, "payload": {"items": [100.0, 2.5]}})
    assert canonical_bytes(as_float) == b'{"payload":{"items":[100,2.5]},"references":{"qty":1}}'
    assert event_hash(as_int) == event_hash(as_float)
    assert canonicalize({"z": -0.0}) == {"z": 0}
