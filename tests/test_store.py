from __future__ import annotations

import json
import time
from datetime import datetime

import pytest

from alphabase import (
    AlphaBase,
    CollectionNotFound,
    DocumentNotFound,
    ImportFormatError,
    InvalidKeyType,
    InvalidTtl,
    InvalidValue,
    SchemaViolation,
    open_store,
)


def _on_disk(path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_open_creates_missing_file(make_store, db_path):
    assert not db_path.exists()
    store = make_store()
    assert db_path.exists()
    assert store.all() == {}


def test_set_get_has_delete(make_store, db_path):
    store = make_store()
    store.set("user", {"name": "Ada"})
    assert store.get("user") == {"name": "Ada"}
    assert store.has("user")
    assert _on_disk(db_path) == {"data": {"user": {"name": "Ada"}}, "ttlMeta": {}}

    assert store.delete("user") is True
    assert store.get("user") is None
    assert store.get("user", "fallback") == "fallback"
    assert not store.has("user")


def test_delete_is_idempotent(make_store, db_path):
    store = make_store()
    store.set("a", 1)
    store.set("b", 2)
    store.delete("a")
    once = _on_disk(db_path)
    assert store.delete("a") is False
    assert _on_disk(db_path) == once
    assert store.all() == {"b": 2}


@pytest.mark.parametrize("key", [1, None, b"raw", ("t",)])
def test_non_string_keys_are_rejected_without_mutation(make_store, key):
    store = make_store()
    store.set("kept", 1)
    with pytest.raises(InvalidKeyType):
        store.set(key, "v")
    with pytest.raises(TypeError):
        store.get(key)
    with pytest.raises(InvalidKeyType):
        store.delete(key)
    assert store.all() == {"kept": 1}


@pytest.mark.parametrize("value", [{1, 2}, b"raw", datetime(2024, 1, 1), {"nested": object()}])
def test_unserializable_values_are_rejected_without_mutation(make_store, db_path, value):
    store = make_store()
    store.set("kept", 1)
    with pytest.raises(InvalidValue) as excinfo:
        store.set("bad", value)
    assert isinstance(excinfo.value, ValueError)
    assert not store.has("bad")

    store.set("after", 2)
    assert _on_disk(db_path)["data"] == {"kept": 1, "after": 2}


@pytest.mark.parametrize("ttl", ["100", True, [100], {"ms": 100}])
def test_non_numeric_ttl_is_rejected_without_mutation(make_store, db_path, ttl):
    store = make_store()
    store.set("users", [{"id": 1}])
    with pytest.raises(InvalidTtl) as excinfo:
        store.set("k", 1, ttl=ttl)
    assert isinstance(excinfo.value, TypeError)
    assert not store.has("k")
    assert "k" not in _on_disk(db_path)["data"]

    with pytest.raises(InvalidTtl):
        store.set_document_ttl("users", "1", ttl)
    assert store.get_ttl("users", "1") == 0


def test_values_are_copied_in_and_out(make_store):
    store = make_store()
    original = {"list": [1, 2]}
    store.set("k", original)
    original["list"].append(3)
    assert store.get("k") == {"list": [1, 2]}

    snapshot = store.all()
    snapshot["k"]["list"].append(99)
    snapshot["new"] = True
    assert store.all() == {"k": {"list": [1, 2]}}


def test_ttl_expires_with_clock(make_store, clock):
    store = make_store()
    store.set("k", {"v": 1}, ttl=100)
    assert store.get("k") == {"v": 1}
    assert store.get_ttl("k") == 100

    clock.advance(60)
    assert store.has("k")
    assert store.get_ttl("k") == 40

    clock.advance(40)
    # expiry is strictly before now
    assert store.has("k")
    clock.advance(1)
    assert not store.has("k")
    assert store.get("k") is None
    assert store.get_ttl("k") == 0


def test_expired_key_never_resurrects(make_store, clock, db_path):
    store = make_store()
    store.set("k", 1, ttl=10)
    clock.advance(11)
    assert not store.has("k")
    for _ in range(3):
        clock.advance(1000)
        assert not store.has("k")
        assert "k" not in store.all()
    assert _on_disk(db_path) == {"data": {}, "ttlMeta": {}}

    reopened = make_store()
    assert not reopened.has("k")


def test_set_without_ttl_makes_key_permanent(make_store, clock):
    store = make_store()
    store.set("k", 1, ttl=50)
    store.set("k", 2)
    assert store.get_ttl("k") == 0
    clock.advance(10_000)
    assert store.get("k") == 2


@pytest.mark.parametrize("ttl", [0, -5, None])
def test_non_positive_ttl_clears_expiry(make_store, ttl):
    store = make_store()
    store.set("k", 1, ttl=50)
    store.set("k", 1, ttl=ttl)
    assert store.get_ttl("k") == 0


def test_get_ttl_of_missing_key_is_zero(make_store):
    assert make_store().get_ttl("nope") == 0


def test_expired_keys_are_swept_on_open(make_store, clock, db_path):
    store = make_store()
    store.set("short", 1, ttl=10)
    store.set("long", 2, ttl=10_000)
    store.close()

    clock.advance(100)
    reopened = make_store()
    assert reopened.all() == {"long": 2}
    assert _on_disk(db_path)["ttlMeta"] == {"long": clock.now - 100 + 10_000}


def test_clear_empties_both_maps(make_store, db_path):
    store = make_store()
    store.set("a", 1, ttl=1000)
    store.clear()
    assert store.all() == {}
    assert _on_disk(db_path) == {"data": {}, "ttlMeta": {}}


def test_import_replaces_instead_of_merging(make_store):
    store = make_store()
    store.set("b", 2)
    store.import_bulk({"a": 1})
    assert store.all() == {"a": 1}


def test_import_accepts_envelopes_and_text(make_store, clock):
    store = make_store()
    store.import_bulk({"data": {"a": 1}, "ttlMeta": {"a": clock.now + 500}})
    assert store.get_ttl("a") == 500

    store.import_bulk(json.dumps({"data": {"b": 2}, "ttlMeta": {}}))
    assert store.all() == {"b": 2}

    store.import_bulk(b'{"c": 3}')
    assert store.all() == {"c": 3}


def test_import_of_encrypted_export(make_store, tmp_path):
    source = make_store(tmp_path / "src.json", passphrase="pw", cipher="AES")
    source.set("secret", [1, 2, 3])
    text = (tmp_path / "src.json").read_text(encoding="utf-8")

    target = make_store(tmp_path / "dst.json", passphrase="pw", cipher="AES")
    target.import_bulk(text)
    assert target.all() == {"secret": [1, 2, 3]}


@pytest.mark.parametrize("bad", ["[1, 2]", "not json", 42, ["a"], b"\xff\xfe{}", {"tags": {"a", "b"}}])
def test_import_rejects_non_objects(make_store, bad):
    store = make_store()
    store.set("kept", 1)
    with pytest.raises(ImportFormatError):
        store.import_bulk(bad)
    assert store.all() == {"kept": 1}


def test_export_envelope(make_store, clock):
    store = make_store()
    store.set("a", {"x": 1}, ttl=1000)
    envelope = store.export_envelope()
    assert envelope == {"data": {"a": {"x": 1}}, "ttlMeta": {"a": clock.now + 1000}}

    envelope["data"]["a"]["x"] = 2
    assert store.get("a") == {"x": 1}

    text = store.export_envelope(as_text=True)
    assert json.loads(text) == store.export_envelope()


def test_statistics(make_store, db_path):
    store = make_store()
    store.set("a", 1)
    store.set("bb", 22)
    stats = store.statistics()
    assert stats.total_keys == 2
    assert stats.largest_key_name == "bb"
    assert stats.largest_value_size_bytes == 2
    assert stats.average_value_size_bytes == 2
    assert stats.file_size_bytes == db_path.stat().st_size
    assert stats.last_modified is not None
    assert stats.approximate_memory_usage > 0
    assert stats.cipher == "None"
    assert stats.encryption_downgraded is False


def test_statistics_of_empty_store(make_store):
    stats = make_store().statistics()
    assert stats.total_keys == 0
    assert stats.average_value_size_bytes == 0
    assert stats.largest_key_name == ""


def test_statistics_counts_unserializable_values_as_zero(make_store):
    store = make_store()
    store.set("ok", "abc")
    store._data["odd"] = object()
    stats = store.statistics()
    assert stats.total_keys == 2
    assert stats.largest_value_size_bytes == 5


def test_schema_violation_leaves_state_unchanged(make_store, db_path):
    schema = {"type": "object", "required": ["name"], "properties": {"name": {"type": "string"}}}
    store = make_store(schema=schema)
    store.set("ok", {"name": "Ada"})
    before = db_path.read_text(encoding="utf-8")

    with pytest.raises(SchemaViolation) as excinfo:
        store.set("bad", {"name": 7})
    assert excinfo.value.key == "bad"
    assert excinfo.value.errors
    assert "$.name" in str(excinfo.value)
    assert store.all() == {"ok": {"name": "Ada"}}
    assert db_path.read_text(encoding="utf-8") == before


def test_schema_and_validator_are_exclusive(db_path):
    from alphabase.schema import JsonSchemaValidator

    with pytest.raises(ValueError):
        AlphaBase(db_path, schema={"type": "object"}, validator=JsonSchemaValidator({"type": "object"}))


def test_document_ttl_in_list_collection(make_store, clock):
    store = make_store()
    store.set("users", [{"id": 1, "n": "a"}, {"id": 2, "n": "b"}])
    store.set_document_ttl("users", "1", 100)
    assert store.get_ttl("users", "1") == 100

    clock.advance(101)
    assert store.get("users") == [{"id": 2, "n": "b"}]
    assert store.get_ttl("users", "1") == 0


def test_document_ttl_in_mapping_collection(make_store, clock):
    store = make_store()
    store.set("sessions", {"s1": {"u": 1}, "s2": {"u": 2}})
    store.set_document_ttl("sessions", "s2", 50)
    clock.advance(51)
    assert store.get("sessions") == {"s1": {"u": 1}}


def test_document_ttl_errors(make_store):
    store = make_store()
    store.set("users", [{"id": 1}])
    with pytest.raises(CollectionNotFound):
        store.set_document_ttl("missing", "1", 100)
    with pytest.raises(DocumentNotFound):
        store.set_document_ttl("users", "9", 100)


def test_collection_export_and_import(make_store, tmp_path):
    store = make_store(passphrase="pw", cipher="AES")
    store.set("users", [{"id": 1}])
    plain = store.export_collection("users", tmp_path / "users.json")
    assert json.loads(plain.read_text(encoding="utf-8")) == [{"id": 1}]

    sealed = store.export_collection("users", tmp_path / "users.enc.json", encrypt=True)
    assert json.loads(sealed.read_text(encoding="utf-8"))["_encrypted"] is True

    store.import_collection("users", sealed)
    assert store.get("users") == [{"id": 1}, {"id": 1}]

    store.import_collection("people", plain)
    assert store.get("people") == [{"id": 1}]


def test_collection_import_type_mismatch(make_store, tmp_path):
    store = make_store()
    store.set("users", {"a": 1})
    source = tmp_path / "list.json"
    source.write_text("[1]", encoding="utf-8")
    with pytest.raises(ImportFormatError):
        store.import_collection("users", source)


def test_mutation_events(make_store, clock):
    store = make_store()
    seen = []
    store.subscribe(lambda event: seen.append((event.operation, event.key)))
    store.set("a", 1, ttl=5)
    store.delete("missing")
    clock.advance(10)
    store.has("a")
    store.clear()
    assert seen == [("set", "a"), ("delete", "missing"), ("expire", "a"), ("clear", None)]


def test_failing_listener_does_not_break_store(make_store):
    store = make_store()

    def boom(event):
        raise RuntimeError("listener down")

    store.subscribe(boom)
    store.set("a", 1)
    store.unsubscribe(boom)
    assert store.get("a") == 1


def test_context_manager_and_open_store(db_path):
    with open_store(db_path, cipher="None") as store:
        store.set("k", "v")
    with open_store(db_path, cipher="None") as again:
        assert again.get("k") == "v"


def test_real_time_expiry_scenario(db_path):
    with AlphaBase(db_path, cipher="None") as store:
        store.set("k", {"v": 1}, ttl=100)
        assert store.get("k") == {"v": 1}
        time.sleep(0.15)
        assert store.get("k") is None
        assert not store.has("k")


def test_scheduled_cleanup_sweeps_in_background(db_path):
    with AlphaBase(db_path, cipher="None") as store:
        store.set("k", 1, ttl=20)
        store.start_scheduled_cleanup(10)
        deadline = time.time() + 2
        while time.time() < deadline and "k" in store._data:
            time.sleep(0.01)
        store.stop_scheduled_cleanup()
        assert "k" not in store._data
