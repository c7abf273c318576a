from __future__ import annotations

import json
import logging

import pytest

from alphabase import codec
from alphabase.ciphers import CipherType, encrypt
from alphabase.codec import CIRCULAR_MARKER, StoreState
from alphabase.errors import DecryptionFailure, EnvelopeFormatError

STATE = StoreState(
    data={"user": {"name": "Ada", "tags": ["a", "b"]}, "count": 3, "items": [{"id": 1}]},
    ttl_meta={"count": 1_700_000_100_000, "items": {"1": 1_700_000_200_000}},
)


@pytest.mark.parametrize("cipher", list(CipherType))
def test_encoded_state_decodes_back(cipher):
    text = codec.encode_state(STATE, passphrase="pw", cipher=cipher)
    assert codec.decode_text(text, passphrase="pw", cipher=cipher) == STATE


def test_plain_form_is_indented_envelope():
    text = codec.encode_state(STATE, passphrase=None, cipher=CipherType.NONE)
    assert text.startswith("{\n  ")
    assert json.loads(text) == {"data": STATE.data, "ttlMeta": STATE.ttl_meta}


def test_encrypted_form_is_self_describing():
    text = codec.encode_state(STATE, passphrase="pw", cipher=CipherType.CHACHA20)
    doc = json.loads(text)
    assert doc["_encrypted"] is True
    assert doc["type"] == "ChaCha20"
    assert isinstance(doc["data"], str)
    # configured cipher is ignored when the envelope names its own
    assert codec.decode_text(text, passphrase="pw", cipher=CipherType.XOR) == STATE


def test_missing_passphrase_downgrades_to_plain():
    assert codec.effective_cipher(CipherType.AES, None) is CipherType.NONE
    assert codec.effective_cipher("XOR", "") is CipherType.NONE
    assert codec.effective_cipher(CipherType.BASE64, None) is CipherType.BASE64
    text = codec.encode_state(STATE, passphrase=None, cipher=CipherType.AES)
    assert "_encrypted" not in json.loads(text)


def test_bare_map_loads_without_ttl():
    state = codec.decode_text('{"a": 1, "b": {"c": 2}}', passphrase=None, cipher="None")
    assert state.data == {"a": 1, "b": {"c": 2}}
    assert state.ttl_meta == {}


def test_mapping_with_extra_keys_is_a_bare_map():
    raw = json.dumps({"data": {"a": 1}, "ttlMeta": {}, "other": True})
    state = codec.decode_text(raw, passphrase=None, cipher="None")
    assert state.data == {"data": {"a": 1}, "ttlMeta": {}, "other": True}


def test_null_ttl_meta_is_tolerated():
    state = codec.decode_text('{"data": {"a": 1}, "ttlMeta": null}', passphrase=None, cipher="None")
    assert state == StoreState({"a": 1}, {})


def test_legacy_raw_ciphertext_uses_configured_cipher():
    legacy = encrypt(json.dumps({"data": {"a": 1}, "ttlMeta": {}}), "pw", CipherType.AES)
    state = codec.decode_text(legacy, passphrase="pw", cipher=CipherType.AES)
    assert state.data == {"a": 1}


def test_strict_decode_raises_on_garbage_and_wrong_passphrase():
    with pytest.raises(EnvelopeFormatError):
        codec.decode_text("not json at all", passphrase=None, cipher="None")
    text = codec.encode_state(STATE, passphrase="right", cipher=CipherType.AES)
    with pytest.raises(DecryptionFailure):
        codec.decode_text(text, passphrase="wrong", cipher=CipherType.AES)


def test_decrypted_array_is_rejected():
    text = codec.encode_value([1, 2], passphrase="pw", cipher=CipherType.AES)
    with pytest.raises(EnvelopeFormatError):
        codec.decode_text(text, passphrase="pw", cipher=CipherType.AES)


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "{broken",
        "[1, 2, 3]",
        '{"_encrypted": true, "type": "Rot13", "data": "x"}',
        '{"_encrypted": true, "type": "AES"}',
        pytest.param("[" * 200_000, id="deeply-nested"),
    ],
)
def test_decode_on_open_never_raises(raw, caplog):
    with caplog.at_level(logging.WARNING, logger="alphabase.codec"):
        state = codec.decode_on_open(raw, passphrase="pw", cipher=CipherType.AES, source="db.json")
    assert state == StoreState.empty()
    assert "db.json" in caplog.text


def test_decode_on_open_wrong_passphrase_is_empty():
    text = codec.encode_state(STATE, passphrase="right", cipher=CipherType.XOR)
    state = codec.decode_on_open(text, passphrase="wrong", cipher=CipherType.XOR)
    assert state == StoreState.empty()


def test_cycles_are_replaced_with_marker():
    node = {"name": "loop"}
    node["self"] = node
    items = [1]
    items.append(items)
    text = codec.encode_state(StoreState({"node": node, "items": items}, {}), passphrase=None, cipher="None")
    doc = json.loads(text)["data"]
    assert doc["node"] == {"name": "loop", "self": CIRCULAR_MARKER}
    assert doc["items"] == [1, CIRCULAR_MARKER]


def test_shared_references_are_not_cycles():
    shared = {"v": 1}
    assert codec.strip_cycles({"a": shared, "b": [shared, shared]}) == {"a": {"v": 1}, "b": [{"v": 1}, {"v": 1}]}


def test_decode_value_unwraps_envelopes():
    text = codec.encode_value({"1": {"id": 1}}, passphrase="pw", cipher=CipherType.AES)
    assert codec.decode_value(text, passphrase="pw") == {"1": {"id": 1}}
    assert codec.decode_value("[1, 2]", passphrase=None) == [1, 2]
    with pytest.raises(EnvelopeFormatError):
        codec.decode_value("{oops", passphrase=None)


def test_deeply_nested_json_is_a_format_error():
    deep = "[" * 200_000
    with pytest.raises(EnvelopeFormatError):
        codec.decode_text(deep, passphrase=None, cipher="None")
    with pytest.raises(EnvelopeFormatError):
        codec.decode_value(deep, passphrase=None)
