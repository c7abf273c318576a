"""
Envelope codec: on-disk text <-> in-memory {data, ttlMeta}.

Plain form:      {"data": {...}, "ttlMeta": {...}}
Encrypted form:  {"_encrypted": true, "type": "<cipher tag>", "data": "<ciphertext>"}

Older files may hold a bare document map (no TTL) or the raw ciphertext of the
plain form with no wrapper at all; both still load.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .ciphers import CipherType, get_cipher
from .errors import AlphaBaseError, DecryptionFailure, EnvelopeFormatError, UnsupportedCipher

logger = logging.getLogger(__name__)

CIRCULAR_MARKER = "[Circular]"

PLAIN_KEYS = frozenset({"data", "ttlMeta"})


@dataclass
class StoreState:
    data: dict[str, Any] = field(default_factory=dict)
    ttl_meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "StoreState":
        return cls()

    def to_envelope(self) -> dict[str, Any]:
        return {"data": self.data, "ttlMeta": self.ttl_meta}


class EncryptedEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    encrypted: Literal[True] = Field(default=True, alias="_encrypted")
    type: str
    data: str


def effective_cipher(cipher: CipherType | str, passphrase: str | None) -> CipherType:
    """A passphrase cipher without a passphrase degrades to no encryption."""
    selected = CipherType.parse(cipher)
    if selected.requires_passphrase and not passphrase:
        return CipherType.NONE
    return selected


def strip_cycles(value: Any, _ancestors: frozenset[int] = frozenset()) -> Any:
    """Copy `value` with any container that contains itself replaced by a marker."""
    if isinstance(value, Mapping):
        if id(value) in _ancestors:
            return CIRCULAR_MARKER
        inner = _ancestors | {id(value)}
        return {k: strip_cycles(v, inner) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        if id(value) in _ancestors:
            return CIRCULAR_MARKER
        inner = _ancestors | {id(value)}
        return [strip_cycles(v, inner) for v in value]
    return value


def is_plain_envelope(doc: Any) -> bool:
    return (
        isinstance(doc, Mapping)
        and isinstance(doc.get("data"), Mapping)
        and isinstance(doc.get("ttlMeta") or {}, Mapping)
        and set(doc.keys()) <= PLAIN_KEYS
    )


def state_from_mapping(doc: Mapping[str, Any]) -> StoreState:
    """Plain envelope -> its maps; any other mapping is a bare document map."""
    if is_plain_envelope(doc):
        return StoreState(data=dict(doc["data"]), ttl_meta=dict(doc.get("ttlMeta") or {}))
    return StoreState(data=dict(doc), ttl_meta={})


def encode_state(state: StoreState, *, passphrase: str | None, cipher: CipherType | str) -> str:
    payload = strip_cycles(state.to_envelope())
    selected = effective_cipher(cipher, passphrase)
    if selected is CipherType.NONE:
        return json.dumps(payload, indent=2, ensure_ascii=False)
    plaintext = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    ciphertext = get_cipher(selected).encrypt(plaintext, passphrase)
    return EncryptedEnvelope(type=selected.value, data=ciphertext).model_dump_json(by_alias=True)


def encode_value(value: Any, *, passphrase: str | None, cipher: CipherType | str) -> str:
    """Encode an arbitrary JSON value (used for collection exports)."""
    plaintext = json.dumps(strip_cycles(value), indent=2, ensure_ascii=False)
    selected = effective_cipher(cipher, passphrase)
    if selected is CipherType.NONE:
        return plaintext
    ciphertext = get_cipher(selected).encrypt(plaintext, passphrase)
    return EncryptedEnvelope(type=selected.value, data=ciphertext).model_dump_json(by_alias=True)


def decode_value(raw: str, *, passphrase: str | None) -> Any:
    """Parse JSON text, unwrapping an encrypted envelope if present."""
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise EnvelopeFormatError(f"invalid JSON: {e}") from e
    except RecursionError as e:
        raise EnvelopeFormatError("JSON is nested too deeply") from e
    if _looks_encrypted(parsed):
        return _parse_json(_open_envelope(parsed, passphrase))
    return parsed


def decode_text(raw: str, *, passphrase: str | None, cipher: CipherType | str) -> StoreState:
    """
    Strict decode of envelope text.

    Raises:
        DecryptionFailure: ciphertext could not be decrypted.
        EnvelopeFormatError: text or plaintext is not a usable document.
    """
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = None
    except RecursionError as e:
        raise EnvelopeFormatError("JSON is nested too deeply") from e

    if isinstance(parsed, Mapping):
        if _looks_encrypted(parsed):
            inner = _parse_json(_open_envelope(parsed, passphrase))
            return _require_mapping_state(inner)
        return state_from_mapping(parsed)

    # Legacy: the whole file is ciphertext under the configured cipher.
    selected = effective_cipher(cipher, passphrase)
    if selected is CipherType.NONE:
        raise EnvelopeFormatError("content is neither a JSON object nor decryptable")
    plaintext = get_cipher(selected).decrypt(raw.strip(), passphrase)
    return _require_mapping_state(_parse_json(plaintext))


def decode_on_open(raw: str, *, passphrase: str | None, cipher: CipherType | str, source: Any = None) -> StoreState:
    """
    Decode for store open. Never raises.

    A corrupt file or a wrong passphrase yields an empty state; the failure is
    only visible in the log.
    """
    try:
        return decode_text(raw, passphrase=passphrase, cipher=cipher)
    except (AlphaBaseError, ValueError, RecursionError) as e:
        logger.warning(
            "ENVELOPE DECODE: could not read %s (%s: %s); starting with an empty store",
            source or "store file",
            type(e).__name__,
            e,
        )
        return StoreState.empty()


def _looks_encrypted(doc: Any) -> bool:
    return isinstance(doc, Mapping) and doc.get("_encrypted") is True


def _open_envelope(doc: Mapping[str, Any], passphrase: str | None) -> str:
    try:
        envelope = EncryptedEnvelope.model_validate(doc)
    except ValidationError as e:
        raise EnvelopeFormatError(f"malformed encrypted envelope: {e.error_count()} error(s)") from e
    try:
        cipher = CipherType.parse(envelope.type)
    except UnsupportedCipher as e:
        raise DecryptionFailure(str(e)) from e
    try:
        return get_cipher(cipher).decrypt(envelope.data, passphrase)
    except DecryptionFailure:
        raise
    except AlphaBaseError as e:
        raise DecryptionFailure(str(e)) from e


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise EnvelopeFormatError(f"decrypted payload is not JSON: {e}") from e
    except RecursionError as e:
        raise EnvelopeFormatError("decrypted payload is nested too deeply") from e


def _require_mapping_state(doc: Any) -> StoreState:
    if not isinstance(doc, Mapping):
        raise EnvelopeFormatError(f"expected a JSON object, got {type(doc).__name__}")
    return state_from_mapping(doc)
