"""
TTL metadata helpers.

The metadata keeps its on-disk shape: a number is a per-key expiry, a nested
mapping holds per-document expiries inside a collection. Everything that reads
it goes through `iter_entries`, which yields one tagged `TtlEntry` per expiry.
Expiries are absolute epoch milliseconds.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Mapping, MutableMapping

_MISSING = object()


class TtlScope(str, Enum):
    KEY = "key"
    COLLECTION_DOC = "collection_doc"


@dataclass(frozen=True)
class TtlEntry:
    scope: TtlScope
    key: str
    expires_at: int
    doc_id: str | None = None

    def is_expired(self, now: int) -> bool:
        return self.expires_at < now

    def remaining(self, now: int) -> int:
        return max(0, self.expires_at - now)


def now_ms() -> int:
    return int(time.time() * 1000)


def _is_instant(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def iter_entries(ttl_meta: Mapping[str, Any]) -> Iterator[TtlEntry]:
    """Yield every well-formed expiry; malformed values are skipped."""
    for key, value in ttl_meta.items():
        if _is_instant(value):
            yield TtlEntry(TtlScope.KEY, key, int(value))
        elif isinstance(value, Mapping):
            for doc_id, expiry in value.items():
                if _is_instant(expiry):
                    yield TtlEntry(TtlScope.COLLECTION_DOC, key, int(expiry), str(doc_id))


def set_key_expiry(ttl_meta: MutableMapping[str, Any], key: str, expires_at: int) -> None:
    ttl_meta[key] = int(expires_at)


def set_document_expiry(ttl_meta: MutableMapping[str, Any], collection: str, doc_id: str, expires_at: int) -> None:
    bucket = ttl_meta.get(collection)
    if not isinstance(bucket, dict):
        bucket = {}
        ttl_meta[collection] = bucket
    bucket[str(doc_id)] = int(expires_at)


def find_entry(ttl_meta: Mapping[str, Any], key: str, doc_id: str | None = None) -> TtlEntry | None:
    value = ttl_meta.get(key)
    if doc_id is None:
        if _is_instant(value):
            return TtlEntry(TtlScope.KEY, key, int(value))
        return None
    if isinstance(value, Mapping):
        expiry = value.get(str(doc_id))
        if _is_instant(expiry):
            return TtlEntry(TtlScope.COLLECTION_DOC, key, int(expiry), str(doc_id))
    return None


def find_document(collection: Any, doc_id: str) -> Any | None:
    """Locate a document by id in a list collection (by its "id") or a mapping collection."""
    if isinstance(collection, list):
        for doc in collection:
            if isinstance(doc, Mapping) and "id" in doc and str(doc["id"]) == str(doc_id):
                return doc
        return None
    if isinstance(collection, Mapping):
        return collection.get(str(doc_id))
    return None


def remove_document(collection: Any, doc_id: str) -> bool:
    if isinstance(collection, list):
        for idx, doc in enumerate(collection):
            if isinstance(doc, Mapping) and "id" in doc and str(doc["id"]) == str(doc_id):
                del collection[idx]
                return True
        return False
    if isinstance(collection, MutableMapping):
        return collection.pop(str(doc_id), _MISSING) is not _MISSING
    return False


def sweep(data: MutableMapping[str, Any], ttl_meta: MutableMapping[str, Any], now: int) -> list[TtlEntry]:
    """
    Evict expired entries in place and return what was removed.

    Key entries remove the key from both maps. Collection entries remove only
    the document from its collection. Entries pointing at keys that are no
    longer in `data` are dropped as already expired.
    """
    removed: list[TtlEntry] = []
    for entry in list(iter_entries(ttl_meta)):
        orphan = entry.key not in data
        if not (orphan or entry.is_expired(now)):
            continue
        if entry.scope is TtlScope.KEY:
            data.pop(entry.key, None)
            ttl_meta.pop(entry.key, None)
        else:
            if not orphan:
                remove_document(data[entry.key], entry.doc_id or "")
            bucket = ttl_meta.get(entry.key)
            if isinstance(bucket, dict):
                bucket.pop(entry.doc_id, None)
                if not bucket:
                    ttl_meta.pop(entry.key, None)
        removed.append(entry)

    # Values that are neither an instant nor a mapping cannot be evaluated.
    for key in [k for k, v in ttl_meta.items() if not (_is_instant(v) or isinstance(v, Mapping))]:
        ttl_meta.pop(key, None)
    return removed

