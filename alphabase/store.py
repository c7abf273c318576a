"""
AlphaBase document store.

One instance owns one backing file. Every public operation runs under a single
re-entrant lock, so the expiry sweep, the mutation it guards and the persist
that follows are one critical section.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel

from . import codec, ttl
from .ciphers import CipherType
from .codec import StoreState
from .disk_store import DEFAULT_DEFERRED_WRITE_MS, DiskEnvelopeStore
from .errors import (
    CollectionNotFound,
    DecryptionFailure,
    DocumentNotFound,
    EnvelopeFormatError,
    ImportFormatError,
    InvalidKeyType,
    InvalidTtl,
    InvalidValue,
    SchemaViolation,
    StorageIOError,
)
from .interfaces import MutationEvent, MutationListener, SchemaValidator
from .json_store import atomic_write_text, read_text
from .paths import default_db_path
from .schema import JsonSchemaValidator
from .transactions import TransactionCoordinator, TransactionState

logger = logging.getLogger(__name__)

_MISSING = object()


class StoreStatistics(BaseModel):
    total_keys: int
    file_size_bytes: int
    last_modified: datetime | None
    approximate_memory_usage: int
    average_value_size_bytes: int
    largest_key_name: str
    largest_value_size_bytes: int
    cipher: str
    encryption_downgraded: bool


class _Ticker:
    """Runs `action` every `interval_ms` on a daemon thread until stopped."""

    def __init__(self, name: str, interval_ms: int, action: Callable[[], Any]):
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self._interval = interval_ms / 1000.0
        self._action = action
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._interval + 1.0)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._action()
            except Exception:
                logger.exception("%s: scheduled run failed", self._thread.name)


class AlphaBase:
    """
    JSON-file key-value store with TTL expiry and optional encryption at rest.

    Args:
        file_path: Backing file; created with `{}` if missing.
            Defaults to ./alphabase.json.
        passphrase: Secret for passphrase ciphers. Without one, such ciphers
            degrade to plain JSON (see `encryption_downgraded`).
        cipher: CipherType or its tag ("None", "Base64", "XOR", "AES", "ChaCha20").
        schema: JSON Schema every stored value must satisfy.
        validator: Custom SchemaValidator, instead of `schema`.
        backup_dir: Where `backup()` writes; defaults to backups/ beside the file.
        batch_write: Coalesce writes inside a `deferred_write_timeout_ms` window.
            Memory changes are immediate; a crash inside the window loses them.
        deferred_write_timeout_ms: Deferral window for `batch_write`.
        cleanup_interval_ms: If set, sweep expired keys on this period.
        auto_backup_interval_ms: If set, write a backup on this period.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        file_path: str | Path | None = None,
        *,
        passphrase: str | None = None,
        cipher: CipherType | str = CipherType.AES,
        schema: Mapping[str, Any] | None = None,
        validator: SchemaValidator | None = None,
        backup_dir: str | Path | None = None,
        batch_write: bool = False,
        deferred_write_timeout_ms: int = DEFAULT_DEFERRED_WRITE_MS,
        cleanup_interval_ms: int | None = None,
        auto_backup_interval_ms: int | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if schema is not None and validator is not None:
            raise ValueError("pass either schema or validator, not both")

        self._path = Path(file_path) if file_path else default_db_path()
        self._validator: SchemaValidator | None = (
            validator if validator is not None else (JsonSchemaValidator(schema) if schema is not None else None)
        )
        self._clock = clock or ttl.now_ms
        self._batch_write = batch_write
        self._lock = threading.RLock()
        self._listeners: list[MutationListener] = []
        self._cleanup_ticker: _Ticker | None = None
        self._backup_ticker: _Ticker | None = None

        self._disk = DiskEnvelopeStore(
            self._path,
            cipher=cipher,
            passphrase=passphrase,
            backup_dir=Path(backup_dir) if backup_dir is not None else None,
            deferred_write_ms=deferred_write_timeout_ms,
        )
        state = self._disk.load()
        self._data: dict[str, Any] = state.data
        self._ttl_meta: dict[str, Any] = state.ttl_meta
        self._transactions = TransactionCoordinator(self)

        with self._lock:
            self._sweep()

        if cleanup_interval_ms:
            self.start_scheduled_cleanup(cleanup_interval_ms)
        if auto_backup_interval_ms:
            self.start_auto_backup(auto_backup_interval_ms)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_dir(self) -> Path:
        return self._disk.backup_dir

    @property
    def cipher(self) -> CipherType:
        return self._disk.configured_cipher

    @property
    def effective_cipher(self) -> CipherType:
        return self._disk.effective_cipher

    @property
    def encryption_downgraded(self) -> bool:
        """True when the configured cipher needs a passphrase and none was given."""
        return self._disk.encryption_downgraded

    @property
    def in_transaction(self) -> bool:
        return self._transactions.state is TransactionState.IN_TRANSACTION

    # ------------------------------------------------------------------
    # Key operations
    # ------------------------------------------------------------------
    def set(self, key: str, value: Any, ttl: float | None = None, *, immediate: bool = False) -> None:
        """
        Store `value` under `key`.

        A positive `ttl` (milliseconds) expires the key that long from now;
        any other ttl makes the key permanent again.
        """
        with self._lock:
            self._apply_set(key, value, ttl)
            self._sweep(persist=False)
            self._persist(immediate=immediate)
            self._emit(MutationEvent("set", key, {"ttl": ttl} if ttl else {}))

    def get(self, key: str, default: Any = None) -> Any:
        _check_key(key)
        with self._lock:
            self._sweep()
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def has(self, key: str) -> bool:
        _check_key(key)
        with self._lock:
            self._sweep()
            return key in self._data

    def delete(self, key: str) -> bool:
        """Remove `key` and its TTL. Deleting a missing key is not an error."""
        with self._lock:
            existed = self._apply_delete(key)
            self._sweep(persist=False)
            self._persist()
            self._emit(MutationEvent("delete", key, {"existed": existed}))
            return existed

    def clear(self) -> None:
        with self._lock:
            self._data = {}
            self._ttl_meta = {}
            self._persist()
            self._emit(MutationEvent("clear"))

    def all(self) -> dict[str, Any]:
        """Snapshot of every live entry. Mutating the result does not touch the store."""
        with self._lock:
            self._sweep()
            return copy.deepcopy(self._data)

    def get_ttl(self, key: str, doc_id: str | None = None) -> int:
        """Milliseconds left before `key` (or `doc_id` inside it) expires; 0 if none."""
        _check_key(key)
        with self._lock:
            if key not in self._data:
                return 0
            entry = ttl.find_entry(self._ttl_meta, key, doc_id)
            if entry is None:
                return 0
            return entry.remaining(self._clock())

    def set_document_ttl(self, collection: str, doc_id: str, ttl_ms: float) -> None:
        """Expire one document of a list or mapping collection after `ttl_ms`."""
        _check_key(collection)
        ttl_ms = _check_ttl(ttl_ms)
        with self._lock:
            self._sweep(persist=False)
            if collection not in self._data:
                raise CollectionNotFound(collection)
            if ttl.find_document(self._data[collection], str(doc_id)) is None:
                raise DocumentNotFound(collection, str(doc_id))
            if ttl_ms and ttl_ms > 0:
                ttl.set_document_expiry(self._ttl_meta, collection, str(doc_id), self._clock() + int(ttl_ms))
            else:
                bucket = self._ttl_meta.get(collection)
                if isinstance(bucket, dict):
                    bucket.pop(str(doc_id), None)
                    if not bucket:
                        self._ttl_meta.pop(collection, None)
            self._persist()
            self._emit(MutationEvent("document_ttl", collection, {"doc_id": str(doc_id), "ttl": ttl_ms}))

    def cleanup(self) -> int:
        """Run the expiry sweep now. Returns how many entries were evicted."""
        with self._lock:
            return len(self._sweep())

    # ------------------------------------------------------------------
    # Bulk import / export
    # ------------------------------------------------------------------
    def import_bulk(self, data: Mapping[str, Any] | str | bytes) -> None:
        """
        Replace the whole store.

        Accepts a bare mapping, an exported {data, ttlMeta} envelope, or the
        JSON text of either (encrypted envelopes decrypt with this store's
        passphrase).
        """
        if isinstance(data, (bytes, bytearray)):
            try:
                data = bytes(data).decode("utf-8")
            except UnicodeDecodeError as e:
                raise ImportFormatError(f"Import data is not UTF-8: {e}") from e
        if isinstance(data, str):
            try:
                state = codec.decode_text(data, passphrase=self._disk.passphrase, cipher=self._disk.configured_cipher)
            except (DecryptionFailure, EnvelopeFormatError) as e:
                raise ImportFormatError(f"Import failed: {e}") from e
        elif isinstance(data, Mapping):
            state = codec.state_from_mapping(copy.deepcopy(dict(data)))
            try:
                json.dumps(codec.strip_cycles(state.to_envelope()), ensure_ascii=False)
            except (TypeError, ValueError, RecursionError) as e:
                raise ImportFormatError(f"Import data is not JSON-serializable: {e}") from e
        else:
            raise ImportFormatError("Import data must be an object or JSON string")

        with self._lock:
            self._data = state.data
            self._ttl_meta = dict(state.ttl_meta)
            self._sweep(persist=False)
            self._persist()
            self._emit(MutationEvent("import", metadata={"keys": len(self._data)}))

    def export_envelope(self, as_text: bool = False) -> dict[str, Any] | str:
        with self._lock:
            self._sweep()
            envelope = copy.deepcopy(StoreState(self._data, self._ttl_meta).to_envelope())
        if as_text:
            return json.dumps(codec.strip_cycles(envelope), indent=2, ensure_ascii=False)
        return envelope

    def export_collection(self, collection: str, file_path: str | Path, *, encrypt: bool = False) -> Path:
        """Write one collection to `file_path`, as an encrypted envelope if asked and possible."""
        _check_key(collection)
        target = Path(file_path)
        with self._lock:
            self._sweep()
            if collection not in self._data:
                raise CollectionNotFound(collection)
            text = codec.encode_value(
                self._data[collection],
                passphrase=self._disk.passphrase if encrypt else None,
                cipher=self._disk.configured_cipher if encrypt else CipherType.NONE,
            )
        try:
            atomic_write_text(target, text)
        except OSError as e:
            raise StorageIOError(target, f"failed to export collection ({e})") from e
        return target

    def import_collection(self, collection: str, file_path: str | Path) -> None:
        """
        Merge documents from a JSON file into `collection`.

        A list extends a list collection, a mapping updates a mapping
        collection; the collection is created if missing.
        """
        _check_key(collection)
        source = Path(file_path)
        try:
            raw = read_text(source)
        except OSError as e:
            raise StorageIOError(source, f"failed to read import file ({e})") from e
        if raw is None:
            raise StorageIOError(source, "import file not found")
        try:
            docs = codec.decode_value(raw, passphrase=self._disk.passphrase)
        except (DecryptionFailure, EnvelopeFormatError) as e:
            raise ImportFormatError(f"Invalid JSON in import file: {e}") from e
        if not isinstance(docs, (list, dict)):
            raise ImportFormatError("Imported data must be an array or object")

        with self._lock:
            self._sweep(persist=False)
            current = self._data.get(collection)
            if current is None:
                self._data[collection] = docs
            elif isinstance(current, list) and isinstance(docs, list):
                current.extend(docs)
            elif isinstance(current, dict) and isinstance(docs, dict):
                current.update(docs)
            else:
                raise ImportFormatError(f"Collection type mismatch for '{collection}'")
            self._persist()
            self._emit(MutationEvent("import", collection, {"documents": len(docs)}))

    # ------------------------------------------------------------------
    # Statistics, backup, lifecycle
    # ------------------------------------------------------------------
    def statistics(self) -> StoreStatistics:
        with self._lock:
            self._sweep()
            try:
                st = os.stat(self._path)
                file_size, mtime = st.st_size, datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
            except FileNotFoundError:
                file_size, mtime = 0, None

            total = 0
            largest_size = 0
            largest_key = ""
            for key, value in self._data.items():
                size = _value_size(value)
                total += size
                largest_size = max(largest_size, size)
                if len(key) > len(largest_key):
                    largest_key = key

            count = len(self._data)
            return StoreStatistics(
                total_keys=count,
                file_size_bytes=file_size,
                last_modified=mtime,
                approximate_memory_usage=_deep_sizeof(self._data) + _deep_sizeof(self._ttl_meta),
                average_value_size_bytes=round(total / count) if count else 0,
                largest_key_name=largest_key,
                largest_value_size_bytes=largest_size,
                cipher=self.effective_cipher.value,
                encryption_downgraded=self.encryption_downgraded,
            )

    def backup(self) -> Path:
        """Write a timestamped copy of the current state; the live file is untouched."""
        with self._lock:
            return self._disk.backup(self._state())

    def flush(self) -> None:
        """Write the current state now, cancelling any deferred write."""
        with self._lock:
            self._disk.save(self._state())

    def start_scheduled_cleanup(self, interval_ms: int) -> None:
        self.stop_scheduled_cleanup()
        self._cleanup_ticker = _Ticker("alphabase-cleanup", interval_ms, self.cleanup)
        self._cleanup_ticker.start()

    def stop_scheduled_cleanup(self) -> None:
        ticker, self._cleanup_ticker = self._cleanup_ticker, None
        if ticker is not None:
            ticker.stop()

    def start_auto_backup(self, interval_ms: int) -> None:
        self.stop_auto_backup()
        self._backup_ticker = _Ticker("alphabase-backup", interval_ms, self.backup)
        self._backup_ticker.start()

    def stop_auto_backup(self) -> None:
        ticker, self._backup_ticker = self._backup_ticker, None
        if ticker is not None:
            ticker.stop()

    def close(self) -> None:
        """Stop background timers and write out any deferred change."""
        self.stop_scheduled_cleanup()
        self.stop_auto_backup()
        with self._lock:
            if self._disk.has_pending_write:
                self._disk.save(self._state())
            self._disk.close()

    def __enter__(self) -> "AlphaBase":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transactions and batches
    # ------------------------------------------------------------------
    def begin_transaction(self) -> None:
        with self._lock:
            self._transactions.begin()

    def commit(self) -> None:
        with self._lock:
            self._transactions.commit()

    def rollback(self) -> None:
        with self._lock:
            self._transactions.rollback()

    def apply_batch(self, ops: Iterable[Any]) -> int:
        """Apply set/delete operations in order. Not atomic on its own; see `transactionally`."""
        with self._lock:
            return self._transactions.apply_batch(ops)

    def transactionally(self, ops: Iterable[Any]) -> int:
        """Apply a batch all-or-nothing: any error rolls back and is re-raised."""
        with self._lock:
            return self._transactions.transactionally(ops)

    # ------------------------------------------------------------------
    # Mutation events
    # ------------------------------------------------------------------
    def subscribe(self, listener: MutationListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: MutationListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Internals (lock held by caller)
    # ------------------------------------------------------------------
    def _state(self) -> StoreState:
        return StoreState(self._data, self._ttl_meta)

    def _capture_state(self) -> StoreState:
        return StoreState(copy.deepcopy(self._data), copy.deepcopy(self._ttl_meta))

    def _restore_state(self, state: StoreState) -> None:
        self._data = state.data
        self._ttl_meta = state.ttl_meta

    def _apply_set(self, key: Any, value: Any, ttl_ms: float | None) -> None:
        _check_key(key)
        ttl_ms = _check_ttl(ttl_ms)
        _check_serializable(key, value)
        if self._validator is not None:
            result = self._validator.validate(value)
            if not result.ok:
                raise SchemaViolation(key, result.errors)
        self._data[key] = copy.deepcopy(value)
        if ttl_ms is not None and ttl_ms > 0:
            ttl.set_key_expiry(self._ttl_meta, key, self._clock() + int(ttl_ms))
        else:
            self._ttl_meta.pop(key, None)

    def _apply_delete(self, key: Any) -> bool:
        _check_key(key)
        existed = self._data.pop(key, _MISSING) is not _MISSING
        self._ttl_meta.pop(key, None)
        return existed

    def _sweep(self, persist: bool = True) -> list[ttl.TtlEntry]:
        removed = ttl.sweep(self._data, self._ttl_meta, self._clock())
        if removed:
            logger.debug("SWEEP: evicted %d expired entries from %s", len(removed), self._path)
            if persist:
                self._persist()
            for entry in removed:
                self._emit(
                    MutationEvent(
                        "expire",
                        entry.key,
                        {"scope": entry.scope.value, "doc_id": entry.doc_id, "expires_at": entry.expires_at},
                    )
                )
        return removed

    def _persist(self, immediate: bool = False) -> None:
        if self._batch_write and not immediate and not self._disk.closed:
            self._disk.defer(self._flush_deferred)
        else:
            self._disk.save(self._state())

    def _flush_deferred(self) -> None:
        # Runs on the timer thread; close() may have written and shut the file first.
        with self._lock:
            if self._disk.closed:
                return
            self._disk.save(self._state())

    def _emit(self, event: MutationEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("MUTATION LISTENER: %r failed on %s", listener, event.operation)


def open_store(file_path: str | Path | None = None, **options: Any) -> AlphaBase:
    """Open (or create) the store at `file_path`. Options as for `AlphaBase`."""
    return AlphaBase(file_path, **options)


def _check_key(key: Any) -> None:
    if not isinstance(key, str):
        raise InvalidKeyType(key)


def _check_ttl(ttl_ms: Any) -> float | None:
    if ttl_ms is None:
        return None
    if isinstance(ttl_ms, bool) or not isinstance(ttl_ms, (int, float)):
        raise InvalidTtl(ttl_ms)
    return ttl_ms


def _check_serializable(key: str, value: Any) -> None:
    try:
        json.dumps(codec.strip_cycles(value), ensure_ascii=False)
    except (TypeError, ValueError, RecursionError) as e:
        raise InvalidValue(key, str(e)) from e


def _value_size(value: Any) -> int:
    try:
        return len(json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))
    except (TypeError, ValueError, RecursionError):
        return 0


def _deep_sizeof(obj: Any, seen: set[int] | None = None) -> int:
    seen = set() if seen is None else seen
    if id(obj) in seen:
        return 0
    seen.add(id(obj))
    size = sys.getsizeof(obj)
    if isinstance(obj, dict):
        size += sum(_deep_sizeof(k, seen) + _deep_sizeof(v, seen) for k, v in obj.items())
    elif isinstance(obj, (list, tuple)):
        size += sum(_deep_sizeof(v, seen) for v in obj)
    return size
