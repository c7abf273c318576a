from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from .interfaces import MutationListener
from .store import AlphaBase, StoreStatistics


class AsyncDocumentStore(Protocol):
    async def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...
    async def get(self, key: str, default: Any = None) -> Any: ...
    async def delete(self, key: str) -> bool: ...
    async def has(self, key: str) -> bool: ...
    async def clear(self) -> None: ...
    async def all(self) -> dict[str, Any]: ...
    async def get_ttl(self, key: str, doc_id: str | None = None) -> int: ...


class AsyncAlphaBase(AsyncDocumentStore):
    """
    Async wrapper around AlphaBase.
    Uses asyncio.to_thread to avoid blocking the event loop on file I/O.
    """

    def __init__(self, store: AlphaBase | None = None, **options: Any) -> None:
        self._store = store if store is not None else AlphaBase(**options)

    @property
    def store(self) -> AlphaBase:
        return self._store

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        await asyncio.to_thread(self._store.set, key, value, ttl)

    async def get(self, key: str, default: Any = None) -> Any:
        return await asyncio.to_thread(self._store.get, key, default)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._store.delete, key)

    async def has(self, key: str) -> bool:
        return await asyncio.to_thread(self._store.has, key)

    async def clear(self) -> None:
        await asyncio.to_thread(self._store.clear)

    async def all(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._store.all)

    async def get_ttl(self, key: str, doc_id: str | None = None) -> int:
        return await asyncio.to_thread(self._store.get_ttl, key, doc_id)

    async def set_document_ttl(self, collection: str, doc_id: str, ttl_ms: float) -> None:
        await asyncio.to_thread(self._store.set_document_ttl, collection, doc_id, ttl_ms)

    async def cleanup(self) -> int:
        return await asyncio.to_thread(self._store.cleanup)

    async def import_bulk(self, data: Mapping[str, Any] | str | bytes) -> None:
        await asyncio.to_thread(self._store.import_bulk, data)

    async def export_envelope(self, as_text: bool = False) -> dict[str, Any] | str:
        return await asyncio.to_thread(self._store.export_envelope, as_text)

    async def export_collection(self, collection: str, file_path: str | Path, *, encrypt: bool = False) -> Path:
        return await asyncio.to_thread(self._store.export_collection, collection, file_path, encrypt=encrypt)

    async def import_collection(self, collection: str, file_path: str | Path) -> None:
        await asyncio.to_thread(self._store.import_collection, collection, file_path)

    async def statistics(self) -> StoreStatistics:
        return await asyncio.to_thread(self._store.statistics)

    async def backup(self) -> Path:
        return await asyncio.to_thread(self._store.backup)

    async def flush(self) -> None:
        await asyncio.to_thread(self._store.flush)

    async def begin_transaction(self) -> None:
        await asyncio.to_thread(self._store.begin_transaction)

    async def commit(self) -> None:
        await asyncio.to_thread(self._store.commit)

    async def rollback(self) -> None:
        await asyncio.to_thread(self._store.rollback)

    async def apply_batch(self, ops: Iterable[Any]) -> int:
        return await asyncio.to_thread(self._store.apply_batch, list(ops))

    async def transactionally(self, ops: Iterable[Any]) -> int:
        return await asyncio.to_thread(self._store.transactionally, list(ops))

    # Listener registration touches no files; it stays synchronous.
    def subscribe(self, listener: MutationListener) -> None:
        self._store.subscribe(listener)

    def unsubscribe(self, listener: MutationListener) -> None:
        self._store.unsubscribe(listener)

    async def close(self) -> None:
        await asyncio.to_thread(self._store.close)
