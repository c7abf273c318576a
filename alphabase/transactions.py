"""
Transactions and batch application.

A transaction is a deep snapshot of the store taken at `begin`; `rollback`
puts it back, `commit` drops it. Batches apply set/delete operations in order
and persist once.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from pydantic import BaseModel, ValidationError

from .errors import NoTransactionOpen, StorageIOError, TransactionAlreadyOpen, UnknownBatchOp
from .interfaces import MutationEvent

if TYPE_CHECKING:
    from .codec import StoreState
    from .store import AlphaBase

logger = logging.getLogger(__name__)


class BatchOperation(str, Enum):
    SET = "set"
    DELETE = "delete"


class BatchOp(BaseModel):
    op: BatchOperation
    key: Any
    value: Any = None
    ttl: float | None = None


class TransactionState(str, Enum):
    IDLE = "idle"
    IN_TRANSACTION = "in_transaction"


def parse_batch_op(raw: Any) -> BatchOp:
    """
    Accepts a BatchOp or a mapping shaped like
    {"op" | "operation": "set" | "delete", "key": ..., "value": ..., "ttl": ...}.
    The ttl may also sit under "options", as older callers send it.
    """
    if isinstance(raw, BatchOp):
        return raw
    if not isinstance(raw, Mapping):
        raise UnknownBatchOp(raw)

    tag = raw.get("op", raw.get("operation"))
    if not isinstance(tag, str):
        raise UnknownBatchOp(tag)
    try:
        op = BatchOperation(tag.strip().lower())
    except ValueError as e:
        raise UnknownBatchOp(tag) from e

    ttl = raw.get("ttl")
    options = raw.get("options")
    if ttl is None and isinstance(options, Mapping):
        ttl = options.get("ttl")

    try:
        return BatchOp(op=op, key=raw.get("key"), value=raw.get("value"), ttl=ttl)
    except ValidationError as e:
        raise UnknownBatchOp(dict(raw)) from e


class TransactionCoordinator:
    """
    Idle <-> InTransaction state machine over one store.

    Callers must hold the store's lock; the store's public methods do.
    """

    def __init__(self, store: "AlphaBase"):
        self._store = store
        self._snapshot: StoreState | None = None

    @property
    def state(self) -> TransactionState:
        return TransactionState.IDLE if self._snapshot is None else TransactionState.IN_TRANSACTION

    def begin(self) -> None:
        if self._snapshot is not None:
            raise TransactionAlreadyOpen()
        self._snapshot = self._store._capture_state()

    def commit(self) -> None:
        if self._snapshot is None:
            raise NoTransactionOpen()
        self._snapshot = None
        self._store._persist(immediate=True)
        self._store._emit(MutationEvent("commit"))

    def rollback(self) -> None:
        if self._snapshot is None:
            raise NoTransactionOpen()
        snapshot, self._snapshot = self._snapshot, None
        self._store._restore_state(snapshot)
        self._store._persist(immediate=True)
        self._store._emit(MutationEvent("rollback"))

    def apply_batch(self, ops: Iterable[Any], *, persist: bool = True) -> int:
        """
        Apply operations in order against the live store.

        An invalid operation stops the batch where it is; operations before it
        stay applied. Returns the number of operations applied.
        """
        if isinstance(ops, (str, bytes, Mapping)):
            raise TypeError("Batch must be a sequence of operations")

        applied = 0
        try:
            for raw in ops:
                op = parse_batch_op(raw)
                if op.op is BatchOperation.SET:
                    self._store._apply_set(op.key, op.value, op.ttl)
                else:
                    self._store._apply_delete(op.key)
                applied += 1
        except Exception:
            if applied and persist:
                # Keep what was applied on disk, but report the operation that stopped the batch.
                try:
                    self._persist_applied()
                except StorageIOError:
                    logger.exception("BATCH: failed to persist %d applied operation(s)", applied)
            raise
        if applied and persist:
            self._persist_applied()
        if applied:
            self._store._emit(MutationEvent("batch", metadata={"operations": applied}))
        return applied

    def _persist_applied(self) -> None:
        self._store._sweep(persist=False)
        self._store._persist()

    def transactionally(self, ops: Iterable[Any]) -> int:
        self.begin()
        try:
            applied = self.apply_batch(ops, persist=False)
        except Exception:
            logger.debug("TRANSACTION: batch failed, rolling back")
            self.rollback()
            raise
        self.commit()
        return applied
