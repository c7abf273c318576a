"""
Error taxonomy for the AlphaBase storage core.

Validation and state-machine errors are raised before any state changes.
`DecryptionFailure` and `EnvelopeFormatError` are raised by the strict decode
path only; opening a store swallows them into an empty state.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence


class AlphaBaseError(Exception):
    """Base class for every error raised by the storage core."""


class InvalidKeyType(AlphaBaseError, TypeError):
    def __init__(self, key: Any):
        self.key = key
        super().__init__(f"Key must be a string, got {type(key).__name__}")


class SchemaViolation(AlphaBaseError, ValueError):
    """
    Raised when a value fails the configured schema.

    Args:
        key: Key the value was being written under.
        errors: Validator failure detail, one entry per issue.
    """

    def __init__(self, key: str, errors: Sequence[Any]):
        self.key = key
        self.errors = list(errors)
        detail = "; ".join(str(e) for e in self.errors) or "invalid value"
        super().__init__(f"Schema validation failed for key '{key}': {detail}")


class ImportFormatError(AlphaBaseError, ValueError):
    pass


class UnknownBatchOp(AlphaBaseError, ValueError):
    def __init__(self, op: Any):
        self.op = op
        super().__init__(f"Unknown batch operation: {op!r}")


class TransactionError(AlphaBaseError, RuntimeError):
    pass


class TransactionAlreadyOpen(TransactionError):
    def __init__(self) -> None:
        super().__init__("Transaction already in progress")


class NoTransactionOpen(TransactionError):
    def __init__(self) -> None:
        super().__init__("No transaction in progress")


class CollectionNotFound(AlphaBaseError, LookupError):
    def __init__(self, collection: str):
        self.collection = collection
        super().__init__(f"Collection '{collection}' not found")


class DocumentNotFound(AlphaBaseError, LookupError):
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document '{doc_id}' not found in collection '{collection}'")


class StorageIOError(AlphaBaseError):
    """
    Disk read/write failure.

    When raised from a mutating call the in-memory change has already been
    applied; the data is correct in memory but not yet durable.
    """

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"{message}: {path}")


class UnsupportedCipher(AlphaBaseError, ValueError):
    def __init__(self, name: Any):
        self.name = name
        super().__init__(f"Unsupported encryption type: {name!r}")


class MissingPassphrase(AlphaBaseError, ValueError):
    def __init__(self, cipher: str):
        self.cipher = cipher
        super().__init__(f"Passphrase is required for {cipher} encryption")


class DecryptionFailure(AlphaBaseError):
    pass


class EnvelopeFormatError(AlphaBaseError, ValueError):
    pass


class InvalidValue(AlphaBaseError, ValueError):
    """The value cannot be stored as JSON (sets, bytes, datetimes, arbitrary objects)."""

    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"Value for key '{key}' is not JSON-serializable: {reason}")


class InvalidTtl(AlphaBaseError, TypeError):
    def __init__(self, ttl: Any):
        self.ttl = ttl
        super().__init__(f"TTL must be a number of milliseconds, got {type(ttl).__name__}")
