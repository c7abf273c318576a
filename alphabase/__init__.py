from .async_store import AsyncAlphaBase
from .ciphers import CipherType
from .errors import (
    AlphaBaseError,
    CollectionNotFound,
    DecryptionFailure,
    DocumentNotFound,
    EnvelopeFormatError,
    ImportFormatError,
    InvalidKeyType,
    InvalidTtl,
    InvalidValue,
    MissingPassphrase,
    NoTransactionOpen,
    SchemaViolation,
    StorageIOError,
    TransactionAlreadyOpen,
    TransactionError,
    UnknownBatchOp,
    UnsupportedCipher,
)
from .interfaces import MutationEvent
from .store import AlphaBase, StoreStatistics, open_store
from .transactions import BatchOp, BatchOperation

__all__ = [
    "AlphaBase",
    "AlphaBaseError",
    "AsyncAlphaBase",
    "BatchOp",
    "BatchOperation",
    "CipherType",
    "CollectionNotFound",
    "DecryptionFailure",
    "DocumentNotFound",
    "EnvelopeFormatError",
    "ImportFormatError",
    "InvalidKeyType",
    "InvalidTtl",
    "InvalidValue",
    "MissingPassphrase",
    "MutationEvent",
    "NoTransactionOpen",
    "SchemaViolation",
    "StorageIOError",
    "StoreStatistics",
    "TransactionAlreadyOpen",
    "TransactionError",
    "UnknownBatchOp",
    "UnsupportedCipher",
    "open_store",
]
