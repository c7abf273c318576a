from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping, Protocol

if TYPE_CHECKING:
    from .codec import StoreState


class EnvelopeDocumentStore(Protocol):
    """
    Minimal storage interface: the whole {data, ttlMeta} pair persisted as one document.
    """

    def load(self) -> "StoreState":
        """Load and return the full state (never None)."""
        ...

    def save(self, state: "StoreState") -> None:
        """Persist the full state atomically."""
        ...

    def backup(self, state: "StoreState") -> Path:
        """Write a timestamped copy of the state and return its path."""
        ...


@dataclass(frozen=True)
class SchemaIssue:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    errors: tuple[SchemaIssue, ...] = ()


class SchemaValidator(Protocol):
    def validate(self, value: Any) -> ValidationResult:
        ...


@dataclass(frozen=True)
class MutationEvent:
    """
    Emitted after the store changes.

    operation is one of: set, delete, clear, import, expire, batch, commit,
    rollback, document_ttl.
    """

    operation: str
    key: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


MutationListener = Callable[[MutationEvent], None]


class AuditSink(Protocol):
    """Implemented by the embedding layer; the store never calls it directly."""

    def record(self, operation: str, key: str | None, actor: str, metadata: Mapping[str, Any] | None = None) -> None:
        ...
