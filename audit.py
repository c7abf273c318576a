"""JSON-lines audit trail for data operations."""

from __future__ import annotations

import json
import logging
import threading
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping

from alphabase.interfaces import AuditSink, MutationEvent

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class JsonlAuditSink(AuditSink):
    """
    Appends one JSON object per operation to `path`.

    Lines go through a dedicated non-propagating logger with a
    RotatingFileHandler, so application log config never reroutes them.
    """

    def __init__(self, path: str | Path, *, max_bytes: int = 5 * 1024 * 1024, backup_count: int = 3):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        self._handler = RotatingFileHandler(self._path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger = logging.getLogger(f"alphabase.audit.{self._path.resolve()}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        for stale in list(self._logger.handlers):
            self._logger.removeHandler(stale)
            stale.close()
        self._logger.addHandler(self._handler)

    @property
    def path(self) -> Path:
        return self._path

    def record(self, operation: str, key: str | None, actor: str, metadata: Mapping[str, Any] | None = None) -> None:
        line = {
            "timestamp": int(time.time() * 1000),
            "operation": operation,
            "key": key,
            "actor": actor,
            "metadata": dict(metadata or {}),
        }
        with self._lock:
            self._logger.info(json.dumps(line, ensure_ascii=False, default=str))

    def get_logs(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Most recent entries from the current file, oldest first."""
        with self._lock:
            self._handler.flush()
            try:
                lines = self._path.read_text(encoding="utf-8").splitlines()
            except FileNotFoundError:
                return []
        entries: list[dict[str, Any]] = []
        for raw in lines:
            if not raw.strip():
                continue
            try:
                entries.append(json.loads(raw))
            except json.JSONDecodeError:
                logger.warning("AUDIT: skipping unreadable line in %s", self._path)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def expiry_listener(self, event: MutationEvent) -> None:
        """Store subscription: records evictions, which have no requesting user."""
        if event.operation == "expire":
            self.record("expire", event.key, SYSTEM_ACTOR, event.metadata)

    def close(self) -> None:
        with self._lock:
            self._logger.removeHandler(self._handler)
            self._handler.close()
