from __future__ import annotations

import contextlib
import threading
from pathlib import Path
from typing import Iterator


class ReadWriteLock:
    """
    Many readers or one writer. Waiting writers block new readers.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class PathLockRegistry:
    """
    Provides a stable reader/writer lock per normalized file path, so two
    stores in one process never overlap physical writes to the same file.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, ReadWriteLock] = {}

    def lock_for(self, path: Path) -> ReadWriteLock:
        key = str(path.resolve())
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = ReadWriteLock()
                self._locks[key] = lock
            return lock


GLOBAL_PATH_LOCKS = PathLockRegistry()
