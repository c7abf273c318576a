from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable

from . import codec
from .ciphers import CipherType
from .codec import StoreState
from .errors import StorageIOError
from .interfaces import EnvelopeDocumentStore
from .json_store import atomic_write_text, read_text
from .locks import GLOBAL_PATH_LOCKS
from .paths import backup_filename, default_backup_dir, ensure_dir

logger = logging.getLogger(__name__)

DEFAULT_DEFERRED_WRITE_MS = 1000


class DiskEnvelopeStore(EnvelopeDocumentStore):
    """
    Stores the {data, ttlMeta} envelope as a single file on disk.

    - Always loads a state (empty on missing/corrupt/undecryptable files).
    - Writes atomically, under an exclusive per-path lock.
    - Optionally coalesces writes inside a deferral window.
    """

    def __init__(
        self,
        path: Path,
        *,
        cipher: CipherType | str = CipherType.AES,
        passphrase: str | None = None,
        backup_dir: Path | None = None,
        deferred_write_ms: int = DEFAULT_DEFERRED_WRITE_MS,
    ):
        self._path = Path(path)
        self._cipher = CipherType.parse(cipher)
        self._passphrase = passphrase or None
        self._backup_dir = Path(backup_dir) if backup_dir is not None else default_backup_dir(self._path)
        if deferred_write_ms < 0:
            raise ValueError(f"deferred_write_ms must be >= 0, got {deferred_write_ms}")
        self._deferred_write_ms = deferred_write_ms

        self._timer_guard = threading.Lock()
        self._timer: threading.Timer | None = None
        self._closed = False

        if self.encryption_downgraded:
            logger.warning(
                "ENCRYPTION: %s requested for %s but no passphrase was supplied; "
                "the file will be written unencrypted",
                self._cipher.value,
                self._path,
            )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def passphrase(self) -> str | None:
        return self._passphrase

    @property
    def configured_cipher(self) -> CipherType:
        return self._cipher

    @property
    def effective_cipher(self) -> CipherType:
        return codec.effective_cipher(self._cipher, self._passphrase)

    @property
    def encryption_downgraded(self) -> bool:
        return self.effective_cipher is not self._cipher

    @property
    def closed(self) -> bool:
        with self._timer_guard:
            return self._closed

    @property
    def has_pending_write(self) -> bool:
        with self._timer_guard:
            return self._timer is not None

    def load(self) -> StoreState:
        lock = GLOBAL_PATH_LOCKS.lock_for(self._path)
        try:
            with lock.read():
                raw = read_text(self._path)
            if raw is None:
                with lock.write():
                    atomic_write_text(self._path, "{}")
                raw = "{}"
        except OSError as e:
            raise StorageIOError(self._path, f"failed to read store file ({e})") from e
        return codec.decode_on_open(raw, passphrase=self._passphrase, cipher=self._cipher, source=self._path)

    def render(self, state: StoreState) -> str:
        return codec.encode_state(state, passphrase=self._passphrase, cipher=self._cipher)

    def save(self, state: StoreState) -> None:
        self._cancel_pending()
        self._write(self._path, self.render(state))
        logger.debug("SAVE: wrote %s (%d keys)", self._path, len(state.data))

    def backup(self, state: StoreState) -> Path:
        ensure_dir(self._backup_dir)
        target = self._backup_dir / backup_filename()
        self._write(target, self.render(state))
        logger.debug("BACKUP: wrote %s", target)
        return target

    def defer(self, flush: Callable[[], None]) -> None:
        """
        Schedule `flush` to run once the deferral window closes.

        Calls made while a write is already pending coalesce into it. `flush`
        is expected to call `save`, which clears the pending state.
        """
        with self._timer_guard:
            if self._timer is not None or self._closed:
                return
            timer = threading.Timer(self._deferred_write_ms / 1000.0, self._fire, args=(flush,))
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _fire(self, flush: Callable[[], None]) -> None:
        # The write stays pending until `flush` saves, so a concurrent close()
        # still sees it and writes it itself.
        with self._timer_guard:
            if self._timer is None or self._closed:
                return
        try:
            flush()
        except Exception:
            # Nobody is waiting on a deferred write; the data stays in memory
            # and the next mutation schedules a fresh attempt.
            with self._timer_guard:
                self._timer = None
            logger.exception("DEFERRED SAVE: failed to write %s", self._path)

    def _cancel_pending(self) -> None:
        with self._timer_guard:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def close(self) -> None:
        with self._timer_guard:
            self._closed = True
        self._cancel_pending()

    def _write(self, target: Path, text: str) -> None:
        lock = GLOBAL_PATH_LOCKS.lock_for(target)
        try:
            with lock.write():
                atomic_write_text(target, text)
        except OSError as e:
            raise StorageIOError(target, f"failed to write store file ({e})") from e
