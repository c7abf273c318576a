from __future__ import annotations

from pathlib import Path
import sys


import pytest


# Ensure the repository root (parent of ./tests) is importable during pytest collection.
# This avoids ModuleNotFoundError for imports like `import alphabase...` under pytest import modes
# that don't automatically prepend the cwd/rootdir to sys.path.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "db.json"


@pytest.fixture
def make_store(db_path: Path, clock: FakeClock):
    """
    Factory for stores on a temp file, driven by the fake clock.
    Every store it opens is closed at teardown.
    """
    from alphabase import AlphaBase

    opened = []

    def _make(path: Path | None = None, **options):
        options.setdefault("clock", clock)
        options.setdefault("cipher", "None")
        store = AlphaBase(path or db_path, **options)
        opened.append(store)
        return store

    yield _make
    for store in opened:
        store.close()


@pytest.fixture
def sandbox_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """
    Point every ALPHABASE_* setting at a temp project directory so tests never touch ./alphabase.json.
    """
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ALPHABASE_FILE", str(tmp_path / "api.json"))
    monkeypatch.setenv("ALPHABASE_CIPHER", "None")
    monkeypatch.setenv("ALPHABASE_AUDIT_FILE", str(tmp_path / "audit.log"))
    monkeypatch.setenv("ALPHABASE_USERS", "admin:password123,user:userpass")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    for name in (
        "ALPHABASE_PASSWORD",
        "ALPHABASE_BACKUP_DIR",
        "ALPHABASE_SCHEMA_FILE",
        "ALPHABASE_BATCH_WRITE",
        "ALPHABASE_REQUIRE_AUTH",
        "ALPHABASE_CLEANUP_INTERVAL_MS",
        "ALPHABASE_AUTO_BACKUP_INTERVAL_MS",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path
