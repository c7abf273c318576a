from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

DEFAULT_DB_FILENAME = "alphabase.json"
BACKUP_DIRNAME = "backups"


def default_db_path() -> Path:
    return Path(os.getcwd()) / DEFAULT_DB_FILENAME


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_backup_dir(db_path: Path) -> Path:
    # backups/ sits next to the database file
    return db_path.resolve().parent / BACKUP_DIRNAME


def backup_filename(moment: datetime | None = None) -> str:
    """backup-<ISO8601 UTC, ':' and '.' replaced by '-'>.json"""
    ts = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    iso = ts.strftime("%Y-%m-%dT%H:%M:%S") + f".{ts.microsecond // 1000:03d}Z"
    return "backup-" + iso.replace(":", "-").replace(".", "-") + ".json"
