from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_path(name: str) -> Path | None:
    raw = (os.getenv(name) or "").strip()
    return Path(raw) if raw else None


def _parse_users(raw: str) -> dict[str, str]:
    """Parse "alice:secret,bob:hunter2" into {"alice": "secret", "bob": "hunter2"}."""
    users: dict[str, str] = {}
    for item in raw.split(","):
        name, sep, password = item.strip().partition(":")
        if sep and name:
            users[name] = password
    return users


@dataclass(frozen=True)
class Settings:
    # Store
    db_file: Path
    password: str | None
    cipher: str
    backup_dir: Path | None
    schema_file: Path | None
    batch_write: bool
    deferred_write_ms: int
    cleanup_interval_ms: int
    auto_backup_interval_ms: int

    # Auth
    require_auth: bool
    users: dict[str, str]
    jwt_secret: str
    jwt_alg: str
    jwt_ttl_seconds: int

    # Audit / debug
    audit_file: Path | None
    debug_log_requests: bool


def get_settings() -> Settings:
    db_file = Path(os.getenv("ALPHABASE_FILE", "alphabase.json"))
    password = os.getenv("ALPHABASE_PASSWORD") or None
    cipher = os.getenv("ALPHABASE_CIPHER", "AES").strip()

    # NOTE: default users and secret are insecure; override them in production
    users = _parse_users(os.getenv("ALPHABASE_USERS", "admin:password123,user:userpass"))
    jwt_secret = os.getenv("JWT_SECRET", "dev-only-super-secret")
    jwt_alg = os.getenv("JWT_ALG", "HS256")

    return Settings(
        db_file=db_file,
        password=password,
        cipher=cipher,
        backup_dir=_env_path("ALPHABASE_BACKUP_DIR"),
        schema_file=_env_path("ALPHABASE_SCHEMA_FILE"),
        batch_write=_env_bool("ALPHABASE_BATCH_WRITE", False),
        deferred_write_ms=_env_int("ALPHABASE_DEFERRED_WRITE_MS", 1000),
        cleanup_interval_ms=_env_int("ALPHABASE_CLEANUP_INTERVAL_MS", 0),
        auto_backup_interval_ms=_env_int("ALPHABASE_AUTO_BACKUP_INTERVAL_MS", 0),
        require_auth=_env_bool("ALPHABASE_REQUIRE_AUTH", True),
        users=users,
        jwt_secret=jwt_secret,
        jwt_alg=jwt_alg,
        jwt_ttl_seconds=_env_int("JWT_TTL_SECONDS", 3600),
        audit_file=_env_path("ALPHABASE_AUDIT_FILE"),
        debug_log_requests=_env_bool("DEBUG_LOG_REQUESTS", False),
    )
