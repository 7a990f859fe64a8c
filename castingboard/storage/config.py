"""
Centralized configuration for the MongoDB → Supabase migration.

Intent:
    Provide a single source of truth for connection settings and defaults so
    the CLI, the stores and the tests agree on env names and fallbacks.

Behavior:
    - Getters read the environment at call time (tests may monkeypatch env).
    - Malformed numeric values fall back to defaults instead of failing.
    - ``ensure_migration_config`` aborts with ``SystemExit`` when a required
      connection setting is missing or the Supabase URL is malformed.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os
import re
from pathlib import Path


REPORT_DIR_DEFAULT = "."
SUPABASE_TIMEOUT_DEFAULT = 10.0
BATCH_SIZE_DEFAULT = 100
MONGO_SERVER_SELECTION_TIMEOUT_MS = 5000


def _env(name: str) -> str | None:
    value = (os.getenv(name) or "").strip()
    return value or None


def get_mongodb_uri() -> str | None:
    return _env("MONGODB_URI")


def get_mongodb_db() -> str | None:
    """Optional database name; otherwise the URI's default database is used."""
    return _env("MONGODB_DB")


def get_supabase_url() -> str | None:
    return _env("SUPABASE_URL")


def get_supabase_service_key() -> str | None:
    return _env("SUPABASE_SERVICE_ROLE_KEY")


def get_audit_dsn() -> str | None:
    return _env("MIGRATION_AUDIT_DSN")


def get_temp_password() -> str | None:
    """Shared temporary password for migrated accounts (unset = random per user)."""
    return _env("MIGRATION_TEMP_PASSWORD")


def get_report_dir() -> Path:
    return Path(_env("MIGRATION_REPORT_DIR") or REPORT_DIR_DEFAULT)


def _parse_int_env(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def get_batch_size() -> int:
    return _parse_int_env("MIGRATION_BATCH_SIZE", BATCH_SIZE_DEFAULT)


def get_supabase_timeout() -> float:
    raw = _env("SUPABASE_TIMEOUT")
    if not raw:
        return SUPABASE_TIMEOUT_DEFAULT
    try:
        value = float(raw)
    except ValueError:
        return SUPABASE_TIMEOUT_DEFAULT
    return value if value > 0 else SUPABASE_TIMEOUT_DEFAULT


def validate_supabase_url(url: str) -> str:
    """Accept ``http(s)://host[:port]`` with an optional path; reject anything else."""
    if not re.match(r"^https?://[A-Za-z0-9.-]+(?::[0-9]{1,5})?(/[^\s]*)?$", (url or "").strip()):
        raise SystemExit("Invalid SUPABASE_URL (expected http(s)://host[:port])")
    return url.strip().rstrip("/")


def ensure_migration_config(
    mongodb_uri: str | None,
    supabase_url: str | None,
    service_key: str | None,
) -> None:
    """Fail fast when the migration cannot reach both stores."""
    missing = [
        name
        for name, value in (
            ("MONGODB_URI", mongodb_uri),
            ("SUPABASE_URL", supabase_url),
            ("SUPABASE_SERVICE_ROLE_KEY", service_key),
        )
        if not value
    ]
    if missing:
        raise SystemExit("Missing required configuration: " + ", ".join(missing))
    validate_supabase_url(supabase_url or "")


__all__ = [
    "BATCH_SIZE_DEFAULT",
    "MONGO_SERVER_SELECTION_TIMEOUT_MS",
    "REPORT_DIR_DEFAULT",
    "SUPABASE_TIMEOUT_DEFAULT",
    "ensure_migration_config",
    "get_audit_dsn",
    "get_batch_size",
    "get_mongodb_db",
    "get_mongodb_uri",
    "get_report_dir",
    "get_supabase_service_key",
    "get_supabase_timeout",
    "get_supabase_url",
    "get_temp_password",
    "validate_supabase_url",
]
