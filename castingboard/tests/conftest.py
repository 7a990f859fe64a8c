"""
Pytest configuration for the migration tests.

Why: The CLI reads its settings from the environment (and a ``.env`` file).
Clear those variables so a developer shell never points a test at real stores.
"""
import pytest

_MIGRATION_ENV = (
    "MONGODB_URI",
    "MONGODB_DB",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_TIMEOUT",
    "MIGRATION_AUDIT_DSN",
    "MIGRATION_BATCH_SIZE",
    "MIGRATION_REPORT_DIR",
    "MIGRATION_TEMP_PASSWORD",
)


@pytest.fixture(autouse=True)
def _isolate_migration_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _MIGRATION_ENV:
        monkeypatch.delenv(name, raising=False)
