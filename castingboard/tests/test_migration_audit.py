from __future__ import annotations

import pytest

from castingboard.tests.utils.fake_audit_db import RUN_ID, FakeAuditConnection
from castingboard.tools import migration_audit
from castingboard.tools.migration_audit import MigrationAudit


def test_start_run_creates_tables_and_returns_run_id() -> None:
    conn = FakeAuditConnection()
    audit = MigrationAudit(conn)

    run_id = audit.start_run("mongodb:castingboard", dry_run=True)

    assert run_id == RUN_ID
    assert "create table if not exists public.import_audit_runs" in conn.statements[0][0]
    assert conn.statements[1][1] == ("mongodb:castingboard", "dry-run")


def test_records_are_buffered_and_flushed_in_batches() -> None:
    conn = FakeAuditConnection()
    audit = MigrationAudit(conn, flush_every=2)
    audit.start_run("src", dry_run=False)

    audit.record("scripts", "65a1", "scripts", "uuid-1", "ok")
    assert conn.mappings == []
    audit.record("scripts", "65a2", "scripts", None, "error", "missing_field:title")
    assert len(conn.mappings) == 2
    assert conn.mappings[1] == (RUN_ID, "scripts", "65a2", "scripts", None, "error", "missing_field:title")

    audit.record("likes", "65a3", "likes", "uuid-3", "ok")
    audit.finish_run()
    assert len(conn.mappings) == 3
    assert conn.statements[-1][0].startswith("update public.import_audit_runs set ended_at_utc = now()")


def test_fail_run_stores_message() -> None:
    conn = FakeAuditConnection()
    audit = MigrationAudit(conn)
    audit.start_run("src", dry_run=False)
    audit.fail_run("interrupted")
    sql, params = conn.statements[-1]
    assert "notes = left(%s, 512)" in sql
    assert params == ("failed: interrupted", RUN_ID)


def test_record_rejects_unknown_status_and_unstarted_run() -> None:
    audit = MigrationAudit(FakeAuditConnection())
    with pytest.raises(RuntimeError):
        audit.record("users", "1", "users", None, "ok")
    audit.start_run("src", dry_run=False)
    with pytest.raises(ValueError):
        audit.record("users", "1", "users", None, "done")


def test_connect_uses_autocommit(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    def fake_connect(dsn: str, **kwargs):
        captured["dsn"] = dsn
        captured.update(kwargs)
        return FakeAuditConnection()

    monkeypatch.setattr(migration_audit.psycopg, "connect", fake_connect)
    audit = MigrationAudit.connect("postgresql://fake")
    assert captured == {"dsn": "postgresql://fake", "autocommit": True}
    audit.close()
