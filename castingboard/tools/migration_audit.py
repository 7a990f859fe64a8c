"""
Optional Postgres audit trail for migration runs.

Why:
    Per-row outcomes (including orphaned auth identities) must be findable
    without scanning the destination tables by hand. Each run is recorded in
    ``public.import_audit_runs`` and every processed document in
    ``public.import_audit_mappings``.

Permissions:
    Requires a service-role DSN for the Supabase Postgres database; the tables
    are created on first use.
"""
from __future__ import annotations

from typing import Any, Sequence, Tuple

import psycopg


AUDIT_STATUSES = ("ok", "skip", "conflict", "error")

AuditRecord = Tuple[str, str, str, str, str | None, str, str | None]


def _ensure_audit_structures(conn: "psycopg.Connection") -> None:
    """Create audit tables when missing (idempotent)."""
    with conn.cursor() as cur:  # type: ignore[attr-defined]
        cur.execute(
            """
            create table if not exists public.import_audit_runs (
              id uuid primary key default gen_random_uuid(),
              source text not null,
              started_at_utc timestamptz not null default now(),
              ended_at_utc timestamptz null,
              notes text null
            );
            create table if not exists public.import_audit_mappings (
              run_id uuid not null references public.import_audit_runs(id) on delete cascade,
              entity text not null,
              legacy_id text not null,
              target_table text not null,
              target_id text null,
              status text not null check (status in ('ok','skip','conflict','error')),
              reason text null,
              created_at_utc timestamptz not null default now()
            );
            """
        )


class MigrationAudit:
    """Buffered writer for audit entries of one run."""

    def __init__(self, conn: Any, *, flush_every: int = 100) -> None:
        self._conn = conn
        self._flush_every = max(1, flush_every)
        self._pending: list[AuditRecord] = []
        self.run_id: str | None = None

    @classmethod
    def connect(cls, dsn: str, *, flush_every: int = 100) -> "MigrationAudit":
        conn = psycopg.connect(dsn, autocommit=True)
        return cls(conn, flush_every=flush_every)

    def start_run(self, source: str, dry_run: bool) -> str:
        _ensure_audit_structures(self._conn)
        notes = "dry-run" if dry_run else None
        with self._conn.cursor() as cur:  # type: ignore[attr-defined]
            cur.execute(
                """
                insert into public.import_audit_runs (source, notes)
                values (%s, %s)
                returning id
                """,
                (source, notes),
            )
            row = cur.fetchone()
        self.run_id = str(row[0])
        return self.run_id

    def record(
        self,
        entity: str,
        legacy_id: str,
        target_table: str,
        target_id: str | None,
        status: str,
        reason: str | None = None,
    ) -> None:
        if self.run_id is None:
            raise RuntimeError("audit run not started")
        if status not in AUDIT_STATUSES:
            raise ValueError(f"invalid audit status: {status}")
        self._pending.append((self.run_id, entity, legacy_id, target_table, target_id, status, reason))
        if len(self._pending) >= self._flush_every:
            self.flush()

    def flush(self) -> None:
        if not self._pending:
            return
        records: Sequence[AuditRecord] = list(self._pending)
        with self._conn.cursor() as cur:  # type: ignore[attr-defined]
            cur.executemany(
                """
                insert into public.import_audit_mappings
                    (run_id, entity, legacy_id, target_table, target_id, status, reason)
                values (%s, %s, %s, %s, %s, %s, %s)
                """,
                records,
            )
        self._pending.clear()

    def finish_run(self) -> None:
        self.flush()
        with self._conn.cursor() as cur:  # type: ignore[attr-defined]
            cur.execute(
                "update public.import_audit_runs set ended_at_utc = now() where id = %s",
                (self.run_id,),
            )

    def fail_run(self, message: str) -> None:
        """Close the run and keep the failure reason in ``notes``."""
        self.flush()
        with self._conn.cursor() as cur:  # type: ignore[attr-defined]
            cur.execute(
                "update public.import_audit_runs set ended_at_utc = now(), notes = left(%s, 512) where id = %s",
                (f"failed: {message}", self.run_id),
            )

    def close(self) -> None:
        self._conn.close()


__all__ = ["AUDIT_STATUSES", "MigrationAudit"]
