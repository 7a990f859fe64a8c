"""
Supabase-backed destination for migrated rows.

This adapter wraps the table operations the migration performs through
PostgREST. It is intentionally duck-typed over the client returned by
``supabase.create_client(...)`` so tests can pass a fake exposing
``.table(name)`` (or the bare postgrest ``.from_(name)``) with the usual
builder chain: ``select/insert/upsert/delete`` → ``eq/neq/limit`` →
``execute()``.

Security:
- The client must be initialized with the Service Role key; RLS would
  otherwise reject inserts into ``public.users`` and friends.
- Failed requests raise (``postgrest.exceptions.APIError``); callers decide
  whether the failure is fatal (startup probe) or per-row.
"""
from __future__ import annotations

from typing import Any

from supabase import create_client


EMPTY_UUID = "00000000-0000-0000-0000-000000000000"


class SupabaseDestination:
    """Row writer for the relational store."""

    def __init__(self, client: Any):
        self._client = client
        self._user_ids: dict[str, str] = {}

    @classmethod
    def from_credentials(cls, url: str, service_key: str) -> "SupabaseDestination":
        return cls(create_client(url, service_key))

    # --- Helpers -----------------------------------------------------------------

    def _table(self, name: str) -> Any:
        """Return a query builder from either a supabase or a postgrest client."""
        c = self._client
        if hasattr(c, "table"):
            return c.table(name)
        if hasattr(c, "from_"):
            return c.from_(name)
        raise RuntimeError("invalid_supabase_client")

    # --- Operations --------------------------------------------------------------

    def probe(self) -> None:
        """Cheap read proving the REST endpoint and key work."""
        self._table("users").select("id").limit(1).execute()

    def insert(self, table: str, row: dict) -> None:
        self._table(table).insert(row).execute()

    def upsert(self, table: str, row: dict, *, on_conflict: str = "id") -> None:
        self._table(table).upsert(row, on_conflict=on_conflict).execute()

    def delete_all(self, table: str) -> None:
        # PostgREST refuses unfiltered deletes; every real id differs from the nil UUID.
        self._table(table).delete().neq("id", EMPTY_UUID).execute()

    def count(self, table: str) -> int:
        res = self._table(table).select("id", count="exact").limit(1).execute()
        return int(getattr(res, "count", None) or 0)

    def remember_user(self, email: str, user_id: str) -> None:
        self._user_ids[email.strip().lower()] = user_id

    def find_user_id_by_email(self, email: str) -> str | None:
        """Resolve a migrated user's destination id via the profile table."""
        key = (email or "").strip().lower()
        if not key:
            return None
        if key in self._user_ids:
            return self._user_ids[key]
        res = self._table("users").select("id").eq("email", key).limit(1).execute()
        data = getattr(res, "data", None) or []
        if not data:
            return None
        user_id = str(data[0]["id"])
        self._user_ids[key] = user_id
        return user_id


__all__ = ["EMPTY_UUID", "SupabaseDestination"]
