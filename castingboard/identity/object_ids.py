"""
Identity translation between MongoDB object ids and Supabase UUIDs.

Why:
    Migrated rows must keep stable ids so that references between collections
    (e.g. a like pointing at a community post) survive the move without a
    lookup table. Any migrator can translate ids independently.

Behavior:
    - ``object_id_to_uuid`` lays the 24 source hex digits out in UUID groups.
      The first 8 digits are kept verbatim; the version (``4``) and variant
      (``8``) markers displace two nibbles which are carried into the last
      group. Every source digit survives, so the mapping is injective.
    - ``to_iso_timestamp`` normalizes Mongo/JS timestamps to the single text
      format stored in Postgres (UTC, millisecond precision, ``Z`` suffix).

Permissions:
    Pure functions; no I/O.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable

_OBJECT_ID_RE = re.compile(r"^[0-9a-f]{24}$")


def is_object_id(value: Any) -> bool:
    """Return True when ``value`` renders as a 24-character hex object id."""
    if value is None:
        return False
    return bool(_OBJECT_ID_RE.match(str(value).strip().lower()))


def object_id_to_uuid(object_id: Any) -> str | None:
    """Translate a Mongo object id (str or ``bson.ObjectId``) into a UUID string.

    Nullish input yields ``None``. Malformed ids raise ``ValueError`` so the
    calling migrator can count the document as a failed row.
    """
    if object_id is None:
        return None
    h = str(object_id).strip().lower()
    if not h:
        return None
    if not _OBJECT_ID_RE.match(h):
        raise ValueError(f"invalid_object_id: {object_id!r}")
    return f"{h[0:8]}-{h[8:12]}-4{h[13:16]}-8{h[17:20]}-{h[20:24]}{h[12]}{h[16]}000000"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso_timestamp(
    value: Any,
    *,
    default_now: bool = True,
    now: Callable[[], datetime] | None = None,
) -> str | None:
    """Normalize a timestamp to ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    Accepts ``datetime`` (naive values are UTC, as pymongo returns them), ISO
    strings and epoch milliseconds. Missing values become "now" when
    ``default_now`` is set, otherwise ``None``.
    """
    if value is None or value == "":
        if not default_now:
            return None
        value = (now or _utc_now)()
    if isinstance(value, bool):
        raise ValueError(f"invalid_timestamp: {value!r}")
    if isinstance(value, (int, float)):
        value = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValueError(f"invalid_timestamp: {value!r}") from exc
    if not isinstance(value, datetime):
        raise ValueError(f"invalid_timestamp: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


__all__ = ["is_object_id", "object_id_to_uuid", "to_iso_timestamp"]
