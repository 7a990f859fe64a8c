"""
Per-entity resume cursors for the migration.

Why:
    A full pass over large collections should survive an interrupt without
    redoing completed work. The cursor is the last source ``_id`` of each
    entity before its first failed row; a rerun only reads documents with a
    greater ``_id``, so failed rows are retried.

Behavior:
    - Stored as a small JSON document ``{"cursors": {entity: id}, "updated_at": ...}``.
    - Writes go to a temp file first and are renamed into place so a crash
      mid-write never leaves a truncated checkpoint.
    - ``load`` raises ``ValueError`` for unreadable files; the CLI reports it and
      continues without resume.
"""
from __future__ import annotations

import json
import os
from pathlib import Path

from castingboard.identity.object_ids import to_iso_timestamp


class MigrationCheckpoint:
    def __init__(self, path: Path, cursors: dict[str, str] | None = None) -> None:
        self.path = Path(path)
        self._cursors: dict[str, str] = dict(cursors or {})
        self._dirty = False

    @classmethod
    def load(cls, path: Path) -> "MigrationCheckpoint":
        p = Path(path)
        if not p.exists():
            return cls(p)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValueError(f"unreadable checkpoint {p}: {exc}") from exc
        cursors = data.get("cursors") if isinstance(data, dict) else None
        if not isinstance(cursors, dict):
            raise ValueError(f"unreadable checkpoint {p}: missing cursors")
        return cls(p, {str(k): str(v) for k, v in cursors.items() if v})

    def cursor(self, entity: str) -> str | None:
        return self._cursors.get(entity)

    @property
    def cursors(self) -> dict[str, str]:
        return dict(self._cursors)

    def advance(self, entity: str, source_id: object) -> None:
        self._cursors[entity] = str(source_id)
        self._dirty = True

    def reset(self) -> None:
        self._cursors.clear()
        self._dirty = False
        if self.path.exists():
            self.path.unlink()

    def save(self) -> None:
        if not self._dirty:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        payload = {"cursors": self._cursors, "updated_at": to_iso_timestamp(None)}
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
        self._dirty = False


__all__ = ["MigrationCheckpoint"]
