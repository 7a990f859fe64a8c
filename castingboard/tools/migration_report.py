"""Counters and the JSON/console report of a migration run."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from castingboard.identity.object_ids import to_iso_timestamp


# Dependency order: anything holding a user foreign key runs after "users",
# likes run last because they may point at migrated community posts.
ENTITY_ORDER = ("users", "emotions", "scripts", "ai_scripts", "community_posts", "likes")


@dataclass
class EntityStats:
    total: int = 0
    migrated: int = 0
    errors: int = 0

    @property
    def success_rate(self) -> float:
        return (self.migrated / self.total) * 100 if self.total else 0.0

    def as_dict(self) -> dict[str, int]:
        return {"total": self.total, "migrated": self.migrated, "errors": self.errors}


@dataclass
class MigrationStats:
    entities: dict[str, EntityStats] = field(default_factory=dict)
    orphaned_identities: list[dict[str, str]] = field(default_factory=list)
    interrupted: bool = False
    dry_run: bool = False

    @classmethod
    def for_entities(cls, names: Iterable[str], *, dry_run: bool = False) -> "MigrationStats":
        return cls(entities={name: EntityStats() for name in names}, dry_run=dry_run)

    def __getitem__(self, entity: str) -> EntityStats:
        return self.entities.setdefault(entity, EntityStats())

    @property
    def total_records(self) -> int:
        return sum(s.total for s in self.entities.values())

    @property
    def total_migrated(self) -> int:
        return sum(s.migrated for s in self.entities.values())

    @property
    def total_errors(self) -> int:
        return sum(s.errors for s in self.entities.values())


def build_report(stats: MigrationStats, *, now: datetime | None = None) -> dict:
    return {
        "timestamp": to_iso_timestamp(now or datetime.now(timezone.utc)),
        "migration_stats": {name: s.as_dict() for name, s in stats.entities.items()},
        "total_records": stats.total_records,
        "total_migrated": stats.total_migrated,
        "total_errors": stats.total_errors,
        "interrupted": stats.interrupted,
        "dry_run": stats.dry_run,
        "orphaned_identities": list(stats.orphaned_identities),
    }


def write_report(stats: MigrationStats, report_dir: Path, *, now: datetime | None = None) -> Path:
    """Write ``migration-report-<epoch-ms>.json`` and return its path."""
    moment = now or datetime.now(timezone.utc)
    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / f"migration-report-{int(moment.timestamp() * 1000)}.json"
    payload = build_report(stats, now=moment)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def format_table(stats: MigrationStats) -> list[str]:
    lines = ["Migration Report:", "=================="]
    for name, s in stats.entities.items():
        lines.append(f"{name}: {s.migrated}/{s.total} ({s.success_rate:.1f}%) - {s.errors} errors")
    lines.append("")
    lines.append(f"Total: {stats.total_migrated}/{stats.total_records} records migrated ({stats.total_errors} errors)")
    if stats.orphaned_identities:
        lines.append(f"Orphaned auth identities: {len(stats.orphaned_identities)} (see report)")
    return lines


__all__ = [
    "ENTITY_ORDER",
    "EntityStats",
    "MigrationStats",
    "build_report",
    "format_table",
    "write_report",
]
