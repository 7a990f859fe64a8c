"""Per-collection migrators (MongoDB document → Supabase row).

Why:
    Each legacy collection needs its own row shape, defaults and foreign-key
    handling, while the loop around it (counting, per-row failure policy,
    checkpoints, audit entries) is shared. ``CollectionMigrator.run`` owns the
    loop; subclasses only describe how one document becomes one row.

Behavior:
    - Documents are processed one at a time in ascending ``_id`` order.
    - A failing document is logged with its label, counted in ``errors`` and
      skipped; the loop never aborts because of a single row.
    - Insert mode is append-only (reruns duplicate rows unless the table has a
      unique key); upsert mode writes keyed by the translated ``id``.
    - Dry runs build and validate rows but write nothing.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import click
from bson import ObjectId

from castingboard.identity.object_ids import object_id_to_uuid, to_iso_timestamp
from castingboard.identity.supabase_admin import IdentityExistsError, mask_email
from castingboard.storage.config import BATCH_SIZE_DEFAULT
from castingboard.tools.migration_report import EntityStats, MigrationStats


logger = logging.getLogger("castingboard.tools.migrators")

DEFAULT_SUBSCRIPTION = {"plan": "free", "status": "inactive", "paymentHistory": []}
DEFAULT_USAGE = {"currentMonth": 0, "totalGenerated": 0, "lastResetDate": None}
DEFAULT_AUTHOR = {"name": "Unknown", "username": "unknown"}
DEFAULT_GENDER = "전체"
ACTIVE_POST_STATUS = "활성"
HOT_SCORE_THRESHOLD = 100

LIKE_TARGET_COLUMNS = {
    "actor_profile": "actor_profile_id",
    "actor_recruitment": "actor_recruitment_id",
    "model_recruitment": "model_recruitment_id",
    "community_post": "community_post_id",
}


class RowError(ValueError):
    """A single document cannot be turned into a destination row."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass
class MigrationOptions:
    upsert: bool = False
    dry_run: bool = False
    batch_size: int = BATCH_SIZE_DEFAULT
    temp_password: str | None = None


def generate_temp_password() -> str:
    return secrets.token_urlsafe(18)


def hot_score(likes: Any, comments: Any, views: Any) -> float:
    return (int(likes or 0) * 3) + (int(comments or 0) * 2) + (int(views or 0) * 0.1)


def json_safe(value: Any) -> Any:
    """Convert BSON/Python values nested in a row into JSON-serializable ones."""
    if isinstance(value, datetime):
        return to_iso_timestamp(value)
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value


def _require(doc: dict, *fields: str) -> None:
    missing = []
    for name in fields:
        value = doc.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    if missing:
        raise RowError("missing_field:" + ",".join(missing))


def _timestamps(doc: dict) -> dict:
    return {
        "created_at": to_iso_timestamp(doc.get("createdAt")),
        "updated_at": to_iso_timestamp(doc.get("updatedAt")),
    }


class CollectionMigrator:
    """Base class: one instance migrates one collection into one table."""

    entity = ""
    collection = ""
    table = ""
    required: tuple[str, ...] = ()
    resumable = True

    def __init__(
        self,
        source: Any,
        destination: Any,
        stats: MigrationStats,
        *,
        options: MigrationOptions | None = None,
        checkpoint: Any = None,
        audit: Any = None,
        auth: Any = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.stats = stats
        self.options = options or MigrationOptions()
        self.checkpoint = checkpoint
        self.audit = audit
        self.auth = auth

    # --- Hooks ---------------------------------------------------------------

    def label(self, doc: dict) -> str:
        return str(doc.get("title") or doc.get("_id"))

    def prepare(self) -> None:
        """Run once before the first document (no-op by default)."""

    def build_row(self, doc: dict) -> dict:
        raise NotImplementedError

    def migrate_document(self, doc: dict) -> str | None:
        """Write one document and return the destination id."""
        _require(doc, *self.required)
        row = json_safe(self.build_row(doc))
        self._write(row)
        return row.get("id")

    # --- Shared helpers ------------------------------------------------------

    def _write(self, row: dict) -> None:
        if self.options.dry_run:
            return
        if self.options.upsert:
            self.destination.upsert(self.table, row, on_conflict="id")
        else:
            self.destination.insert(self.table, row)

    def _audit(self, legacy_id: str, target_id: str | None, status: str, reason: str | None = None) -> None:
        if self.audit is not None:
            self.audit.record(self.entity, legacy_id, self.table, target_id, status, reason)

    def _resolve_user_id(self, user_ref: Any) -> str:
        """Map a legacy user object id to the destination user id via email."""
        email = self.source.find_user_email(user_ref)
        if not email:
            raise RowError("user_not_found")
        user_id = self.destination.find_user_id_by_email(email)
        if user_id:
            return user_id
        if self.options.dry_run:
            return f"dry-run:{email}"
        raise RowError("user_not_found")

    def _tracks_cursor(self) -> bool:
        return self.checkpoint is not None and self.resumable and not self.options.dry_run

    def _cursor(self) -> str | None:
        if not self._tracks_cursor():
            return None
        return self.checkpoint.cursor(self.entity)

    # --- Loop ----------------------------------------------------------------

    def _process(self, doc: dict, stats: EntityStats) -> bool:
        legacy_id = str(doc.get("_id"))
        try:
            target_id = self.migrate_document(doc)
        except Exception as exc:
            reason = exc.reason if isinstance(exc, RowError) else f"{exc.__class__.__name__}: {exc}"
            stats.errors += 1
            logger.error("%s migration failed for %s: %s", self.entity, self.label(doc), reason)
            self._audit(legacy_id, None, "error", reason[:512])
            return False
        stats.migrated += 1
        if self.options.dry_run:
            self._audit(legacy_id, None, "skip", "dry-run")
        else:
            self._audit(legacy_id, target_id, "ok")
        return True

    def run(self) -> EntityStats:
        stats = self.stats[self.entity]
        after_id = self._cursor()
        total = self.source.count(self.collection, after_id=after_id)
        stats.total += total
        if after_id:
            click.echo(f"Resuming {self.entity} after {after_id}")
        click.echo(f"Phase {self.entity}: {total} items")
        self.prepare()
        batch_size = max(1, self.options.batch_size)
        processed = 0
        # The cursor stops at the first failed row so a rerun retries it.
        advancing = self._tracks_cursor()
        try:
            for doc in self.source.iter_documents(self.collection, after_id=after_id):
                ok = self._process(doc, stats)
                processed += 1
                if advancing and ok:
                    self.checkpoint.advance(self.entity, doc["_id"])
                elif advancing:
                    advancing = False
                    logger.info("%s checkpoint held before %s", self.entity, doc.get("_id"))
                if processed % batch_size == 0:
                    click.echo(f"  … {self.entity} progress {processed}/{total}")
                    if self._tracks_cursor():
                        self.checkpoint.save()
        finally:
            if self._tracks_cursor():
                self.checkpoint.save()
        click.echo(f"{self.entity}: {stats.migrated}/{stats.total} migrated ({stats.errors} errors)")
        return stats


class UserMigrator(CollectionMigrator):
    """Users need an auth identity first; the profile row is keyed by its id."""

    entity = "users"
    collection = "users"
    table = "users"
    required = ("email",)

    def label(self, doc: dict) -> str:
        return mask_email(str(doc.get("email") or ""))

    def build_row(self, doc: dict) -> dict:
        return {
            "username": doc.get("username"),
            "email": str(doc["email"]).strip().lower(),
            "name": doc.get("name"),
            "role": doc.get("role") or "user",
            "is_active": doc.get("isActive") is not False,
            "login_attempts": doc.get("loginAttempts") or 0,
            "lock_until": to_iso_timestamp(doc.get("lockUntil"), default_now=False),
            "last_login": to_iso_timestamp(doc.get("lastLogin"), default_now=False),
            "is_email_verified": bool(doc.get("isEmailVerified")),
            "subscription": doc.get("subscription") or dict(DEFAULT_SUBSCRIPTION),
            "usage": doc.get("usage") or dict(DEFAULT_USAGE),
            **_timestamps(doc),
        }

    def _ensure_identity(self, doc: dict, email: str) -> tuple[str, bool]:
        """Return ``(identity_id, created_in_this_run)``."""
        password = self.options.temp_password or generate_temp_password()
        try:
            user_id = self.auth.create_user(
                email,
                password,
                email_confirm=bool(doc.get("isEmailVerified")),
                user_metadata={
                    "name": doc.get("name"),
                    "username": doc.get("username"),
                    "role": doc.get("role") or "user",
                },
            )
            return user_id, True
        except IdentityExistsError:
            existing = self.auth.find_user_id(email)
            if not existing:
                raise RowError("identity_conflict_unresolved")
            logger.warning("Adopting existing auth identity %s for %s", existing, mask_email(email))
            return existing, False

    def _record_orphan(self, legacy_id: str, email: str, user_id: str) -> None:
        self.stats.orphaned_identities.append({"email": email, "identity_id": user_id, "legacy_id": legacy_id})
        self._audit(legacy_id, user_id, "conflict", "orphaned_identity")

    def _compensate(self, legacy_id: str, email: str, user_id: str) -> None:
        try:
            self.auth.delete_user(user_id)
        except Exception as exc:
            logger.error("Orphaned auth identity %s for %s: %s", user_id, mask_email(email), exc)
            self._record_orphan(legacy_id, email, user_id)
            return
        logger.warning("Rolled back auth identity %s for %s after profile failure", user_id, mask_email(email))

    def migrate_document(self, doc: dict) -> str | None:
        _require(doc, *self.required)
        legacy_id = str(doc.get("_id"))
        profile = json_safe(self.build_row(doc))
        email = profile["email"]

        existing = self.destination.find_user_id_by_email(email)
        if existing:
            if self.options.upsert and not self.options.dry_run:
                self.destination.upsert(self.table, {"id": existing, **profile}, on_conflict="id")
            logger.info("User already migrated: %s", mask_email(email))
            return existing
        if self.options.dry_run:
            return None

        user_id, created = self._ensure_identity(doc, email)
        try:
            self._write({"id": user_id, **profile})
        except Exception:
            if created:
                self._compensate(legacy_id, email, user_id)
            else:
                self._record_orphan(legacy_id, email, user_id)
            raise
        self.destination.remember_user(email, user_id)
        click.echo(f"User migrated: {mask_email(email)}")
        return user_id


class EmotionMigrator(CollectionMigrator):
    """Full replace: existing rows are deleted before inserting."""

    entity = "emotions"
    collection = "emotions"
    table = "emotions"
    required = ("name",)
    resumable = False

    def label(self, doc: dict) -> str:
        return str(doc.get("name") or doc.get("_id"))

    def prepare(self) -> None:
        if self.options.dry_run:
            return
        self.destination.delete_all(self.table)
        click.echo("Cleared existing emotions")

    def build_row(self, doc: dict) -> dict:
        return {
            "id": object_id_to_uuid(doc.get("_id")),
            "name": doc["name"],
            **_timestamps(doc),
        }


class ScriptMigrator(CollectionMigrator):
    entity = "scripts"
    collection = "scripts"
    table = "scripts"
    required = ("title", "content")

    def build_row(self, doc: dict) -> dict:
        return {
            "id": object_id_to_uuid(doc.get("_id")),
            "title": doc["title"],
            "character_count": doc.get("characterCount"),
            "situation": doc.get("situation"),
            "content": doc["content"],
            "emotions": list(doc.get("emotions") or []),
            "views": doc.get("views") or 0,
            "gender": doc.get("gender") or DEFAULT_GENDER,
            "mood": doc.get("mood"),
            "duration": doc.get("duration"),
            "age_group": doc.get("ageGroup"),
            "purpose": doc.get("purpose"),
            "script_type": doc.get("scriptType"),
            "author": doc.get("author") or dict(DEFAULT_AUTHOR),
            **_timestamps(doc),
        }


class AIScriptMigrator(CollectionMigrator):
    entity = "ai_scripts"
    collection = "aiscripts"
    table = "ai_scripts"
    required = ("title", "content", "userId")

    def build_row(self, doc: dict) -> dict:
        return {
            "id": object_id_to_uuid(doc.get("_id")),
            "title": doc["title"],
            "content": doc["content"],
            "character_count": doc.get("characterCount"),
            "genre": doc.get("genre"),
            "emotions": list(doc.get("emotions") or []),
            "length": doc.get("length"),
            "gender": doc.get("gender"),
            "age": doc.get("age"),
            "situation": doc.get("situation"),
            "style": doc.get("style"),
            "user_id": self._resolve_user_id(doc["userId"]),
            "metadata": doc.get("metadata") or {},
            "is_saved": bool(doc.get("isSaved")),
            "saved_at": to_iso_timestamp(doc.get("savedAt"), default_now=False),
            **_timestamps(doc),
        }


class CommunityPostMigrator(CollectionMigrator):
    entity = "community_posts"
    collection = "communityposts"
    table = "community_posts"
    required = ("title", "content", "userId")

    def build_row(self, doc: dict) -> dict:
        images = [
            {
                "url": img["url"],
                "filename": img.get("filename"),
                "originalname": img.get("originalname") or img.get("filename"),
                "size": img.get("size"),
            }
            for img in (doc.get("images") or [])
            if isinstance(img, dict) and img.get("url")
        ]
        return {
            "id": object_id_to_uuid(doc.get("_id")),
            "user_id": self._resolve_user_id(doc["userId"]),
            "title": doc["title"],
            "content": doc["content"],
            "category": doc.get("category"),
            # Mongo posts have no board; "general" is the Supabase posts route default.
            "board": doc.get("board") or "general",
            "tags": list(doc.get("tags") or []),
            "images": images,
            "is_active": (doc.get("status") or ACTIVE_POST_STATUS) == ACTIVE_POST_STATUS,
            "is_pinned": bool(doc.get("isPinned")),
            "is_hot": hot_score(doc.get("likeCount"), doc.get("commentCount"), doc.get("views")) > HOT_SCORE_THRESHOLD,
            "views": doc.get("views") or 0,
            "likes_count": doc.get("likeCount") or 0,
            "comments_count": doc.get("commentCount") or 0,
            **_timestamps(doc),
        }


class LikeMigrator(CollectionMigrator):
    entity = "likes"
    collection = "likes"
    table = "likes"
    required = ("userId", "postId", "postType")

    def label(self, doc: dict) -> str:
        return f"{doc.get('postType')}:{doc.get('postId')}"

    def build_row(self, doc: dict) -> dict:
        column = LIKE_TARGET_COLUMNS.get(str(doc["postType"]))
        if column is None:
            raise RowError(f"unsupported_post_type:{doc['postType']}")
        return {
            "id": object_id_to_uuid(doc.get("_id")),
            "user_id": self._resolve_user_id(doc["userId"]),
            column: object_id_to_uuid(doc["postId"]),
            "created_at": to_iso_timestamp(doc.get("createdAt")),
        }


MIGRATORS: dict[str, type[CollectionMigrator]] = {
    cls.entity: cls
    for cls in (
        UserMigrator,
        EmotionMigrator,
        ScriptMigrator,
        AIScriptMigrator,
        CommunityPostMigrator,
        LikeMigrator,
    )
}


__all__ = [
    "AIScriptMigrator",
    "CollectionMigrator",
    "CommunityPostMigrator",
    "EmotionMigrator",
    "LikeMigrator",
    "MIGRATORS",
    "MigrationOptions",
    "RowError",
    "ScriptMigrator",
    "UserMigrator",
    "generate_temp_password",
    "hot_score",
    "json_safe",
]
