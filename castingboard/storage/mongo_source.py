"""
Read-only access to the legacy MongoDB collections.

Why:
    The migration streams every document of a collection exactly once and never
    writes back. Wrapping pymongo here keeps the migrators independent of the
    driver so tests can substitute an in-memory source with the same methods.

Behavior:
    - Documents are returned in ascending ``_id`` order so a checkpoint cursor
      (last processed id) can resume a pass with ``_id > cursor``.
    - ``find_user_email`` resolves a user object id to its email, cached per
      run; foreign keys are re-linked through the email in the destination.
"""
from __future__ import annotations

import logging
from typing import Any, Iterator

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient

from castingboard.storage.config import MONGO_SERVER_SELECTION_TIMEOUT_MS


logger = logging.getLogger("castingboard.storage.mongo")

MONGOOSE_DEFAULT_DB = "test"


def _as_object_id(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return value


class MongoSource:
    """Thin read-only facade over a pymongo database."""

    def __init__(self, client: Any, db_name: str | None = None) -> None:
        self._client = client
        if db_name:
            self._db = client[db_name]
        else:
            self._db = client.get_default_database(default=MONGOOSE_DEFAULT_DB)
        self._email_cache: dict[str, str | None] = {}

    @classmethod
    def from_uri(
        cls,
        uri: str,
        db_name: str | None = None,
        *,
        timeout_ms: int = MONGO_SERVER_SELECTION_TIMEOUT_MS,
    ) -> "MongoSource":
        client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        return cls(client, db_name)

    @property
    def database_name(self) -> str:
        return self._db.name

    def ping(self) -> None:
        """Raise when the server is unreachable (fatal at startup)."""
        self._client.admin.command("ping")

    @staticmethod
    def _filter(after_id: str | None) -> dict:
        if not after_id:
            return {}
        return {"_id": {"$gt": _as_object_id(after_id)}}

    def count(self, collection: str, after_id: str | None = None) -> int:
        return int(self._db[collection].count_documents(self._filter(after_id)))

    def iter_documents(self, collection: str, after_id: str | None = None) -> Iterator[dict]:
        cursor = self._db[collection].find(self._filter(after_id)).sort("_id", ASCENDING)
        try:
            for doc in cursor:
                yield doc
        finally:
            cursor.close()

    def find_user_email(self, user_id: Any) -> str | None:
        if user_id is None:
            return None
        key = str(user_id)
        if key not in self._email_cache:
            doc = self._db["users"].find_one({"_id": _as_object_id(user_id)}, {"email": 1})
            self._email_cache[key] = (doc or {}).get("email")
        return self._email_cache[key]

    def close(self) -> None:
        self._client.close()
        logger.info("MongoDB connection closed")


__all__ = ["MongoSource"]
