from __future__ import annotations

from castingboard.tests.utils.fake_audit_db import FakeAuditConnection
from castingboard.tests.utils.fake_stores import FakeAuth, FakeDestination, FakeSource, oid
from castingboard.tools.migration_audit import MigrationAudit
from castingboard.tools.migration_report import MigrationStats
from castingboard.tools.migrators import MigrationOptions, UserMigrator


def _user(n: int, email: str, **extra) -> dict:
    doc = {
        "_id": oid(n),
        "email": email,
        "username": email.split("@")[0],
        "name": email.split("@")[0].upper(),
        "role": "actor",
        "isEmailVerified": True,
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-02T00:00:00Z",
    }
    doc.update(extra)
    return doc


def _run(source, destination, auth, **kwargs):
    stats = MigrationStats.for_entities(["users"])
    options = MigrationOptions(**kwargs.pop("options", {}))
    UserMigrator(source, destination, stats, options=options, auth=auth, **kwargs).run()
    return stats


def test_user_gets_identity_then_profile_keyed_by_identity_id() -> None:
    source = FakeSource({"users": [_user(1, "A@x.com")]})
    dest, auth = FakeDestination(), FakeAuth()

    stats = _run(source, dest, auth, options={"temp_password": "Temp-1234"})

    assert stats["users"].as_dict() == {"total": 1, "migrated": 1, "errors": 0}
    created = auth.created[0]
    assert created["email"] == "a@x.com"
    assert created["password"] == "Temp-1234"
    assert created["email_confirm"] is True
    assert created["user_metadata"] == {"name": "A", "username": "A", "role": "actor"}
    row = dest.rows("users")[0]
    assert row["id"] == created["id"]
    assert row["email"] == "a@x.com"
    assert row["created_at"] == "2024-01-01T00:00:00.000Z"


def test_profile_defaults_are_filled() -> None:
    doc = {"_id": oid(1), "email": "min@x.com"}
    dest = FakeDestination()
    _run(FakeSource({"users": [doc]}), dest, FakeAuth())

    row = dest.rows("users")[0]
    assert row["role"] == "user"
    assert row["is_active"] is True
    assert row["login_attempts"] == 0
    assert row["lock_until"] is None
    assert row["subscription"] == {"plan": "free", "status": "inactive", "paymentHistory": []}
    assert row["usage"] == {"currentMonth": 0, "totalGenerated": 0, "lastResetDate": None}


def test_random_temp_password_per_user_when_not_configured() -> None:
    auth = FakeAuth()
    _run(FakeSource({"users": [_user(1, "a@x.com"), _user(2, "b@x.com")]}), FakeDestination(), auth)
    passwords = [c["password"] for c in auth.created]
    assert len(set(passwords)) == 2
    assert all(len(p) >= 16 for p in passwords)


def test_missing_email_counts_as_error() -> None:
    auth = FakeAuth()
    stats = _run(FakeSource({"users": [{"_id": oid(1), "name": "x"}, _user(2, "b@x.com")]}), FakeDestination(), auth)
    assert stats["users"].as_dict() == {"total": 2, "migrated": 1, "errors": 1}
    assert len(auth.created) == 1


def test_identity_creation_failure_skips_profile() -> None:
    auth = FakeAuth()
    auth.fail_create_for.add("a@x.com")
    dest = FakeDestination()

    stats = _run(FakeSource({"users": [_user(1, "a@x.com")]}), dest, auth)

    assert stats["users"].errors == 1
    assert dest.rows("users") == []


def test_profile_failure_rolls_back_created_identity() -> None:
    auth = FakeAuth()
    dest = FakeDestination()
    dest.fail_when["users"] = lambda row: True

    stats = _run(FakeSource({"users": [_user(1, "a@x.com")]}), dest, auth)

    assert stats["users"].errors == 1
    assert auth.deleted == [auth.created[0]["id"]]
    assert auth.users == {}
    assert stats.orphaned_identities == []


def test_failed_rollback_is_reported_as_orphan() -> None:
    auth = FakeAuth()
    auth.fail_delete = True
    dest = FakeDestination()
    dest.fail_when["users"] = lambda row: True
    conn = FakeAuditConnection()
    audit = MigrationAudit(conn)
    audit.start_run("src", dry_run=False)

    stats = _run(FakeSource({"users": [_user(1, "a@x.com")]}), dest, auth, audit=audit)
    audit.flush()

    identity_id = auth.created[0]["id"]
    assert stats.orphaned_identities == [{"email": "a@x.com", "identity_id": identity_id, "legacy_id": oid(1)}]
    statuses = [(m[5], m[6]) for m in conn.mappings]
    assert ("conflict", "orphaned_identity") in statuses
    assert statuses[-1][0] == "error"


def test_existing_identity_from_earlier_run_is_adopted() -> None:
    auth = FakeAuth()
    auth.users["earlier-id"] = "a@x.com"
    dest = FakeDestination()

    stats = _run(FakeSource({"users": [_user(1, "a@x.com")]}), dest, auth)

    assert stats["users"].migrated == 1
    assert auth.created == []
    assert dest.rows("users")[0]["id"] == "earlier-id"


def test_rerun_does_not_create_second_identity() -> None:
    source = FakeSource({"users": [_user(1, "a@x.com")]})
    dest, auth = FakeDestination(), FakeAuth()

    _run(source, dest, auth)
    stats = _run(source, dest, auth)

    assert stats["users"].as_dict() == {"total": 1, "migrated": 1, "errors": 0}
    assert len(auth.created) == 1
    assert len(dest.rows("users")) == 1


def test_upsert_refreshes_existing_profile() -> None:
    dest, auth = FakeDestination(), FakeAuth()
    _run(FakeSource({"users": [_user(1, "a@x.com", name="Old")]}), dest, auth)

    _run(FakeSource({"users": [_user(1, "a@x.com", name="New")]}), dest, auth, options={"upsert": True})

    rows = dest.rows("users")
    assert len(rows) == 1
    assert rows[0]["name"] == "New"


def test_dry_run_writes_nothing() -> None:
    dest, auth = FakeDestination(), FakeAuth()
    stats = _run(FakeSource({"users": [_user(1, "a@x.com")]}), dest, auth, options={"dry_run": True})
    assert stats["users"].migrated == 1
    assert auth.created == []
    assert dest.writes == []
