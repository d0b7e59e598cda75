"""
Optional DB test for the Postgres records repository (skips when no test
database is reachable via `TEST_DATABASE_URL`).

The schema is applied idempotently; every row uses fresh unique emails and
course numbers so reruns against the same database do not collide.
"""
from __future__ import annotations

from datetime import timedelta
import uuid

import pytest

from records.models import PrivacySettings, utcnow  # type: ignore

from utils.db import require_db_or_skip


def test_missing_dsn_raises_runtime_error(monkeypatch: pytest.MonkeyPatch):
    from records import repo_db as mod

    monkeypatch.setattr(mod, "HAVE_PSYCOPG", True)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("WUHTA_DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        mod.DBRecordsRepo()


@pytest.fixture
def db_repo():
    dsn = require_db_or_skip()
    from records.repo_db import DBRecordsRepo  # type: ignore

    repo = DBRecordsRepo(dsn=dsn)
    repo.apply_schema()
    return repo


def _unique(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:8]}"


def test_users_unique_email_and_privacy(db_repo):
    email = _unique("ada") + "@wustl.edu"
    user = db_repo.create_user(email=email, password_hash="x", first_name="Ada", last_name="Lovelace")
    assert db_repo.get_user_by_email(email.upper()).id == user.id
    with pytest.raises(ValueError, match="email_taken"):
        db_repo.create_user(email=email, password_hash="x", first_name="A", last_name="L")

    updated = db_repo.update_user(user.id, location="Chicago")
    assert updated.location == "Chicago"
    with pytest.raises(ValueError):
        db_repo.update_user(user.id, password_reset_token="nope")

    db_repo.save_privacy_settings(PrivacySettings(user_id=user.id, show_email=True))
    assert db_repo.get_privacy_settings(user.id).show_email is True
    db_repo.delete_privacy_settings(user.id)
    assert db_repo.get_privacy_settings(user.id) is None
    assert db_repo.delete_user(user.id) is True


def test_invitation_single_use_and_expiry_cleanup(db_repo):
    inviter = db_repo.create_user(
        email=_unique("inv") + "@wustl.edu", password_hash="x", first_name="Grace", last_name="Hopper", role="admin"
    )
    now = utcnow()
    fresh = db_repo.create_invitation(
        email=_unique("new") + "@wustl.edu", invited_by=inviter.id, token=uuid.uuid4().hex * 2,
        expires_at=now + timedelta(days=7), role="head_ta",
    )
    stale = db_repo.create_invitation(
        email=_unique("old") + "@wustl.edu", invited_by=inviter.id, token=uuid.uuid4().hex * 2,
        expires_at=now - timedelta(days=1), role="head_ta",
    )
    with pytest.raises(ValueError, match="token_taken"):
        db_repo.create_invitation(
            email="dup@wustl.edu", invited_by=inviter.id, token=fresh.token,
            expires_at=now + timedelta(days=7), role="head_ta",
        )

    assert db_repo.mark_invitation_used(fresh.id, now) is True
    assert db_repo.mark_invitation_used(fresh.id, now) is False
    assert db_repo.get_invitation_by_token(fresh.token).used_at is not None
    assert db_repo.delete_expired_invitations(now) >= 1
    assert db_repo.get_invitation(stale.id) is None
    assert db_repo.get_invitation(fresh.id) is not None
    db_repo.delete_user(inviter.id)


def test_assignments_are_unique_per_offering(db_repo):
    user = db_repo.create_user(email=_unique("ta") + "@wustl.edu", password_hash="x", first_name="T", last_name="A")
    course = db_repo.create_course(course_number=_unique("9"), course_name="Scratch")
    prof = db_repo.create_professor(first_name="Alan", last_name="Turing", email=_unique("p") + "@wustl.edu")
    offering = db_repo.create_offering(
        course_id=course.id, professor_id=prof.id, year=2024, season="fall", semester="Fall 2024"
    )

    record = db_repo.create_assignment(user_id=user.id, course_offering_id=offering.id, hours_per_week=10)
    with pytest.raises(ValueError, match="assignment_taken"):
        db_repo.create_assignment(user_id=user.id, course_offering_id=offering.id)
    assert [a.id for a in db_repo.list_assignments(offering_id=offering.id)] == [record.id]

    assert db_repo.delete_offering(offering.id) is True
    assert db_repo.list_assignments(user_id=user.id) == []
    db_repo.delete_course(course.id)
    db_repo.delete_professor(prof.id)
    db_repo.delete_user(user.id)


def test_malformed_ids_never_reach_the_database(monkeypatch: pytest.MonkeyPatch):
    pytest.importorskip("psycopg")
    from records import repo_db as mod

    def _no_query(*args, **kwargs):
        raise AssertionError("malformed ids must not be sent to Postgres")

    repo = mod.DBRecordsRepo(dsn="postgresql://unused")
    for name in ("_fetch_one", "_fetch_all", "_execute"):
        monkeypatch.setattr(repo, name, _no_query)

    assert repo.get_user("abc") is None
    assert repo.get_offering("1; drop table users") is None
    assert repo.update_user("abc", location="Chicago") is None
    assert repo.delete_invitation("abc") is False
    assert repo.list_invitees("abc") == []
    assert repo.list_assignments(user_id="abc") == []
    assert repo.mark_invitation_used("abc", utcnow()) is False
    assert repo.reassign_assignments("abc", "def") == 0
    with pytest.raises(ValueError, match="invalid_field"):
        repo.update_user("abc", password_reset_token="nope")


def test_uuid_or_none_normalizes_ids():
    from records.repo_db import _uuid_or_none  # type: ignore

    raw = uuid.uuid4()
    assert _uuid_or_none(str(raw).upper()) == str(raw)
    assert _uuid_or_none(raw.hex) == str(raw)
    assert _uuid_or_none("nope") is None
    assert _uuid_or_none(None) is None


def test_malformed_ids_are_not_found_against_postgres(db_repo):
    assert db_repo.get_user("abc") is None
    assert db_repo.get_course("not-a-uuid") is None
    assert db_repo.update_user("abc", location="x") is None
    assert db_repo.delete_invitation("abc") is False
    assert db_repo.list_invitees("abc") == []
    assert db_repo.list_offerings(course_id="abc") == []


def test_password_reset_tokens_are_single_use(db_repo):
    email = _unique("reset") + "@wustl.edu"
    user = db_repo.create_user(email=email, password_hash="x", first_name="Ada", last_name="Lovelace")
    token = uuid.uuid4().hex * 2
    reset = db_repo.create_password_reset(user_id=user.id, token=token, expires_at=utcnow() + timedelta(hours=2))
    with pytest.raises(ValueError, match="token_taken"):
        db_repo.create_password_reset(user_id=user.id, token=token, expires_at=utcnow())

    assert db_repo.get_password_reset_by_token(token).id == reset.id
    assert db_repo.mark_password_reset_used(reset.id, utcnow()) is True
    assert db_repo.mark_password_reset_used(reset.id, utcnow()) is False
    assert db_repo.get_password_reset_by_token(token).used_at is not None
    assert db_repo.delete_user(user.id) is True
    assert db_repo.get_password_reset_by_token(token) is None
