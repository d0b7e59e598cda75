"""
Seeding helpers shared by the API and service tests.

Users are created straight through the repository; `session_for` opens a
server-side session in `main.SESSION_STORE` the way the login route does.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from httpx import ASGITransport

STRONG_PASSWORD = "Sup3r#Secret"


def make_user(
    repo,
    email: str,
    *,
    first: str = "Ada",
    last: str = "Lovelace",
    role: str = "head_ta",
    password: Optional[str] = None,
    **fields,
):
    """Registered user; pass `password` only when a test logs in with it (hashing is slow)."""
    if password is not None:
        from identity_access.passwords import hash_password  # type: ignore

        password_hash = hash_password(password)
    else:
        password_hash = "not-a-real-hash"
    return repo.create_user(
        email=email, password_hash=password_hash, first_name=first, last_name=last, role=role, **fields
    )


def make_admin(repo, email: str = "admin@wustl.edu", **fields):
    fields.setdefault("first", "Grace")
    fields.setdefault("last", "Hopper")
    return make_user(repo, email, role="admin", **fields)


def make_unclaimed(repo, first: str, last: str, **fields):
    from onboarding.claims import ClaimsService  # type: ignore

    return ClaimsService(repo=repo).create_unclaimed_profile(first_name=first, last_name=last, recorded_by=None, **fields)


def make_offering(repo, *, number: str = "131", name: str = "Intro to CS", year: int = 2024, season: str = "fall"):
    """Course, professor and one offering; reuses the course when the number exists."""
    course = repo.get_course_by_number(number) or repo.create_course(course_number=number, course_name=name)
    prof = repo.get_professor_by_email("prof@wustl.edu") or repo.create_professor(
        first_name="Alan", last_name="Turing", email="prof@wustl.edu"
    )
    return repo.create_offering(
        course_id=course.id,
        professor_id=prof.id,
        year=year,
        season=season,
        semester=f"{season.capitalize()} {year}",
    )


def session_for(user) -> str:
    import main  # type: ignore

    rec = main.SESSION_STORE.create(sub=user.id, name=user.full_name, roles=[user.role], ttl_seconds=3600)
    return rec.session_id


def client(session_id: Optional[str] = None) -> httpx.AsyncClient:
    import main  # type: ignore

    c = httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")
    if session_id:
        c.cookies.set(main.SESSION_COOKIE_NAME, session_id)
    return c


def utc(year: int, month: int = 1, day: int = 1) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def days_ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)
