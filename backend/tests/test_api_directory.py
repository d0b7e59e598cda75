"""
Directory and search API.

Scenarios
- The directory is public and applies each owner's privacy settings.
- Profile edits show up immediately (the cached page is invalidated).
- Search needs a session; only admins see email addresses.
"""
from __future__ import annotations

import pytest

from records.models import PrivacySettings  # type: ignore

from utils.seed import client, make_admin, make_offering, make_unclaimed, make_user, session_for


pytestmark = pytest.mark.anyio("asyncio")


async def test_directory_is_public_and_respects_privacy(repo):
    make_admin(repo)
    ada = make_user(repo, "ada@wustl.edu", location="Chicago", grad_year=2020)
    bob = make_user(repo, "bob@wustl.edu", first="Bob", last="Baker", location="Seattle", grad_year=2018)
    hidden = make_user(repo, "hid@wustl.edu", first="Hal", last="Hidden")
    profile = make_unclaimed(repo, "Ida", "Rhodes")
    repo.save_privacy_settings(PrivacySettings(user_id=ada.id, show_email=True, show_location=False))
    repo.save_privacy_settings(PrivacySettings(user_id=hidden.id, appear_in_directory=False))
    repo.create_assignment(user_id=bob.id, course_offering_id=make_offering(repo).id)

    async with client() as c:
        listing = await c.get("/api/directory")
        by_location = await c.get("/api/directory", params={"location": "Chicago"})
        by_query = await c.get("/api/directory", params={"q": "bak"})
        stats = await c.get("/api/directory/stats")
        detail = await c.get(f"/api/directory/{bob.id}")
        invisible = await c.get(f"/api/directory/{hidden.id}")

    assert listing.status_code == 200
    items = {p["id"]: p for p in listing.json()["items"]}
    assert set(items) == {ada.id, bob.id, profile.id}
    assert listing.json()["count"] == 3
    assert items[ada.id]["email"] == "ada@wustl.edu"
    assert items[ada.id]["location"] is None
    assert items[bob.id]["email"] is None
    assert items[profile.id]["is_unclaimed"] is True
    assert by_location.json()["items"] == []
    assert [p["id"] for p in by_query.json()["items"]] == [bob.id]
    assert stats.json() == {"locations": ["Seattle"], "grad_years": [2020, 2018]}
    assert detail.json()["courses"][0]["course_number"] == "131"
    assert invisible.status_code == 404


async def test_profile_edit_invalidates_cached_directory(repo):
    ada = make_user(repo, "ada@wustl.edu", location="Chicago")
    async with client() as c:
        before = await c.get("/api/directory", params={"q": "denver"})
    async with client(session_for(ada)) as c:
        await c.patch(f"/api/users/{ada.id}", json={"location": "Denver"})
    async with client() as c:
        after = await c.get("/api/directory", params={"q": "denver"})
    assert before.json()["items"] == []
    assert [p["id"] for p in after.json()["items"]] == [ada.id]


async def test_search_requires_session_and_hides_email_from_head_tas(repo):
    admin = make_admin(repo)
    ada = make_user(repo, "ada@wustl.edu")
    make_offering(repo, number="131", name="Intro to CS")

    async with client() as c:
        anonymous = await c.get("/api/search", params={"q": "ada"})
    async with client(session_for(ada)) as c:
        as_ta = await c.get("/api/search", params={"q": "ada", "kind": "user"})
        by_email = await c.get("/api/search", params={"q": "ada@wustl.edu"})
        courses = await c.get("/api/search", params={"q": "131"})
        bad_kind = await c.get("/api/search", params={"q": "x", "kind": "planet"})
        suggestions = await c.get("/api/search/suggestions", params={"q": "lo"})
        too_short = await c.get("/api/search/suggestions", params={"q": "l"})
    async with client(session_for(admin)) as c:
        as_admin = await c.get("/api/search", params={"q": "ada@wustl.edu", "kind": "user"})

    assert anonymous.status_code == 401
    [hit] = as_ta.json()["results"]
    assert hit["title"] == "Ada Lovelace"
    assert "email" not in hit["metadata"]
    assert by_email.json()["results"] == []
    [course] = courses.json()["results"]
    assert course["kind"] == "course"
    assert course["title"] == "131 - Intro to CS"
    assert (bad_kind.status_code, bad_kind.json()["detail"]) == (400, "invalid_kind")
    assert suggestions.json() == ["Ada Lovelace"]
    assert too_short.json() == []
    [admin_hit] = as_admin.json()["results"]
    assert admin_hit["id"] == ada.id
    assert admin_hit["metadata"]["email"] == "ada@wustl.edu"
    assert admin_hit["score"] == 100 + 50 + 15
