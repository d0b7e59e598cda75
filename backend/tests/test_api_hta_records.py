"""
HTA records API: recording, ownership, availability, suggestions, workload
and the admin historical import.

Scenarios
- Head TAs record themselves; recording someone else -> 403 unless admin.
- Duplicate record for the same offering -> 409 assignment_taken.
- Hours outside 1..40 -> 400 invalid_hours.
- Historical import reports skipped items by index.
"""
from __future__ import annotations

import pytest

from utils.seed import client, make_admin, make_offering, make_user, session_for


pytestmark = pytest.mark.anyio("asyncio")


async def test_record_lifecycle_and_ownership(repo):
    ada = make_user(repo, "ada@wustl.edu")
    bob = make_user(repo, "bob@wustl.edu", first="Bob", last="Baker")
    offering = make_offering(repo)

    async with client(session_for(ada)) as c:
        created = await c.post(
            "/api/hta-records",
            json={"course_offering_id": offering.id, "hours_per_week": 12, "responsibilities": "Labs"},
        )
        dup = await c.post("/api/hta-records", json={"course_offering_id": offering.id})
        for_bob = await c.post("/api/hta-records", json={"course_offering_id": offering.id, "user_id": bob.id})
        too_many = await c.post("/api/hta-records", json={"course_offering_id": offering.id, "hours_per_week": 80})
        no_offering = await c.post("/api/hta-records", json={"course_offering_id": "nope"})
        record_id = created.json()["id"]
        patched = await c.patch(f"/api/hta-records/{record_id}", json={"hours_per_week": 15})
        listed = await c.get("/api/hta-records", params={"user_id": ada.id})
    async with client(session_for(bob)) as c:
        foreign_patch = await c.patch(f"/api/hta-records/{record_id}", json={"hours_per_week": 1})
        foreign_delete = await c.delete(f"/api/hta-records/{record_id}")
        detail = await c.get(f"/api/hta-records/{record_id}")
    async with client(session_for(ada)) as c:
        deleted = await c.delete(f"/api/hta-records/{record_id}")
        gone = await c.get(f"/api/hta-records/{record_id}")

    assert created.status_code == 201
    body = created.json()
    assert body["user_id"] == ada.id
    assert body["course_number"] == "131"
    assert body["semester"] == "Fall 2024"
    assert (dup.status_code, dup.json()["detail"]) == (409, "assignment_taken")
    assert for_bob.status_code == 403
    assert (too_many.status_code, too_many.json()["detail"]) == (400, "invalid_hours")
    assert (no_offering.status_code, no_offering.json()["detail"]) == (404, "offering_not_found")
    assert patched.json()["hours_per_week"] == 15
    assert patched.json()["responsibilities"] == "Labs"
    assert [r["id"] for r in listed.json()] == [record_id]
    assert foreign_patch.status_code == 403
    assert foreign_delete.status_code == 403
    assert detail.json()["user_name"] == "Ada Lovelace"
    assert deleted.json() == {"ok": True}
    assert gone.status_code == 404


async def test_admin_records_on_behalf(repo):
    admin = make_admin(repo)
    ada = make_user(repo, "ada@wustl.edu")
    offering = make_offering(repo)
    async with client(session_for(admin)) as c:
        r = await c.post("/api/hta-records", json={"course_offering_id": offering.id, "user_id": ada.id})
    assert r.status_code == 201
    assert r.json()["user_id"] == ada.id


async def test_availability_check_and_workload(repo):
    ada = make_user(repo, "ada@wustl.edu")
    busy = make_offering(repo, number="131")
    target = make_offering(repo, number="247")
    repo.create_assignment(user_id=ada.id, course_offering_id=busy.id, hours_per_week=15)

    async with client(session_for(ada)) as c:
        ok = await c.get("/api/hta-records/check", params={"offering_id": target.id, "hours": 5})
        over = await c.get("/api/hta-records/check", params={"offering_id": target.id, "hours": 6})
        bad = await c.get("/api/hta-records/check", params={"offering_id": target.id, "hours": 0})
        load = await c.get("/api/hta-records/workload", params={"year": 2024, "season": "fall"})
        half = await c.get("/api/hta-records/workload", params={"year": 2024})

    assert ok.json()["can_record"] is True
    assert over.json() == {
        "can_record": False,
        "current_hours": 15,
        "max_hours": 20,
        "reasons": ["Adding 6 hours would exceed maximum of 20 hours per week"],
    }
    assert bad.status_code == 400
    assert load.json()["total_hours_per_week"] == 15
    assert load.json()["records"][0]["course_number"] == "131"
    assert half.status_code == 400


async def test_suggestions_endpoint(repo):
    ada = make_user(repo, "ada@wustl.edu")
    make_user(repo, "bob@wustl.edu", first="Bob", last="Baker")
    offering = make_offering(repo, number="6011", name="Grad Seminar")
    async with client(session_for(ada)) as c:
        r = await c.get("/api/hta-records/suggestions", params={"offering_id": offering.id, "limit": 1})
        missing = await c.get("/api/hta-records/suggestions", params={"offering_id": "nope"})
    assert r.status_code == 200
    [s] = r.json()
    assert s["suggested_hours"] == 15
    assert s["course_number"] == "6011"
    assert missing.status_code == 404


async def test_historical_import_is_admin_only(repo):
    admin = make_admin(repo)
    ada = make_user(repo, "ada@wustl.edu")
    offering = make_offering(repo, year=2015)
    payload = {
        "records": [
            {"first_name": "Ida", "last_name": "Rhodes", "course_offering_id": offering.id, "hours_per_week": 8},
            {"first_name": "Max", "last_name": "Planck", "course_offering_id": "nope"},
        ]
    }
    async with client(session_for(ada)) as c:
        denied = await c.post("/api/hta-records/historical", json=payload)
    async with client(session_for(admin)) as c:
        r = await c.post("/api/hta-records/historical", json=payload)
        empty = await c.post("/api/hta-records/historical", json={"records": []})

    assert denied.status_code == 403
    assert r.status_code == 200
    assert r.json() == {
        "created": 1,
        "skipped": 1,
        "errors": [{"index": 1, "error": "Course offering nope not found"}],
    }
    [profile] = repo.list_users(is_unclaimed=True)
    assert profile.last_name == "Rhodes"
    assert empty.status_code == 422
