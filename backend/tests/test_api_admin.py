"""
Admin API: stats, invitation tree, deletion checks, role changes and the
audit log.

Scenarios
- Every admin endpoint answers 403 to head TAs.
- Demoting the only admin -> 409 last_admin.
- Role changes update the roles of live sessions.
- Bad audit-log filters -> 400; timestamps without an offset are UTC.
- Reports download as CSV or JSON attachments and are audited.
"""
from __future__ import annotations

import csv
from datetime import datetime, timezone
import io

import pytest

import main  # type: ignore

from utils.seed import client, make_admin, make_offering, make_unclaimed, make_user, session_for


pytestmark = pytest.mark.anyio("asyncio")


def _family(repo):
    admin = make_admin(repo)
    ada = make_user(repo, "ada@wustl.edu", invited_by=admin.id)
    bob = make_user(repo, "bob@wustl.edu", first="Bob", last="Baker", invited_by=ada.id)
    return admin, ada, bob


@pytest.mark.parametrize(
    "path",
    [
        "/api/admin/stats",
        "/api/admin/invitation-tree",
        "/api/admin/activity",
        "/api/admin/audit-logs",
        "/api/admin/analytics/user-growth",
        "/api/admin/reports/user-roster",
    ],
)
async def test_admin_endpoints_forbid_head_tas(repo, path):
    ta = make_user(repo, "ada@wustl.edu")
    async with client(session_for(ta)) as c:
        r = await c.get(path)
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"


async def test_stats_endpoint(repo):
    admin, ada, _ = _family(repo)
    make_unclaimed(repo, "Ida", "Rhodes")
    repo.create_assignment(user_id=ada.id, course_offering_id=make_offering(repo).id)
    async with client(session_for(admin)) as c:
        r = await c.get("/api/admin/stats")
    assert r.status_code == 200
    totals = r.json()["totals"]
    assert totals["users"] == 3
    assert totals["unclaimed_profiles"] == 1
    assert totals["assignments"] == 1
    assert totals["active_sessions"] == 1
    assert set(r.json()) == {"totals", "recent_activity", "course_stats", "user_stats"}


async def test_invitation_tree_and_forest(repo):
    admin, ada, bob = _family(repo)
    async with client(session_for(admin)) as c:
        forest = await c.get("/api/admin/invitation-tree")
        subtree = await c.get("/api/admin/invitation-tree", params={"user_id": ada.id})
        shallow = await c.get("/api/admin/invitation-tree", params={"user_id": admin.id, "max_depth": 1})
        missing = await c.get("/api/admin/invitation-tree", params={"user_id": "nope"})

    body = forest.json()
    assert body["total_users"] == 3
    [root] = body["roots"]
    assert root["id"] == admin.id
    assert root["invitees"][0]["id"] == ada.id
    assert root["invitees"][0]["invitees"][0]["id"] == bob.id
    assert subtree.json()["name"] == "Ada Lovelace"
    assert [n["id"] for n in subtree.json()["invitees"]] == [bob.id]
    assert shallow.json()["invitees"][0]["invitees"] == []
    assert missing.status_code == 404


async def test_deletion_check(repo):
    admin, ada, bob = _family(repo)
    async with client(session_for(admin)) as c:
        inviter = await c.get(f"/api/admin/users/{ada.id}/deletion-check")
        leaf = await c.get(f"/api/admin/users/{bob.id}/deletion-check")
        own = await c.get(f"/api/admin/users/{admin.id}/deletion-check")
        missing = await c.get("/api/admin/users/nope/deletion-check")

    assert inviter.json()["can_delete"] is False
    assert inviter.json()["reasons"] == ["User has invited 1 user(s) who joined"]
    assert inviter.json()["counts"]["invitees_joined"] == 1
    assert leaf.json() == {
        "can_delete": True,
        "reasons": [],
        "counts": {"ta_assignments": 0, "invitations_sent": 0, "invitees_joined": 0, "active_sessions": 0},
    }
    assert "Cannot delete the last administrator" in own.json()["reasons"]
    assert missing.status_code == 404


async def test_role_changes_guard_last_admin_and_update_sessions(repo):
    admin, ada, _ = _family(repo)
    profile = make_unclaimed(repo, "Ida", "Rhodes")
    ada_sid = session_for(ada)
    async with client(session_for(admin)) as c:
        last = await c.put(f"/api/admin/users/{admin.id}/role", json={"role": "head_ta"})
        invalid = await c.put(f"/api/admin/users/{ada.id}/role", json={"role": "superuser"})
        unclaimed = await c.put(f"/api/admin/users/{profile.id}/role", json={"role": "admin"})
        missing = await c.put("/api/admin/users/nope/role", json={"role": "admin"})
        promoted = await c.put(f"/api/admin/users/{ada.id}/role", json={"role": "admin"})
        demoted_self = await c.put(f"/api/admin/users/{admin.id}/role", json={"role": "head_ta"})

    assert (last.status_code, last.json()["detail"]) == (409, "last_admin")
    assert (invalid.status_code, invalid.json()["detail"]) == (400, "invalid_role")
    assert (unclaimed.status_code, unclaimed.json()["detail"]) == (400, "profile_unclaimed")
    assert missing.status_code == 404
    assert promoted.json()["role"] == "admin"
    assert main.SESSION_STORE.get(ada_sid).roles == ["admin"]
    assert demoted_self.json()["role"] == "head_ta"


async def test_audit_logs_filters(repo):
    admin, ada, _ = _family(repo)
    async with client(session_for(admin)) as c:
        await c.put(f"/api/admin/users/{ada.id}/role", json={"role": "admin"})
        events = await c.get("/api/admin/audit-logs", params={"action": "USER_ROLE_CHANGED"})
        by_entity = await c.get("/api/admin/audit-logs", params={"entity_type": "user", "entity_id": ada.id})
        since = await c.get("/api/admin/audit-logs", params={"since": "2000-01-01T00:00:00Z"})
        bad_action = await c.get("/api/admin/audit-logs", params={"action": "HACK"})
        bad_ts = await c.get("/api/admin/audit-logs", params={"since": "yesterday"})
        feed = await c.get("/api/admin/activity")

    [event] = events.json()
    assert event["user_id"] == admin.id
    assert event["entity_id"] == ada.id
    assert event["metadata"] == {"old_role": "head_ta", "new_role": "admin"}
    assert len(by_entity.json()) == 1
    assert len(since.json()) == 1
    assert (bad_action.status_code, bad_action.json()["detail"]) == (400, "invalid_action")
    assert (bad_ts.status_code, bad_ts.json()["detail"]) == (400, "invalid_timestamp")
    assert feed.json()[0]["description"] == "User role changed from head_ta to admin"
    assert feed.json()[0]["actor"] == "Grace Hopper"


async def test_audit_logs_accept_timestamps_without_offset(repo):
    admin, ada, _ = _family(repo)
    async with client(session_for(admin)) as c:
        await c.put(f"/api/admin/users/{ada.id}/role", json={"role": "admin"})
        window = await c.get(
            "/api/admin/audit-logs", params={"since": "2000-01-01T00:00:00", "until": "2100-01-01T00:00:00"}
        )
        future = await c.get("/api/admin/audit-logs", params={"since": "2100-01-01T00:00:00"})

    assert window.status_code == 200
    assert len(window.json()) == 1
    assert future.status_code == 200
    assert future.json() == []


async def test_user_growth_endpoint(repo):
    admin, _, _ = _family(repo)
    make_unclaimed(repo, "Ida", "Rhodes")
    async with client(session_for(admin)) as c:
        r = await c.get("/api/admin/analytics/user-growth")

    assert r.status_code == 200
    body = r.json()
    assert len(body["labels"]) == 6
    assert body["labels"][-1] == datetime.now(timezone.utc).strftime("%b %Y")
    assert body["datasets"][0]["data"][-1] == 3


async def test_reports_download_and_audit(repo):
    admin, ada, _ = _family(repo)
    repo.create_assignment(user_id=ada.id, course_offering_id=make_offering(repo).id)
    async with client(session_for(admin)) as c:
        roster = await c.get("/api/admin/reports/user-roster")
        coverage = await c.get("/api/admin/reports/course-coverage", params={"format": "json"})
        audit = await c.get("/api/admin/reports/audit-log", params={"format": "csv"})
        unknown = await c.get("/api/admin/reports/salaries")
        bad_format = await c.get("/api/admin/reports/user-roster", params={"format": "xml"})

    assert roster.status_code == 200
    assert roster.headers["content-type"].startswith("text/csv")
    assert roster.headers["cache-control"] == "private, no-store"
    assert 'filename="user-roster-' in roster.headers["content-disposition"]
    assert roster.headers["content-disposition"].endswith('.csv"')
    emails = {row["email"] for row in csv.DictReader(io.StringIO(roster.text))}
    assert emails == {"admin@wustl.edu", "ada@wustl.edu", "bob@wustl.edu"}

    [offering] = coverage.json()
    assert (offering["ta_count"], offering["status"]) == (1, "1 TA(s)")
    assert coverage.headers["content-disposition"].endswith('.json"')

    assert audit.headers["content-type"].startswith("application/json")
    assert isinstance(audit.json(), list)
    assert (unknown.status_code, unknown.json()["detail"]) == (400, "invalid_report")
    assert (bad_format.status_code, bad_format.json()["detail"]) == (400, "invalid_format")

    generated = repo.list_audit_events(action="REPORT_GENERATED")
    assert sorted(ev.metadata["report_id"] for ev in generated) == ["audit-log", "course-coverage", "user-roster"]
    assert all(ev.user_id == admin.id and ev.entity_type == "system" for ev in generated)
