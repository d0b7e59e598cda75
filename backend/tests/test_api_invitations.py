"""
Invitations API: create, validate, list, stats, resend, revoke and the
admin-only claim-profile invitations.

Scenarios
- Head TAs invite head TAs; inviting an admin needs the admin role (403).
- One active invitation per email (409 invitation_pending).
- Token validation is public, never echoes the token and is rate limited.
- Only the inviter or an admin manages an invitation.
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from records.models import utcnow  # type: ignore

from utils.seed import client, make_admin, make_offering, make_unclaimed, make_user, session_for


pytestmark = pytest.mark.anyio("asyncio")


async def test_create_invitation_sends_email_without_exposing_token(repo, outbox):
    ada = make_user(repo, "ada@wustl.edu")
    async with client(session_for(ada)) as c:
        r = await c.post("/api/invitations", json={"email": " New@WUSTL.edu "})
        again = await c.post("/api/invitations", json={"email": "new@wustl.edu"})
        existing = await c.post("/api/invitations", json={"email": "ada@wustl.edu"})
        admin_invite = await c.post("/api/invitations", json={"email": "boss@wustl.edu", "role": "admin"})
        bad_email = await c.post("/api/invitations", json={"email": "nope"})

    assert r.status_code == 201
    body = r.json()
    assert body["email_sent"] is True
    assert body["invitation"]["email"] == "new@wustl.edu"
    assert body["invitation"]["status"] == "pending"
    assert "token" not in body["invitation"]
    stored = repo.get_invitation(body["invitation"]["id"])
    assert stored.token in outbox[-1].text
    assert (again.status_code, again.json()["detail"]) == (409, "invitation_pending")
    assert (existing.status_code, existing.json()["detail"]) == (409, "user_exists")
    assert (admin_invite.status_code, admin_invite.json()["detail"]) == (403, "admin_invite_forbidden")
    assert (bad_email.status_code, bad_email.json()["detail"]) == (400, "invalid_email")


async def test_admin_may_invite_admins(repo):
    admin = make_admin(repo)
    async with client(session_for(admin)) as c:
        r = await c.post("/api/invitations", json={"email": "boss@wustl.edu", "role": "admin"})
    assert r.status_code == 201
    assert r.json()["invitation"]["role"] == "admin"


async def test_validate_is_public_and_reports_failure_codes(repo):
    ada = make_user(repo, "ada@wustl.edu")
    async with client(session_for(ada)) as c:
        created = await c.post("/api/invitations", json={"email": "new@wustl.edu"})
        await c.post("/api/invitations", json={"email": "old@wustl.edu"})
    fresh = repo.get_invitation(created.json()["invitation"]["id"])
    [old] = [inv for inv in repo.list_invitations() if inv.email == "old@wustl.edu"]
    repo.update_invitation(old.id, expires_at=utcnow() - timedelta(minutes=1))

    async with client() as c:
        ok = await c.post("/api/invitations/validate", json={"token": fresh.token})
        empty = await c.post("/api/invitations/validate", json={"token": "   "})
        unknown = await c.post("/api/invitations/validate", json={"token": "0" * 64})
        expired = await c.post("/api/invitations/validate", json={"token": old.token})

    assert ok.status_code == 200
    assert ok.json()["valid"] is True
    assert ok.json()["invitation"]["email"] == "new@wustl.edu"
    assert "token" not in ok.json()["invitation"]
    assert (empty.status_code, empty.json()["detail"]) == (400, "token_required")
    assert (unknown.status_code, unknown.json()["detail"]) == (404, "invalid_token")
    assert (expired.status_code, expired.json()["detail"]) == (404, "invitation_expired")


async def test_validate_is_rate_limited_per_ip():
    async with client() as c:
        for _ in range(30):
            r = await c.post("/api/invitations/validate", json={"token": "x"})
            assert r.status_code == 404
        blocked = await c.post("/api/invitations/validate", json={"token": "x"})
    assert blocked.status_code == 429
    assert int(blocked.headers["Retry-After"]) > 0


async def test_list_stats_resend_and_revoke(repo, outbox):
    admin = make_admin(repo)
    ada = make_user(repo, "ada@wustl.edu", invited_by=admin.id)
    bob = make_user(repo, "bob@wustl.edu", first="Bob", last="Baker")
    async with client(session_for(ada)) as c:
        created = await c.post("/api/invitations", json={"email": "new@wustl.edu"})
        invitation_id = created.json()["invitation"]["id"]
        old_token = repo.get_invitation(invitation_id).token
        own = await c.get("/api/invitations")
        resent = await c.post(f"/api/invitations/{invitation_id}/resend")
        new_token = repo.get_invitation(invitation_id).token
        missing = await c.post("/api/invitations/nope/resend")
    async with client(session_for(bob)) as c:
        foreign_list = await c.get("/api/invitations")
        foreign_revoke = await c.delete(f"/api/invitations/{invitation_id}")
    async with client(session_for(admin)) as c:
        all_items = await c.get("/api/invitations")
        stats = await c.get("/api/invitations/stats")
        revoked = await c.delete(f"/api/invitations/{invitation_id}")

    assert [i["id"] for i in own.json()] == [invitation_id]
    assert resent.status_code == 200
    assert new_token != old_token
    assert len(outbox) == 2
    assert missing.status_code == 404
    assert foreign_list.json() == []
    assert (foreign_revoke.status_code, foreign_revoke.json()["detail"]) == (403, "forbidden")
    assert [i["id"] for i in all_items.json()] == [invitation_id]
    assert stats.json()["total_accepted"] == 1
    assert stats.json()["accepted"][0]["id"] == ada.id
    assert revoked.json() == {"ok": True}
    assert repo.get_invitation(invitation_id) is None


async def test_targeted_invitation_names_the_course(repo, outbox):
    ada = make_user(repo, "ada@wustl.edu")
    offering = make_offering(repo, number="247", name="Data Structures")
    async with client(session_for(ada)) as c:
        r = await c.post(
            "/api/invitations/targeted",
            json={"email": "ta@wustl.edu", "offering_id": offering.id, "recipient_name": "  ", "message": "Join us"},
        )
        missing = await c.post("/api/invitations/targeted", json={"email": "x@wustl.edu", "offering_id": "nope"})

    assert r.status_code == 201
    assert r.json()["invitation"]["offering_id"] == offering.id
    assert outbox[-1].subject == "Claim Your Head TA Profile for 247 - Data Structures"
    assert (missing.status_code, missing.json()["detail"]) == (404, "offering_not_found")


async def test_claim_invitations_are_admin_only(repo, outbox):
    admin = make_admin(repo)
    ada = make_user(repo, "ada@wustl.edu")
    ida = make_unclaimed(repo, "Ida", "Rhodes", email="ida@wustl.edu")
    max_ = make_unclaimed(repo, "Max", "Planck")

    async with client(session_for(ada)) as c:
        denied = await c.post("/api/invitations/claim", json={"profile_id": ida.id, "email": "ida@wustl.edu"})
        denied_bulk = await c.post("/api/invitations/claim/bulk", json={"profile_ids": [ida.id]})
    async with client(session_for(admin)) as c:
        bulk = await c.post("/api/invitations/claim/bulk", json={"profile_ids": [ida.id, max_.id, "nope"]})
        pending = await c.post("/api/invitations/claim", json={"profile_id": ida.id, "email": "ida@wustl.edu"})
        missing = await c.post("/api/invitations/claim", json={"profile_id": "nope", "email": "x@wustl.edu"})
        empty = await c.post("/api/invitations/claim/bulk", json={"profile_ids": []})

    assert denied.status_code == 403
    assert denied_bulk.status_code == 403
    assert bulk.json() == {
        "sent": 1,
        "failed": 2,
        "errors": [
            {"profile_id": max_.id, "error": "No contact email on file"},
            {"profile_id": "nope", "error": "Unclaimed profile not found"},
        ],
    }
    assert outbox[-1].subject == "Claim Your WU Head TAs Profile"
    assert (pending.status_code, pending.json()["detail"]) == (409, "invitation_pending")
    assert (missing.status_code, missing.json()["detail"]) == (404, "profile_not_found")
    assert empty.status_code == 422

    async with client() as c:
        token = next(inv.token for inv in repo.list_invitations() if inv.claim_profile_id == ida.id)
        check = await c.post("/api/invitations/validate", json={"token": token})
    assert check.json()["profile"] == {"id": ida.id, "first_name": "Ida", "last_name": "Rhodes"}
