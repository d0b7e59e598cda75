"""
Invitation lifecycle: token generation, validity, single use, acceptance and
cleanup.
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from audit import audit_log  # type: ignore
from audit.audit_log import AuditLogger  # type: ignore
from notifications.email import EmailDeliveryError, OutboxMailer  # type: ignore
from onboarding.invitations import (  # type: ignore
    InvitationError,
    InvitationsService,
    generate_invitation_token,
    invitation_status,
)
from records.repo_memory import InMemoryRecordsRepo  # type: ignore

from utils.seed import STRONG_PASSWORD, make_admin, make_offering, make_unclaimed, make_user, utc


NOW = utc(2025, 3, 1)


class _FailingMailer:
    def __init__(self):
        self.attempts = 0

    def send(self, message):
        self.attempts += 1
        raise EmailDeliveryError("provider_status_500")


def _service(repo, mailer=None, now=NOW):
    return InvitationsService(repo=repo, mailer=mailer or OutboxMailer(), audit_logger=AuditLogger(repo), clock=lambda: now)


@pytest.fixture
def mem_repo():
    return InMemoryRecordsRepo()


def test_generated_tokens_are_64_hex_chars_and_unique():
    tokens = {generate_invitation_token() for _ in range(50)}
    assert len(tokens) == 50
    for token in tokens:
        assert len(token) == 64
        int(token, 16)


def test_create_invitation_mails_link_and_audits(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    mailer = OutboxMailer()
    result = _service(mem_repo, mailer).create_invitation(inviter.id, " New.TA@WUSTL.edu ")

    inv = result.invitation
    assert result.email_sent is True
    assert inv.email == "new.ta@wustl.edu"
    assert inv.expires_at == NOW + timedelta(days=7)
    assert inv.used_at is None
    assert len(mailer.outbox) == 1
    assert inv.token in mailer.outbox[0].text
    events = mem_repo.list_audit_events(action=audit_log.INVITATION_SENT)
    assert [e.entity_id for e in events] == [inv.id]


def test_create_invitation_rejects_registered_email_and_pending_duplicate(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    make_user(mem_repo, "taken@wustl.edu", first="Tak", last="En")
    service = _service(mem_repo)

    with pytest.raises(InvitationError) as exc:
        service.create_invitation(inviter.id, "taken@wustl.edu")
    assert exc.value.code == "user_exists"

    service.create_invitation(inviter.id, "fresh@wustl.edu")
    with pytest.raises(InvitationError) as exc:
        service.create_invitation(inviter.id, "fresh@wustl.edu")
    assert exc.value.code == "invitation_pending"


def test_head_ta_cannot_invite_admin_but_admin_can(mem_repo):
    head_ta = make_user(mem_repo, "hta@wustl.edu")
    admin = make_admin(mem_repo)
    service = _service(mem_repo)

    with pytest.raises(InvitationError) as exc:
        service.create_invitation(head_ta.id, "boss@wustl.edu", role="admin")
    assert exc.value.code == "admin_invite_forbidden"

    result = service.create_invitation(admin.id, "boss@wustl.edu", role="admin")
    assert result.invitation.role == "admin"


@pytest.mark.parametrize("days", [0, 31])
def test_expiration_days_are_bounded(mem_repo, days):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    with pytest.raises(InvitationError) as exc:
        _service(mem_repo).create_invitation(inviter.id, "x@wustl.edu", expiration_days=days)
    assert exc.value.code == "invalid_expiration"


def test_invalid_email_is_rejected(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    with pytest.raises(InvitationError) as exc:
        _service(mem_repo).create_invitation(inviter.id, "not-an-email")
    assert exc.value.code == "invalid_email"


def test_delivery_failure_keeps_invitation(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    mailer = _FailingMailer()
    result = _service(mem_repo, mailer).create_invitation(inviter.id, "x@wustl.edu")
    assert result.email_sent is False
    assert mailer.attempts == 1
    assert mem_repo.get_invitation(result.invitation.id) is not None


def test_token_validity_rules(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    service = _service(mem_repo)
    inv = service.create_invitation(inviter.id, "x@wustl.edu").invitation

    assert service.validate_invitation_token(inv.token).is_valid is True
    assert service.validate_invitation_token("deadbeef").code == "invalid_token"
    assert service.validate_invitation_token("").code == "invalid_token"

    # Expiry is strict: a token expiring exactly now is invalid.
    at_expiry = service.validate_invitation_token(inv.token, now=inv.expires_at)
    assert at_expiry.is_valid is False
    assert at_expiry.code == "invitation_expired"

    # A registered user who took the email in the meantime invalidates it.
    make_user(mem_repo, "x@wustl.edu", first="Xa", last="Vier")
    taken = service.validate_invitation_token(inv.token)
    assert taken.code == "user_exists"
    assert taken.existing_user is not None


def test_unclaimed_profile_with_same_email_does_not_invalidate_token(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    make_unclaimed(mem_repo, "Old", "Timer", email="old@wustl.edu")
    service = _service(mem_repo)
    inv = service.create_invitation(inviter.id, "old@wustl.edu").invitation
    assert service.validate_invitation_token(inv.token).is_valid is True


def test_mark_used_is_single_use(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    service = _service(mem_repo)
    inv = service.create_invitation(inviter.id, "x@wustl.edu").invitation

    assert service.mark_invitation_used(inv.token) is True
    assert service.mark_invitation_used(inv.token) is False
    assert service.mark_invitation_used("unknown") is False
    check = service.validate_invitation_token(inv.token)
    assert check.code == "token_used"


def test_accept_creates_account_linked_to_inviter(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    mailer = OutboxMailer()
    service = _service(mem_repo, mailer)
    inv = service.create_invitation(inviter.id, "new@wustl.edu").invitation

    user = service.accept_invitation(
        token=inv.token,
        email="NEW@wustl.edu",
        password=STRONG_PASSWORD,
        first_name=" Nora ",
        last_name="Newton",
        profile={"grad_year": 2026, "location": "St. Louis", "role": "admin"},
    )

    assert user.invited_by == inviter.id
    assert user.role == "head_ta"
    assert user.first_name == "Nora"
    assert user.grad_year == 2026
    assert user.location == "St. Louis"
    assert mem_repo.get_invitation(inv.id).used_at == NOW
    assert mailer.outbox[-1].subject == "Welcome to WU Head TAs!"
    actions = [e.action for e in mem_repo.list_audit_events()]
    assert audit_log.INVITATION_ACCEPTED in actions
    assert audit_log.USER_CREATED in actions

    with pytest.raises(InvitationError) as exc:
        service.accept_invitation(
            token=inv.token, email="new@wustl.edu", password=STRONG_PASSWORD, first_name="N", last_name="N"
        )
    assert exc.value.code == "token_used"


def test_accept_rejects_email_mismatch_and_weak_password(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    service = _service(mem_repo)
    inv = service.create_invitation(inviter.id, "new@wustl.edu").invitation

    with pytest.raises(InvitationError) as exc:
        service.accept_invitation(
            token=inv.token, email="other@wustl.edu", password=STRONG_PASSWORD, first_name="A", last_name="B"
        )
    assert exc.value.code == "email_mismatch"

    with pytest.raises(InvitationError) as exc:
        service.accept_invitation(token=inv.token, email="new@wustl.edu", password="short", first_name="A", last_name="B")
    assert exc.value.code == "weak_password"
    assert mem_repo.get_invitation(inv.id).used_at is None


def test_accept_converts_unclaimed_profile_in_place(mem_repo):
    admin = make_admin(mem_repo)
    profile = make_unclaimed(mem_repo, "Old", "Timer", email="old@wustl.edu")
    service = _service(mem_repo)
    inv = service.create_invitation(admin.id, "old@wustl.edu").invitation

    user = service.accept_invitation(
        token=inv.token, email="old@wustl.edu", password=STRONG_PASSWORD, first_name="Olivia", last_name="Timer"
    )
    assert user.id == profile.id
    assert user.is_unclaimed is False
    assert user.claimed_at == NOW
    assert user.first_name == "Olivia"
    assert user.invited_by == admin.id


def test_accept_releases_token_when_account_creation_fails(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    service = _service(mem_repo)
    inv = service.create_invitation(inviter.id, "new@wustl.edu").invitation

    def _conflict(**kwargs):
        raise ValueError("email_taken")

    mem_repo.create_user = _conflict  # type: ignore[assignment]
    with pytest.raises(InvitationError) as exc:
        service.accept_invitation(
            token=inv.token, email="new@wustl.edu", password=STRONG_PASSWORD, first_name="N", last_name="N"
        )
    assert exc.value.code == "user_exists"
    assert mem_repo.get_invitation(inv.id).used_at is None


def test_targeted_invitation_names_the_course(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    offering = make_offering(mem_repo, number="247", name="Data Structures")
    mailer = OutboxMailer()
    result = _service(mem_repo, mailer).send_targeted_invitation(
        inviter.id, email="t@wustl.edu", offering_id=offering.id, recipient_name="Tess", message="Please join"
    )
    assert result.invitation.offering_id == offering.id
    assert result.invitation.expires_at == NOW + timedelta(days=14)
    msg = mailer.outbox[-1]
    assert "247 - Data Structures" in msg.subject
    assert "Please join" in msg.text

    with pytest.raises(InvitationError) as exc:
        _service(mem_repo).send_targeted_invitation(inviter.id, email="u@wustl.edu", offering_id="missing")
    assert exc.value.code == "offering_not_found"


def test_claim_invitation_marks_profile_and_bulk_reports_failures(mem_repo):
    admin = make_admin(mem_repo)
    with_email = make_unclaimed(mem_repo, "Has", "Mail", email="has@wustl.edu")
    placeholder = make_unclaimed(mem_repo, "No", "Mail")
    service = _service(mem_repo)

    result = service.send_bulk_claim_invitations([with_email.id, placeholder.id, "missing"], admin.id, "Hello")
    assert result.sent == 1
    assert result.failed == 2
    assert {e["profile_id"] for e in result.errors} == {placeholder.id, "missing"}
    assert mem_repo.get_user(with_email.id).invitation_sent_at == NOW
    invitations = mem_repo.list_invitations(email="has@wustl.edu")
    assert invitations[0].claim_profile_id == with_email.id

    with pytest.raises(InvitationError) as exc:
        service.send_claim_profile_invitation(admin.id, admin.id, "x@wustl.edu")
    assert exc.value.code == "profile_already_claimed"


def test_resend_rotates_token_and_extends_expiry(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    other = make_user(mem_repo, "other@wustl.edu", first="Otto", last="Other")
    service = _service(mem_repo)
    inv = service.create_invitation(inviter.id, "x@wustl.edu", expiration_days=2).invitation

    later = _service(mem_repo, now=NOW + timedelta(days=1))
    resent = later.resend_invitation(inv.id, inviter.id, "head_ta").invitation
    assert resent.token != inv.token
    assert resent.expires_at == NOW + timedelta(days=8)

    with pytest.raises(InvitationError) as exc:
        later.resend_invitation(inv.id, other.id, "head_ta")
    assert exc.value.code == "forbidden"


def test_revoke_by_admin_and_used_invitation_is_protected(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    admin = make_admin(mem_repo)
    service = _service(mem_repo)
    a = service.create_invitation(inviter.id, "a@wustl.edu").invitation
    b = service.create_invitation(inviter.id, "b@wustl.edu").invitation

    service.revoke_invitation(a.id, admin.id, "admin")
    assert mem_repo.get_invitation(a.id) is None

    service.mark_invitation_used(b.token)
    with pytest.raises(InvitationError) as exc:
        service.revoke_invitation(b.id, inviter.id, "head_ta")
    assert exc.value.code == "invitation_used"


def test_list_and_stats_scope_to_inviter(mem_repo):
    one = make_user(mem_repo, "one@wustl.edu", first="One", last="A")
    two = make_user(mem_repo, "two@wustl.edu", first="Two", last="B")
    admin = make_admin(mem_repo)
    service = _service(mem_repo)
    service.create_invitation(one.id, "x@wustl.edu")
    service.create_invitation(two.id, "y@wustl.edu")
    make_user(mem_repo, "joined@wustl.edu", first="Jo", last="Ined", invited_by=one.id)

    assert [i.email for i in service.list_invitations(one.id, "head_ta")] == ["x@wustl.edu"]
    assert len(service.list_invitations(admin.id, "admin")) == 2

    stats = service.invitation_stats(one.id)
    assert stats.total_sent == 1
    assert stats.total_accepted == 1
    assert [i.email for i in stats.pending] == ["x@wustl.edu"]


def test_cleanup_deletes_only_expired_unused(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    service = _service(mem_repo)
    old = service.create_invitation(inviter.id, "old@wustl.edu", expiration_days=1).invitation
    used = service.create_invitation(inviter.id, "used@wustl.edu", expiration_days=1).invitation
    fresh = service.create_invitation(inviter.id, "fresh@wustl.edu", expiration_days=30).invitation
    service.mark_invitation_used(used.token)

    removed = service.cleanup_expired_invitations(NOW + timedelta(days=2))
    assert removed == 1
    assert mem_repo.get_invitation(old.id) is None
    assert mem_repo.get_invitation(used.id) is not None
    assert mem_repo.get_invitation(fresh.id) is not None
    assert mem_repo.list_audit_events(action=audit_log.INVITATION_EXPIRED)[0].metadata == {"deleted": 1}


def test_invitation_status_labels(mem_repo):
    inviter = make_user(mem_repo, "inviter@wustl.edu")
    service = _service(mem_repo)
    inv = service.create_invitation(inviter.id, "x@wustl.edu").invitation
    assert invitation_status(inv, NOW) == "pending"
    assert invitation_status(inv, inv.expires_at) == "expired"
    service.mark_invitation_used(inv.token)
    assert invitation_status(mem_repo.get_invitation(inv.id), NOW) == "accepted"
