"""
Invitation and claim-token lifecycle.

Intent:
    Onboarding is invitation-only. A token is a single-use, time-limited random
    string mailed to a prospective user. It authorizes either a new account or
    the claiming of an unclaimed profile recorded by an administrator.

Token validity:
    valid iff `used_at is None` AND `expires_at > now` AND no registered user
    owns the invited email. Unclaimed profiles are not registered users; an
    invitation for their email converts the profile in place on acceptance.

Errors:
    Business-rule failures raise `InvitationError(code, message)`; the code is
    machine-readable and stable, the message is shown to humans.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import secrets
from typing import Any, Callable, Dict, List, Optional

from audit import audit_log
from audit.audit_log import AuditLogger, RequestContext
from identity_access.domain import ROLE_HEAD_TA, can_invite, is_admin
from identity_access.passwords import hash_password, validate_password_strength
from notifications.email import (
    EmailDeliveryError,
    EmailMessage,
    Mailer,
    build_claim_profile_email,
    build_invitation_email,
    build_targeted_invitation_email,
    build_welcome_email,
)
from records.models import Invitation, User, utcnow
from records.repo import RecordsRepo
from records.validation import is_valid_email, normalize_email, normalize_name

logger = logging.getLogger("wuheadtas.onboarding")

TOKEN_BYTES = 32
DEFAULT_EXPIRATION_DAYS = 7
TARGETED_EXPIRATION_DAYS = 14
CLAIM_EXPIRATION_DAYS = 14

_PROFILE_FIELDS = ("grad_year", "degree_program", "current_role", "linkedin_url", "personal_site", "location")


class InvitationError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class TokenValidation:
    is_valid: bool
    invitation: Optional[Invitation] = None
    error: Optional[str] = None
    code: Optional[str] = None
    existing_user: Optional[User] = None


@dataclass(frozen=True)
class InvitationResult:
    invitation: Invitation
    email_sent: bool


@dataclass
class InvitationStats:
    total_sent: int
    total_accepted: int
    pending: List[Invitation] = field(default_factory=list)
    accepted: List[User] = field(default_factory=list)


@dataclass
class BulkInvitationResult:
    sent: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)


def generate_invitation_token() -> str:
    """Return 32 random bytes, hex encoded (64 characters)."""
    return secrets.token_hex(TOKEN_BYTES)


def invitation_status(invitation: Invitation, now: datetime) -> str:
    if invitation.used_at is not None:
        return "accepted"
    if invitation.expires_at <= now:
        return "expired"
    return "pending"


@dataclass
class InvitationsService:
    repo: RecordsRepo
    mailer: Mailer
    audit_logger: Optional[AuditLogger] = None
    clock: Callable[[], datetime] = utcnow

    # --- Helpers -------------------------------------------------------------------

    def _registered_user(self, email: str) -> Optional[User]:
        user = self.repo.get_user_by_email(email)
        if user is None or user.is_unclaimed:
            return None
        return user

    def _has_active_invitation(self, email: str, now: datetime) -> bool:
        return any(inv.is_active(now) for inv in self.repo.list_invitations(email=email))

    def _require_inviter(self, invited_by: str) -> User:
        inviter = self.repo.get_user(invited_by)
        if inviter is None or inviter.is_unclaimed:
            raise InvitationError("inviter_not_found", "Inviter not found")
        return inviter

    def _insert(self, *, email: str, invited_by: str, role: str, days: int, **extra: Any) -> Invitation:
        expires_at = self.clock() + timedelta(days=days)
        for _ in range(3):
            try:
                return self.repo.create_invitation(
                    email=email,
                    invited_by=invited_by,
                    token=generate_invitation_token(),
                    expires_at=expires_at,
                    role=role,
                    **extra,
                )
            except ValueError as exc:
                if str(exc) != "token_taken":
                    raise
        raise InvitationError("token_generation_failed", "Failed to create invitation")

    def _deliver(self, message: EmailMessage) -> bool:
        try:
            self.mailer.send(message)
            return True
        except EmailDeliveryError as exc:
            logger.warning("Invitation email not delivered: %s", exc)
            return False

    def _audit(self, action: str, entity_type: str, **kwargs: Any) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(action, entity_type, **kwargs)

    def _email_for(self, invitation: Invitation, inviter: User) -> EmailMessage:
        days = max(1, round((invitation.expires_at - self.clock()).total_seconds() / 86400))
        if invitation.claim_profile_id:
            profile = self.repo.get_user(invitation.claim_profile_id)
            return build_claim_profile_email(
                to=invitation.email,
                recipient_name=profile.full_name if profile else invitation.email,
                inviter_name=inviter.full_name,
                token=invitation.token,
                profile_id=invitation.claim_profile_id,
                expiration_days=days,
            )
        if invitation.offering_id:
            offering = self.repo.get_offering(invitation.offering_id)
            course = self.repo.get_course(offering.course_id) if offering else None
            if offering and course:
                return build_targeted_invitation_email(
                    to=invitation.email,
                    inviter_name=inviter.full_name,
                    token=invitation.token,
                    course_number=course.course_number,
                    course_name=course.course_name,
                    semester=offering.semester,
                    expiration_days=days,
                )
        return build_invitation_email(
            to=invitation.email,
            inviter_name=inviter.full_name,
            token=invitation.token,
            role=invitation.role,
            expiration_days=days,
        )

    # --- Token checks ---------------------------------------------------------------

    def validate_invitation_token(self, token: str, now: Optional[datetime] = None) -> TokenValidation:
        now = now or self.clock()
        invitation = self.repo.get_invitation_by_token(token) if token else None
        if invitation is None:
            return TokenValidation(False, error="Invalid invitation token", code="invalid_token")
        if invitation.used_at is not None:
            return TokenValidation(
                False, invitation=invitation, error="This invitation has already been used", code="token_used"
            )
        if invitation.expires_at <= now:
            return TokenValidation(
                False, invitation=invitation, error="This invitation has expired", code="invitation_expired"
            )
        existing = self._registered_user(invitation.email)
        if existing is not None:
            return TokenValidation(
                False,
                invitation=invitation,
                error="A user with this email already exists",
                code="user_exists",
                existing_user=existing,
            )
        return TokenValidation(True, invitation=invitation)

    def mark_invitation_used(self, token: str) -> bool:
        """Flip `used_at` once; a second call for the same token returns False."""
        invitation = self.repo.get_invitation_by_token(token)
        if invitation is None:
            return False
        return self.repo.mark_invitation_used(invitation.id, self.clock())

    # --- Sending ----------------------------------------------------------------------

    def create_invitation(
        self,
        invited_by: str,
        email: str,
        role: str = ROLE_HEAD_TA,
        expiration_days: int = DEFAULT_EXPIRATION_DAYS,
        *,
        context: Optional[RequestContext] = None,
    ) -> InvitationResult:
        now = self.clock()
        inviter = self._require_inviter(invited_by)
        if not can_invite(inviter.role, role):
            if role == "admin":
                raise InvitationError("admin_invite_forbidden", "Only admins can invite other admins")
            raise InvitationError("invalid_role", "Invalid role")
        if not is_valid_email(email):
            raise InvitationError("invalid_email", "Invalid email address")
        email = normalize_email(email)
        if expiration_days < 1 or expiration_days > 30:
            raise InvitationError("invalid_expiration", "Expiration must be between 1 and 30 days")
        if self._registered_user(email) is not None:
            raise InvitationError("user_exists", "A user with this email already exists")
        if self._has_active_invitation(email, now):
            raise InvitationError("invitation_pending", "An active invitation already exists for this email")

        invitation = self._insert(email=email, invited_by=inviter.id, role=role, days=expiration_days)
        sent = self._deliver(
            build_invitation_email(
                to=email,
                inviter_name=inviter.full_name,
                token=invitation.token,
                role=role,
                expiration_days=expiration_days,
            )
        )
        logger.info("Invitation created (inviter=%s, role=%s, email_sent=%s)", inviter.id, role, sent)
        self._audit(
            audit_log.INVITATION_SENT,
            audit_log.ENTITY_INVITATION,
            user_id=inviter.id,
            entity_id=invitation.id,
            metadata={"email": email, "role": role},
            context=context,
        )
        return InvitationResult(invitation=invitation, email_sent=sent)

    def send_targeted_invitation(
        self,
        invited_by: str,
        *,
        email: str,
        offering_id: str,
        recipient_name: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> InvitationResult:
        """Invite someone as Head TA for a specific course offering (14-day expiry)."""
        now = self.clock()
        inviter = self._require_inviter(invited_by)
        offering = self.repo.get_offering(offering_id)
        course = self.repo.get_course(offering.course_id) if offering else None
        if offering is None or course is None:
            raise InvitationError("offering_not_found", "Course offering not found")
        if not is_valid_email(email):
            raise InvitationError("invalid_email", "Invalid email address")
        email = normalize_email(email)
        if self._registered_user(email) is not None:
            raise InvitationError("user_exists", "A user with this email already exists")
        if self._has_active_invitation(email, now):
            raise InvitationError("invitation_pending", "An active invitation already exists for this email")

        invitation = self._insert(
            email=email,
            invited_by=inviter.id,
            role=ROLE_HEAD_TA,
            days=TARGETED_EXPIRATION_DAYS,
            offering_id=offering.id,
        )
        sent = self._deliver(
            build_targeted_invitation_email(
                to=email,
                inviter_name=inviter.full_name,
                token=invitation.token,
                course_number=course.course_number,
                course_name=course.course_name,
                semester=offering.semester,
                recipient_name=recipient_name,
                message=message,
                expiration_days=TARGETED_EXPIRATION_DAYS,
            )
        )
        self._audit(
            audit_log.INVITATION_SENT,
            audit_log.ENTITY_INVITATION,
            user_id=inviter.id,
            entity_id=invitation.id,
            metadata={"email": email, "course_number": course.course_number, "targeted": True},
            context=context,
        )
        return InvitationResult(invitation=invitation, email_sent=sent)

    def send_claim_profile_invitation(
        self,
        unclaimed_user_id: str,
        invited_by: str,
        recipient_email: str,
        recipient_name: Optional[str] = None,
        message: Optional[str] = None,
        *,
        context: Optional[RequestContext] = None,
    ) -> InvitationResult:
        now = self.clock()
        inviter = self._require_inviter(invited_by)
        profile = self.repo.get_user(unclaimed_user_id)
        if profile is None:
            raise InvitationError("profile_not_found", "Unclaimed profile not found")
        if not profile.is_unclaimed or profile.claimed_by:
            raise InvitationError("profile_already_claimed", "Profile is already claimed")
        if not is_valid_email(recipient_email):
            raise InvitationError("invalid_email", "Invalid email address")
        email = normalize_email(recipient_email)
        if self._registered_user(email) is not None:
            raise InvitationError("user_exists", "A user with this email already exists")
        if self._has_active_invitation(email, now):
            raise InvitationError("invitation_pending", "An active invitation already exists for this email")

        invitation = self._insert(
            email=email,
            invited_by=inviter.id,
            role=ROLE_HEAD_TA,
            days=CLAIM_EXPIRATION_DAYS,
            claim_profile_id=profile.id,
        )
        sent = self._deliver(
            build_claim_profile_email(
                to=email,
                recipient_name=recipient_name or profile.full_name,
                inviter_name=inviter.full_name,
                token=invitation.token,
                profile_id=profile.id,
                message=message,
                expiration_days=CLAIM_EXPIRATION_DAYS,
            )
        )
        self.repo.update_user(profile.id, invitation_sent_at=now)
        self._audit(
            audit_log.INVITATION_SENT,
            audit_log.ENTITY_INVITATION,
            user_id=inviter.id,
            entity_id=invitation.id,
            metadata={"email": email, "claim_profile_id": profile.id},
            context=context,
        )
        return InvitationResult(invitation=invitation, email_sent=sent)

    def send_bulk_claim_invitations(
        self,
        profile_ids: List[str],
        invited_by: str,
        message: Optional[str] = None,
        *,
        context: Optional[RequestContext] = None,
    ) -> BulkInvitationResult:
        result = BulkInvitationResult()
        for profile_id in profile_ids:
            profile = self.repo.get_user(profile_id)
            try:
                if profile is None:
                    raise InvitationError("profile_not_found", "Unclaimed profile not found")
                if profile.has_placeholder_email:
                    raise InvitationError("no_contact_email", "No contact email on file")
                self.send_claim_profile_invitation(
                    profile.id, invited_by, profile.email, profile.full_name, message, context=context
                )
            except InvitationError as exc:
                result.failed += 1
                result.errors.append({"profile_id": profile_id, "error": exc.message})
            else:
                result.sent += 1
        logger.info("Bulk claim invitations: sent=%s failed=%s", result.sent, result.failed)
        self._audit(
            audit_log.BULK_OPERATION,
            audit_log.ENTITY_INVITATION,
            user_id=invited_by,
            metadata={"operation": "claim_invitations", "sent": result.sent, "failed": result.failed},
            context=context,
        )
        return result

    # --- Management -------------------------------------------------------------------

    def _owned_invitation(self, invitation_id: str, actor_id: str, actor_role: Optional[str]) -> Invitation:
        invitation = self.repo.get_invitation(invitation_id)
        if invitation is None:
            raise InvitationError("invitation_not_found", "Invitation not found")
        if invitation.invited_by != actor_id and not is_admin(actor_role):
            raise InvitationError("forbidden", "Not allowed to manage this invitation")
        if invitation.used_at is not None:
            raise InvitationError("invitation_used", "This invitation has already been used")
        return invitation

    def resend_invitation(self, invitation_id: str, actor_id: str, actor_role: Optional[str]) -> InvitationResult:
        """Issue a fresh token with a new 7-day window and mail it again."""
        invitation = self._owned_invitation(invitation_id, actor_id, actor_role)
        inviter = self.repo.get_user(invitation.invited_by) or self._require_inviter(actor_id)
        updated = None
        for _ in range(3):
            try:
                updated = self.repo.update_invitation(
                    invitation.id,
                    token=generate_invitation_token(),
                    expires_at=self.clock() + timedelta(days=DEFAULT_EXPIRATION_DAYS),
                )
                break
            except ValueError as exc:
                if str(exc) != "token_taken":
                    raise
        if updated is None:
            raise InvitationError("token_generation_failed", "Failed to create invitation")
        sent = self._deliver(self._email_for(updated, inviter))
        logger.info("Invitation resent (id=%s, email_sent=%s)", updated.id, sent)
        return InvitationResult(invitation=updated, email_sent=sent)

    def revoke_invitation(self, invitation_id: str, actor_id: str, actor_role: Optional[str]) -> None:
        invitation = self._owned_invitation(invitation_id, actor_id, actor_role)
        self.repo.delete_invitation(invitation.id)
        self._audit(
            audit_log.INVITATION_REVOKED,
            audit_log.ENTITY_INVITATION,
            user_id=actor_id,
            entity_id=invitation.id,
            metadata={"email": invitation.email},
        )

    def list_invitations(self, actor_id: str, actor_role: Optional[str]) -> List[Invitation]:
        if is_admin(actor_role):
            return self.repo.list_invitations()
        return self.repo.list_invitations(invited_by=actor_id)

    def invitation_stats(self, user_id: str) -> InvitationStats:
        now = self.clock()
        sent = self.repo.list_invitations(invited_by=user_id)
        accepted = self.repo.list_invitees(user_id)
        return InvitationStats(
            total_sent=len(sent),
            total_accepted=len(accepted),
            pending=[inv for inv in sent if inv.is_active(now)],
            accepted=accepted,
        )

    def invitation_history(self, profile_id: str) -> List[Dict[str, Any]]:
        """Every invitation sent for an unclaimed profile, newest first.

        Matches invitations linked to the profile and those addressed to its
        email. Raises LookupError(`profile_not_found`) or
        ValueError(`profile_not_unclaimed`).
        """
        profile = self.repo.get_user(profile_id)
        if profile is None:
            raise LookupError("profile_not_found")
        if not profile.is_unclaimed:
            raise ValueError("profile_not_unclaimed")
        now = self.clock()
        email = normalize_email(profile.email)
        invitations = [
            inv
            for inv in self.repo.list_invitations()
            if inv.claim_profile_id == profile.id or inv.email == email
        ]
        invitations.sort(key=lambda inv: inv.created_at, reverse=True)
        history = []
        for inv in invitations:
            inviter = self.repo.get_user(inv.invited_by)
            history.append(
                {
                    "id": inv.id,
                    "email": inv.email,
                    "invited_by": {
                        "id": inv.invited_by,
                        "first_name": inviter.first_name if inviter else None,
                        "last_name": inviter.last_name if inviter else None,
                    },
                    "created_at": inv.created_at.isoformat(),
                    "expires_at": inv.expires_at.isoformat(),
                    "used_at": inv.used_at.isoformat() if inv.used_at else None,
                    "status": invitation_status(inv, now),
                }
            )
        return history

    def cleanup_expired_invitations(self, now: Optional[datetime] = None) -> int:
        """Delete expired, unused invitations and return how many were removed."""
        removed = self.repo.delete_expired_invitations(now or self.clock())
        logger.info("Expired invitations removed: %s", removed)
        if removed:
            self._audit(audit_log.INVITATION_EXPIRED, audit_log.ENTITY_SYSTEM, metadata={"deleted": removed})
        return removed

    # --- Acceptance -------------------------------------------------------------------

    def accept_invitation(
        self,
        *,
        token: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        profile: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> User:
        """Create (or claim) the account an invitation authorizes."""
        if not all([token, email, password, first_name, last_name]):
            raise InvitationError("missing_fields", "All fields are required")
        if not is_valid_email(email):
            raise InvitationError("invalid_email", "Invalid email address")
        problems = validate_password_strength(password)
        if problems:
            raise InvitationError("weak_password", "; ".join(problems))
        try:
            first = normalize_name(first_name, code="invalid_first_name")
            last = normalize_name(last_name, code="invalid_last_name")
        except ValueError as exc:
            raise InvitationError(str(exc), "Names must be 1-100 characters")

        check = self.validate_invitation_token(token)
        if not check.is_valid:
            raise InvitationError(check.code or "invalid_token", check.error or "Invalid invitation token")
        invitation = check.invitation
        assert invitation is not None
        if normalize_email(email) != normalize_email(invitation.email):
            raise InvitationError("email_mismatch", "Email does not match the invitation")

        now = self.clock()
        if not self.repo.mark_invitation_used(invitation.id, now):
            raise InvitationError("token_used", "This invitation has already been used")

        extras = {k: v for k, v in (profile or {}).items() if k in _PROFILE_FIELDS and v is not None}
        try:
            user = self._materialize_account(invitation, first, last, password, extras, now)
        except ValueError:
            # Give the token back so the invitee can retry.
            self.repo.update_invitation(invitation.id, used_at=None)
            raise InvitationError("user_exists", "A user with this email already exists")

        self._deliver(build_welcome_email(to=user.email, first_name=user.first_name))
        self._audit(
            audit_log.INVITATION_ACCEPTED,
            audit_log.ENTITY_INVITATION,
            user_id=user.id,
            entity_id=invitation.id,
            metadata={"email": user.email},
            context=context,
        )
        self._audit(
            audit_log.USER_CREATED,
            audit_log.ENTITY_USER,
            user_id=user.id,
            entity_id=user.id,
            metadata={"user_name": user.full_name, "invited_by": invitation.invited_by},
            context=context,
        )
        logger.info("Invitation accepted (invitation=%s, user=%s)", invitation.id, user.id)
        return user

    def _materialize_account(
        self,
        invitation: Invitation,
        first_name: str,
        last_name: str,
        password: str,
        extras: Dict[str, Any],
        now: datetime,
    ) -> User:
        target: Optional[User] = None
        if invitation.claim_profile_id:
            target = self.repo.get_user(invitation.claim_profile_id)
        if target is None or not target.is_unclaimed or target.claimed_by:
            same_email = self.repo.get_user_by_email(invitation.email)
            target = same_email if same_email is not None and same_email.is_unclaimed and not same_email.claimed_by else None

        if target is not None:
            user = self.repo.update_user(
                target.id,
                email=invitation.email,
                password_hash=hash_password(password),
                first_name=first_name,
                last_name=last_name,
                role=invitation.role,
                invited_by=invitation.invited_by,
                is_unclaimed=False,
                claimed_at=now,
                **extras,
            )
            if user is not None:
                return user

        return self.repo.create_user(
            email=invitation.email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=invitation.role,
            invited_by=invitation.invited_by,
            **extras,
        )


__all__ = [
    "TOKEN_BYTES",
    "DEFAULT_EXPIRATION_DAYS",
    "TARGETED_EXPIRATION_DAYS",
    "CLAIM_EXPIRATION_DAYS",
    "InvitationError",
    "TokenValidation",
    "InvitationResult",
    "InvitationStats",
    "BulkInvitationResult",
    "InvitationsService",
    "generate_invitation_token",
    "invitation_status",
]
