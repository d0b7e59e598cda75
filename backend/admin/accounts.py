"""
Account administration: deletion eligibility, deletion and role changes.

Deletion is conservative. A user is deletable only when nothing references
them: no HTA records, no invitations sent, no invitees who joined, no active
sessions; and the last administrator can never be removed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Callable, Dict, List, Optional, Protocol

from audit import audit_log
from audit.audit_log import AuditLogger, RequestContext
from identity_access.domain import (
    ALLOWED_ROLES,
    ROLE_ADMIN,
    ROLE_HEAD_TA,
    can_change_roles,
    can_delete_user_account,
)
from records.models import User, utcnow
from records.repo import RecordsRepo

logger = logging.getLogger("wuheadtas.admin")


class SessionCounter(Protocol):
    def count_active(self, sub: str) -> int: ...

    def delete_for_user(self, sub: str) -> int: ...

    def update_roles(self, sub: str, roles: List[str]) -> None: ...


@dataclass
class DeletionCheck:
    can_delete: bool
    reasons: List[str] = field(default_factory=list)
    counts: Dict[str, int] = field(
        default_factory=lambda: {
            "ta_assignments": 0,
            "invitations_sent": 0,
            "invitees_joined": 0,
            "active_sessions": 0,
        }
    )


def _count_admins(repo: RecordsRepo) -> int:
    return sum(1 for u in repo.list_users(role=ROLE_ADMIN) if not u.is_unclaimed)


@dataclass
class AccountsService:
    repo: RecordsRepo
    sessions: SessionCounter
    audit_logger: Optional[AuditLogger] = None
    clock: Callable[[], datetime] = utcnow

    def can_delete_user(self, user_id: str) -> DeletionCheck:
        user = self.repo.get_user(user_id)
        if user is None:
            return DeletionCheck(can_delete=False, reasons=["User not found"])

        counts = {
            "ta_assignments": len(self.repo.list_assignments(user_id=user_id)),
            "invitations_sent": len(self.repo.list_invitations(invited_by=user_id)),
            "invitees_joined": len(self.repo.list_invitees(user_id)),
            "active_sessions": int(self.sessions.count_active(user_id)),
        }
        reasons: List[str] = []
        if counts["ta_assignments"]:
            reasons.append(f"User has {counts['ta_assignments']} TA assignment(s)")
        if counts["invitations_sent"]:
            reasons.append(f"User has sent {counts['invitations_sent']} invitation(s)")
        if counts["invitees_joined"]:
            reasons.append(f"User has invited {counts['invitees_joined']} user(s) who joined")
        if counts["active_sessions"]:
            reasons.append(f"User has {counts['active_sessions']} active session(s)")
        if user.role == ROLE_ADMIN and _count_admins(self.repo) <= 1:
            reasons.append("Cannot delete the last administrator")
        return DeletionCheck(can_delete=not reasons, reasons=reasons, counts=counts)

    def delete_user(
        self,
        actor: User,
        user_id: str,
        *,
        context: Optional[RequestContext] = None,
    ) -> DeletionCheck:
        if not can_delete_user_account(actor.id, actor.role, user_id):
            raise PermissionError("delete_forbidden")
        check = self.can_delete_user(user_id)
        if check.reasons == ["User not found"]:
            raise LookupError("user_not_found")
        if not check.can_delete:
            return check
        target = self.repo.get_user(user_id)
        self.repo.delete_privacy_settings(user_id)
        self.repo.delete_user(user_id)
        logger.info("User deleted (id=%s, by=%s)", user_id, actor.id)
        if self.audit_logger is not None:
            self.audit_logger.log(
                audit_log.USER_DELETED,
                audit_log.ENTITY_USER,
                user_id=actor.id,
                entity_id=user_id,
                metadata={"email": target.email if target else None},
                context=context,
            )
        return check

    def change_role(
        self,
        actor: User,
        user_id: str,
        role: str,
        *,
        context: Optional[RequestContext] = None,
    ) -> User:
        if not can_change_roles(actor.role):
            raise PermissionError("role_change_forbidden")
        if role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        target = self.repo.get_user(user_id)
        if target is None:
            raise LookupError("user_not_found")
        if target.is_unclaimed:
            raise ValueError("profile_unclaimed")
        if target.role == role:
            return target
        if target.role == ROLE_ADMIN and _count_admins(self.repo) <= 1:
            raise ValueError("last_admin")
        updated = self.repo.update_user(user_id, role=role)
        assert updated is not None
        self.sessions.update_roles(user_id, [role])
        logger.info("Role changed (id=%s, %s -> %s, by=%s)", user_id, target.role, role, actor.id)
        if self.audit_logger is not None:
            self.audit_logger.log(
                audit_log.USER_ROLE_CHANGED,
                audit_log.ENTITY_USER,
                user_id=actor.id,
                entity_id=user_id,
                metadata={"old_role": target.role, "new_role": role},
                context=context,
            )
        return updated

    def toggle_role(self, actor: User, user_id: str, *, context: Optional[RequestContext] = None) -> User:
        """Flip between admin and head TA. Admins cannot demote themselves this way."""
        target = self.repo.get_user(user_id)
        if target is None:
            raise LookupError("user_not_found")
        if target.id == actor.id and target.role == ROLE_ADMIN:
            raise ValueError("cannot_demote_self")
        new_role = ROLE_HEAD_TA if target.role == ROLE_ADMIN else ROLE_ADMIN
        return self.change_role(actor, user_id, new_role, context=context)


__all__ = ["AccountsService", "DeletionCheck", "SessionCounter"]
