"""
Audit trail for administrative and onboarding actions.

Audit logging must never break the operation being audited: `AuditLogger.log`
catches repository failures, logs a warning, and returns None.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Dict, List, Optional

from records.models import AuditEvent

logger = logging.getLogger("wuheadtas.audit")

USER_CREATED = "USER_CREATED"
USER_UPDATED = "USER_UPDATED"
USER_DELETED = "USER_DELETED"
USER_ROLE_CHANGED = "USER_ROLE_CHANGED"
INVITATION_SENT = "INVITATION_SENT"
INVITATION_ACCEPTED = "INVITATION_ACCEPTED"
INVITATION_REVOKED = "INVITATION_REVOKED"
INVITATION_EXPIRED = "INVITATION_EXPIRED"
PROFILE_CLAIMED = "PROFILE_CLAIMED"
COURSE_CREATED = "COURSE_CREATED"
COURSE_UPDATED = "COURSE_UPDATED"
COURSE_DELETED = "COURSE_DELETED"
PROFESSOR_CREATED = "PROFESSOR_CREATED"
PROFESSOR_UPDATED = "PROFESSOR_UPDATED"
PROFESSOR_DELETED = "PROFESSOR_DELETED"
OFFERING_CREATED = "OFFERING_CREATED"
OFFERING_UPDATED = "OFFERING_UPDATED"
OFFERING_DELETED = "OFFERING_DELETED"
HTA_RECORD_CREATED = "HTA_RECORD_CREATED"
HTA_RECORD_UPDATED = "HTA_RECORD_UPDATED"
HTA_RECORD_DELETED = "HTA_RECORD_DELETED"
BULK_OPERATION = "BULK_OPERATION"
PASSWORD_RESET = "PASSWORD_RESET"
REPORT_GENERATED = "REPORT_GENERATED"

AUDIT_ACTIONS = frozenset(
    {
        USER_CREATED, USER_UPDATED, USER_DELETED, USER_ROLE_CHANGED,
        INVITATION_SENT, INVITATION_ACCEPTED, INVITATION_REVOKED, INVITATION_EXPIRED,
        PROFILE_CLAIMED,
        COURSE_CREATED, COURSE_UPDATED, COURSE_DELETED,
        PROFESSOR_CREATED, PROFESSOR_UPDATED, PROFESSOR_DELETED,
        OFFERING_CREATED, OFFERING_UPDATED, OFFERING_DELETED,
        HTA_RECORD_CREATED, HTA_RECORD_UPDATED, HTA_RECORD_DELETED,
        BULK_OPERATION, PASSWORD_RESET, REPORT_GENERATED,
    }
)

ENTITY_USER = "user"
ENTITY_INVITATION = "invitation"
ENTITY_COURSE = "course"
ENTITY_PROFESSOR = "professor"
ENTITY_OFFERING = "course_offering"
ENTITY_HTA_RECORD = "ta_assignment"
ENTITY_SYSTEM = "system"

ENTITY_TYPES = frozenset(
    {ENTITY_USER, ENTITY_INVITATION, ENTITY_COURSE, ENTITY_PROFESSOR, ENTITY_OFFERING, ENTITY_HTA_RECORD, ENTITY_SYSTEM}
)


@dataclass(frozen=True)
class RequestContext:
    """Client metadata captured from the HTTP request, if any."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def describe(event: AuditEvent) -> str:
    meta = event.metadata or {}
    if event.action == USER_CREATED:
        return f"New user registered: {meta.get('user_name') or 'Unknown'}"
    if event.action == USER_ROLE_CHANGED:
        return f"User role changed from {meta.get('old_role')} to {meta.get('new_role')}"
    if event.action == INVITATION_SENT:
        return f"Invitation sent to {meta.get('email')}"
    if event.action == INVITATION_ACCEPTED:
        return f"Invitation accepted by {meta.get('email')}"
    if event.action == PROFILE_CLAIMED:
        return f"Profile claimed: {meta.get('profile_name') or event.entity_id}"
    if event.action == COURSE_CREATED:
        return f"Course created: {meta.get('course_name')}"
    if event.action == HTA_RECORD_CREATED:
        return f"Head TA recorded for {meta.get('course_name') or 'a course'}"
    return event.action.replace("_", " ").lower()


class AuditLogger:
    def __init__(self, repo) -> None:
        self._repo = repo

    def log(
        self,
        action: str,
        entity_type: str,
        *,
        user_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> Optional[AuditEvent]:
        ctx = context or RequestContext()
        try:
            return self._repo.add_audit_event(
                action=action,
                entity_type=entity_type,
                user_id=user_id,
                entity_id=entity_id,
                metadata=metadata or {},
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
        except Exception as exc:
            logger.warning("Failed to log audit event %s: %s", action, exc.__class__.__name__)
            return None

    def list_events(
        self,
        *,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditEvent]:
        if action is not None and action not in AUDIT_ACTIONS:
            raise ValueError("invalid_action")
        if entity_type is not None and entity_type not in ENTITY_TYPES:
            raise ValueError("invalid_entity_type")
        return self._repo.list_audit_events(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            since=since,
            until=until,
            limit=limit,
            offset=offset,
        )

    def activity_feed(self, limit: int = 20) -> List[Dict[str, Any]]:
        events = self._repo.list_audit_events(limit=limit)
        feed = []
        for ev in events:
            actor = self._repo.get_user(ev.user_id) if ev.user_id else None
            feed.append(
                {
                    "id": ev.id,
                    "action": ev.action,
                    "description": describe(ev),
                    "actor": actor.full_name if actor else None,
                    "entity_type": ev.entity_type,
                    "entity_id": ev.entity_id,
                    "created_at": ev.created_at.isoformat(),
                }
            )
        return feed


__all__ = [
    "AUDIT_ACTIONS",
    "ENTITY_TYPES",
    "AuditLogger",
    "RequestContext",
    "describe",
]
