"""
In-memory implementation of the records repository.

Used for local development without Postgres and as the default in tests.
All state lives in dicts guarded by a single lock; returned objects are
copies so callers cannot mutate stored rows by accident.
"""
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .models import (
    AuditEvent,
    Course,
    CourseOffering,
    Invitation,
    PasswordResetToken,
    PrivacySettings,
    Professor,
    TAAssignment,
    User,
    utcnow,
)

_SEASON_ORDER = {"spring": 1, "summer": 2, "fall": 3}


def _new_id() -> str:
    return str(uuid4())


def _copy(obj):
    return replace(obj) if obj is not None else None


class InMemoryRecordsRepo:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.users: Dict[str, User] = {}
        self.courses: Dict[str, Course] = {}
        self.professors: Dict[str, Professor] = {}
        self.offerings: Dict[str, CourseOffering] = {}
        self.assignments: Dict[str, TAAssignment] = {}
        self.invitations: Dict[str, Invitation] = {}
        self.password_resets: Dict[str, PasswordResetToken] = {}
        self.audit_events: List[AuditEvent] = []
        self.privacy: Dict[str, PrivacySettings] = {}

    # --- Users -----------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        return _copy(self.users.get(user_id))

    def get_user_by_email(self, email: str) -> Optional[User]:
        needle = (email or "").strip().lower()
        for user in self.users.values():
            if user.email.lower() == needle:
                return _copy(user)
        return None

    def list_users(
        self,
        *,
        role: Optional[str] = None,
        is_unclaimed: Optional[bool] = None,
        query: Optional[str] = None,
    ) -> List[User]:
        needle = (query or "").strip().lower()
        result = []
        for user in self.users.values():
            if role is not None and user.role != role:
                continue
            if is_unclaimed is not None and user.is_unclaimed != is_unclaimed:
                continue
            if needle:
                haystack = " ".join(
                    [user.first_name, user.last_name, user.email, user.location or ""]
                ).lower()
                if needle not in haystack:
                    continue
            result.append(_copy(user))
        result.sort(key=lambda u: (u.last_name.lower(), u.first_name.lower()))
        return result

    def create_user(self, *, email: str, password_hash: str, first_name: str, last_name: str, **fields: Any) -> User:
        with self._lock:
            needle = email.strip().lower()
            if any(u.email.lower() == needle for u in self.users.values()):
                raise ValueError("email_taken")
            user = User(
                id=fields.pop("id", None) or _new_id(),
                email=email.strip(),
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                **fields,
            )
            self.users[user.id] = user
            return _copy(user)

    def update_user(self, user_id: str, **fields: Any) -> Optional[User]:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            if "email" in fields:
                needle = str(fields["email"]).strip().lower()
                if any(u.email.lower() == needle and u.id != user_id for u in self.users.values()):
                    raise ValueError("email_taken")
            for key, value in fields.items():
                setattr(user, key, value)
            user.updated_at = utcnow()
            return _copy(user)

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            # Reset tokens go with their user, like the ON DELETE CASCADE in schema.sql.
            for reset_id in [r.id for r in self.password_resets.values() if r.user_id == user_id]:
                del self.password_resets[reset_id]
            return self.users.pop(user_id, None) is not None

    def list_invitees(self, inviter_id: str) -> List[User]:
        invitees = [_copy(u) for u in self.users.values() if u.invited_by == inviter_id]
        invitees.sort(key=lambda u: u.created_at)
        return invitees

    # --- Courses ---------------------------------------------------------------

    def create_course(self, *, course_number: str, course_name: str) -> Course:
        with self._lock:
            if any(c.course_number == course_number for c in self.courses.values()):
                raise ValueError("course_number_taken")
            course = Course(id=_new_id(), course_number=course_number, course_name=course_name)
            self.courses[course.id] = course
            return _copy(course)

    def get_course(self, course_id: str) -> Optional[Course]:
        return _copy(self.courses.get(course_id))

    def get_course_by_number(self, course_number: str) -> Optional[Course]:
        for course in self.courses.values():
            if course.course_number == course_number:
                return _copy(course)
        return None

    def list_courses(self) -> List[Course]:
        return sorted((_copy(c) for c in self.courses.values()), key=lambda c: c.course_number)

    def update_course(self, course_id: str, **fields: Any) -> Optional[Course]:
        with self._lock:
            course = self.courses.get(course_id)
            if course is None:
                return None
            number = fields.get("course_number")
            if number and any(c.course_number == number and c.id != course_id for c in self.courses.values()):
                raise ValueError("course_number_taken")
            for key, value in fields.items():
                setattr(course, key, value)
            course.updated_at = utcnow()
            return _copy(course)

    def delete_course(self, course_id: str) -> bool:
        with self._lock:
            return self.courses.pop(course_id, None) is not None

    # --- Professors ------------------------------------------------------------

    def create_professor(self, *, first_name: str, last_name: str, email: str) -> Professor:
        with self._lock:
            needle = email.strip().lower()
            if any(p.email.lower() == needle for p in self.professors.values()):
                raise ValueError("professor_email_taken")
            prof = Professor(id=_new_id(), first_name=first_name, last_name=last_name, email=email.strip())
            self.professors[prof.id] = prof
            return _copy(prof)

    def get_professor(self, professor_id: str) -> Optional[Professor]:
        return _copy(self.professors.get(professor_id))

    def get_professor_by_email(self, email: str) -> Optional[Professor]:
        needle = (email or "").strip().lower()
        for prof in self.professors.values():
            if prof.email.lower() == needle:
                return _copy(prof)
        return None

    def list_professors(self) -> List[Professor]:
        return sorted(
            (_copy(p) for p in self.professors.values()),
            key=lambda p: (p.last_name.lower(), p.first_name.lower()),
        )

    def update_professor(self, professor_id: str, **fields: Any) -> Optional[Professor]:
        with self._lock:
            prof = self.professors.get(professor_id)
            if prof is None:
                return None
            if "email" in fields:
                needle = str(fields["email"]).strip().lower()
                if any(p.email.lower() == needle and p.id != professor_id for p in self.professors.values()):
                    raise ValueError("professor_email_taken")
            for key, value in fields.items():
                setattr(prof, key, value)
            prof.updated_at = utcnow()
            return _copy(prof)

    def delete_professor(self, professor_id: str) -> bool:
        with self._lock:
            return self.professors.pop(professor_id, None) is not None

    # --- Course offerings ------------------------------------------------------

    def create_offering(
        self,
        *,
        course_id: str,
        professor_id: str,
        year: int,
        season: str,
        semester: str,
        updated_by: Optional[str] = None,
    ) -> CourseOffering:
        with self._lock:
            offering = CourseOffering(
                id=_new_id(),
                course_id=course_id,
                professor_id=professor_id,
                semester=semester,
                year=int(year),
                season=season,
                updated_by=updated_by,
            )
            self.offerings[offering.id] = offering
            return _copy(offering)

    def get_offering(self, offering_id: str) -> Optional[CourseOffering]:
        return _copy(self.offerings.get(offering_id))

    def list_offerings(
        self,
        *,
        course_id: Optional[str] = None,
        professor_id: Optional[str] = None,
        year: Optional[int] = None,
        season: Optional[str] = None,
    ) -> List[CourseOffering]:
        result = []
        for off in self.offerings.values():
            if course_id is not None and off.course_id != course_id:
                continue
            if professor_id is not None and off.professor_id != professor_id:
                continue
            if year is not None and off.year != int(year):
                continue
            if season is not None and off.season != season:
                continue
            result.append(_copy(off))
        result.sort(key=lambda o: (o.year, _SEASON_ORDER.get(o.season, 0), o.created_at))
        return result

    def update_offering(self, offering_id: str, **fields: Any) -> Optional[CourseOffering]:
        with self._lock:
            off = self.offerings.get(offering_id)
            if off is None:
                return None
            for key, value in fields.items():
                setattr(off, key, value)
            off.updated_at = utcnow()
            return _copy(off)

    def delete_offering(self, offering_id: str) -> bool:
        with self._lock:
            return self.offerings.pop(offering_id, None) is not None

    # --- TA assignments --------------------------------------------------------

    def create_assignment(
        self,
        *,
        user_id: str,
        course_offering_id: str,
        hours_per_week: Optional[int] = None,
        responsibilities: Optional[str] = None,
    ) -> TAAssignment:
        with self._lock:
            for a in self.assignments.values():
                if a.user_id == user_id and a.course_offering_id == course_offering_id:
                    raise ValueError("assignment_taken")
            assignment = TAAssignment(
                id=_new_id(),
                user_id=user_id,
                course_offering_id=course_offering_id,
                hours_per_week=hours_per_week,
                responsibilities=responsibilities,
            )
            self.assignments[assignment.id] = assignment
            return _copy(assignment)

    def get_assignment(self, assignment_id: str) -> Optional[TAAssignment]:
        return _copy(self.assignments.get(assignment_id))

    def list_assignments(self, *, user_id: Optional[str] = None, offering_id: Optional[str] = None) -> List[TAAssignment]:
        result = [
            _copy(a)
            for a in self.assignments.values()
            if (user_id is None or a.user_id == user_id)
            and (offering_id is None or a.course_offering_id == offering_id)
        ]
        result.sort(key=lambda a: a.created_at)
        return result

    def update_assignment(self, assignment_id: str, **fields: Any) -> Optional[TAAssignment]:
        with self._lock:
            assignment = self.assignments.get(assignment_id)
            if assignment is None:
                return None
            for key, value in fields.items():
                setattr(assignment, key, value)
            return _copy(assignment)

    def delete_assignment(self, assignment_id: str) -> bool:
        with self._lock:
            return self.assignments.pop(assignment_id, None) is not None

    def reassign_assignments(self, from_user_id: str, to_user_id: str) -> int:
        with self._lock:
            moved = 0
            for a in self.assignments.values():
                if a.user_id == from_user_id:
                    a.user_id = to_user_id
                    moved += 1
            return moved

    # --- Invitations -----------------------------------------------------------

    def create_invitation(
        self,
        *,
        email: str,
        invited_by: str,
        token: str,
        expires_at: datetime,
        role: str,
        claim_profile_id: Optional[str] = None,
        offering_id: Optional[str] = None,
    ) -> Invitation:
        with self._lock:
            if any(i.token == token for i in self.invitations.values()):
                raise ValueError("token_taken")
            inv = Invitation(
                id=_new_id(),
                email=email,
                invited_by=invited_by,
                token=token,
                expires_at=expires_at,
                role=role,
                claim_profile_id=claim_profile_id,
                offering_id=offering_id,
            )
            self.invitations[inv.id] = inv
            return _copy(inv)

    def get_invitation(self, invitation_id: str) -> Optional[Invitation]:
        return _copy(self.invitations.get(invitation_id))

    def get_invitation_by_token(self, token: str) -> Optional[Invitation]:
        for inv in self.invitations.values():
            if inv.token == token:
                return _copy(inv)
        return None

    def list_invitations(self, *, invited_by: Optional[str] = None, email: Optional[str] = None) -> List[Invitation]:
        needle = email.strip().lower() if email else None
        result = [
            _copy(i)
            for i in self.invitations.values()
            if (invited_by is None or i.invited_by == invited_by)
            and (needle is None or i.email.lower() == needle)
        ]
        result.sort(key=lambda i: i.created_at, reverse=True)
        return result

    def mark_invitation_used(self, invitation_id: str, used_at: datetime) -> bool:
        with self._lock:
            inv = self.invitations.get(invitation_id)
            if inv is None or inv.used_at is not None:
                return False
            inv.used_at = used_at
            return True

    def update_invitation(self, invitation_id: str, **fields: Any) -> Optional[Invitation]:
        with self._lock:
            inv = self.invitations.get(invitation_id)
            if inv is None:
                return None
            for key, value in fields.items():
                setattr(inv, key, value)
            return _copy(inv)

    def delete_invitation(self, invitation_id: str) -> bool:
        with self._lock:
            return self.invitations.pop(invitation_id, None) is not None

    def delete_expired_invitations(self, now: datetime) -> int:
        with self._lock:
            expired = [i.id for i in self.invitations.values() if i.used_at is None and i.expires_at <= now]
            for inv_id in expired:
                del self.invitations[inv_id]
            return len(expired)

    # --- Password reset tokens -------------------------------------------------

    def create_password_reset(self, *, user_id: str, token: str, expires_at: datetime) -> PasswordResetToken:
        with self._lock:
            if any(r.token == token for r in self.password_resets.values()):
                raise ValueError("token_taken")
            reset = PasswordResetToken(id=_new_id(), user_id=user_id, token=token, expires_at=expires_at)
            self.password_resets[reset.id] = reset
            return _copy(reset)

    def get_password_reset_by_token(self, token: str) -> Optional[PasswordResetToken]:
        for reset in self.password_resets.values():
            if reset.token == token:
                return _copy(reset)
        return None

    def mark_password_reset_used(self, reset_id: str, used_at: datetime) -> bool:
        with self._lock:
            reset = self.password_resets.get(reset_id)
            if reset is None or reset.used_at is not None:
                return False
            reset.used_at = used_at
            return True

    # --- Audit events ----------------------------------------------------------

    def add_audit_event(
        self,
        *,
        action: str,
        entity_type: str,
        user_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            id=_new_id(),
            action=action,
            entity_type=entity_type,
            user_id=user_id,
            entity_id=entity_id,
            metadata=dict(metadata or {}),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        with self._lock:
            self.audit_events.append(event)
        return _copy(event)

    def list_audit_events(
        self,
        *,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AuditEvent]:
        result = []
        for ev in self.audit_events:
            if user_id is not None and ev.user_id != user_id:
                continue
            if action is not None and ev.action != action:
                continue
            if entity_type is not None and ev.entity_type != entity_type:
                continue
            if entity_id is not None and ev.entity_id != entity_id:
                continue
            if since is not None and ev.created_at < since:
                continue
            if until is not None and ev.created_at > until:
                continue
            result.append(ev)
        # Newest first; insertion order breaks timestamp ties.
        ordered = [ev for _, ev in sorted(enumerate(result), key=lambda p: (p[1].created_at, p[0]), reverse=True)]
        return [_copy(ev) for ev in ordered[offset : offset + limit]]

    # --- Privacy settings ------------------------------------------------------

    def get_privacy_settings(self, user_id: str) -> Optional[PrivacySettings]:
        return _copy(self.privacy.get(user_id))

    def save_privacy_settings(self, settings: PrivacySettings) -> PrivacySettings:
        with self._lock:
            stored = replace(settings, updated_at=utcnow())
            self.privacy[settings.user_id] = stored
            return _copy(stored)

    def delete_privacy_settings(self, user_id: str) -> None:
        with self._lock:
            self.privacy.pop(user_id, None)


__all__ = ["InMemoryRecordsRepo"]
