"""
Repository port for all persisted records.

Services depend on this protocol only; the web layer picks an implementation
(`InMemoryRecordsRepo` for dev/tests, `DBRecordsRepo` for Postgres).

Conventions:
    - Lookups return None when a row does not exist.
    - Unique-constraint violations raise `ValueError("<field>_taken")`.
    - `update_*` methods accept keyword fields and return the updated record
      (or None when missing).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Protocol

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
)


class RecordsRepo(Protocol):
    # Users
    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def list_users(
        self,
        *,
        role: Optional[str] = None,
        is_unclaimed: Optional[bool] = None,
        query: Optional[str] = None,
    ) -> List[User]: ...

    def create_user(self, *, email: str, password_hash: str, first_name: str, last_name: str, **fields: Any) -> User: ...

    def update_user(self, user_id: str, **fields: Any) -> Optional[User]: ...

    def delete_user(self, user_id: str) -> bool: ...

    def list_invitees(self, inviter_id: str) -> List[User]: ...

    # Courses
    def create_course(self, *, course_number: str, course_name: str) -> Course: ...

    def get_course(self, course_id: str) -> Optional[Course]: ...

    def get_course_by_number(self, course_number: str) -> Optional[Course]: ...

    def list_courses(self) -> List[Course]: ...

    def update_course(self, course_id: str, **fields: Any) -> Optional[Course]: ...

    def delete_course(self, course_id: str) -> bool: ...

    # Professors
    def create_professor(self, *, first_name: str, last_name: str, email: str) -> Professor: ...

    def get_professor(self, professor_id: str) -> Optional[Professor]: ...

    def get_professor_by_email(self, email: str) -> Optional[Professor]: ...

    def list_professors(self) -> List[Professor]: ...

    def update_professor(self, professor_id: str, **fields: Any) -> Optional[Professor]: ...

    def delete_professor(self, professor_id: str) -> bool: ...

    # Course offerings
    def create_offering(
        self,
        *,
        course_id: str,
        professor_id: str,
        year: int,
        season: str,
        semester: str,
        updated_by: Optional[str] = None,
    ) -> CourseOffering: ...

    def get_offering(self, offering_id: str) -> Optional[CourseOffering]: ...

    def list_offerings(
        self,
        *,
        course_id: Optional[str] = None,
        professor_id: Optional[str] = None,
        year: Optional[int] = None,
        season: Optional[str] = None,
    ) -> List[CourseOffering]: ...

    def update_offering(self, offering_id: str, **fields: Any) -> Optional[CourseOffering]: ...

    def delete_offering(self, offering_id: str) -> bool: ...

    # TA assignments (HTA records)
    def create_assignment(
        self,
        *,
        user_id: str,
        course_offering_id: str,
        hours_per_week: Optional[int] = None,
        responsibilities: Optional[str] = None,
    ) -> TAAssignment: ...

    def get_assignment(self, assignment_id: str) -> Optional[TAAssignment]: ...

    def list_assignments(self, *, user_id: Optional[str] = None, offering_id: Optional[str] = None) -> List[TAAssignment]: ...

    def update_assignment(self, assignment_id: str, **fields: Any) -> Optional[TAAssignment]: ...

    def delete_assignment(self, assignment_id: str) -> bool: ...

    def reassign_assignments(self, from_user_id: str, to_user_id: str) -> int: ...

    # Invitations
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
    ) -> Invitation: ...

    def get_invitation(self, invitation_id: str) -> Optional[Invitation]: ...

    def get_invitation_by_token(self, token: str) -> Optional[Invitation]: ...

    def list_invitations(self, *, invited_by: Optional[str] = None, email: Optional[str] = None) -> List[Invitation]: ...

    def mark_invitation_used(self, invitation_id: str, used_at: datetime) -> bool: ...

    def update_invitation(self, invitation_id: str, **fields: Any) -> Optional[Invitation]: ...

    def delete_invitation(self, invitation_id: str) -> bool: ...

    def delete_expired_invitations(self, now: datetime) -> int: ...

    # Password reset tokens
    def create_password_reset(self, *, user_id: str, token: str, expires_at: datetime) -> PasswordResetToken: ...

    def get_password_reset_by_token(self, token: str) -> Optional[PasswordResetToken]: ...

    def mark_password_reset_used(self, reset_id: str, used_at: datetime) -> bool: ...

    # Audit events
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
    ) -> AuditEvent: ...

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
    ) -> List[AuditEvent]: ...

    # Privacy settings
    def get_privacy_settings(self, user_id: str) -> Optional[PrivacySettings]: ...

    def save_privacy_settings(self, settings: PrivacySettings) -> PrivacySettings: ...

    def delete_privacy_settings(self, user_id: str) -> None: ...


__all__ = ["RecordsRepo"]
