"""
Record types shared by every bounded context (users, catalog, HTA records,
invitations, audit events, privacy settings).

Design:
    Plain dataclasses without ORM coupling. Repositories return these types;
    services and web adapters never see database rows. Timestamps are
    timezone-aware UTC datetimes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

ROLE_ADMIN = "admin"
ROLE_HEAD_TA = "head_ta"

SEASONS = ("fall", "spring", "summer")

# Password hash marker for profiles created on behalf of historical TAs.
UNCLAIMED_PASSWORD_HASH = "UNCLAIMED_PROFILE"
PLACEHOLDER_EMAIL_DOMAIN = "@placeholder.edu"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    email: str
    password_hash: str
    first_name: str
    last_name: str
    role: str = ROLE_HEAD_TA
    grad_year: Optional[int] = None
    degree_program: Optional[str] = None
    current_role: Optional[str] = None
    linkedin_url: Optional[str] = None
    personal_site: Optional[str] = None
    location: Optional[str] = None
    invited_by: Optional[str] = None
    is_unclaimed: bool = False
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    recorded_by: Optional[str] = None
    recorded_at: Optional[datetime] = None
    invitation_sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def has_placeholder_email(self) -> bool:
        return self.email.lower().endswith(PLACEHOLDER_EMAIL_DOMAIN)


@dataclass
class Course:
    id: str
    course_number: str
    course_name: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Professor:
    id: str
    first_name: str
    last_name: str
    email: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class CourseOffering:
    id: str
    course_id: str
    professor_id: str
    semester: str
    year: int
    season: str
    updated_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class TAAssignment:
    """A head-TA record: one user serving one course offering."""

    id: str
    user_id: str
    course_offering_id: str
    hours_per_week: Optional[int] = None
    responsibilities: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Invitation:
    id: str
    email: str
    invited_by: str
    token: str
    expires_at: datetime
    role: str = ROLE_HEAD_TA
    used_at: Optional[datetime] = None
    claim_profile_id: Optional[str] = None
    offering_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_active(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now


@dataclass
class PasswordResetToken:
    id: str
    user_id: str
    token: str
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_active(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now


@dataclass
class AuditEvent:
    id: str
    action: str
    entity_type: str
    user_id: Optional[str] = None
    entity_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class PrivacySettings:
    user_id: str
    show_email: bool = False
    show_grad_year: bool = True
    show_location: bool = True
    show_linkedin: bool = True
    show_personal_site: bool = True
    show_courses: bool = True
    appear_in_directory: bool = True
    allow_contact: bool = True
    updated_at: datetime = field(default_factory=utcnow)


__all__ = [
    "ROLE_ADMIN",
    "ROLE_HEAD_TA",
    "SEASONS",
    "UNCLAIMED_PASSWORD_HASH",
    "PLACEHOLDER_EMAIL_DOMAIN",
    "utcnow",
    "User",
    "Course",
    "Professor",
    "CourseOffering",
    "TAAssignment",
    "Invitation",
    "PasswordResetToken",
    "AuditEvent",
    "PrivacySettings",
]
