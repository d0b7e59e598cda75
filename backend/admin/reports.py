"""
Admin data exports.

Each report is a flat list of rows (dicts with the same keys in the same
order), rendered as CSV or JSON by the route. The audit-log report carries
nested metadata and is only offered as JSON.

Reports:
    user-roster        registered users and unclaimed profiles
    ta-assignments     every Head TA record with course and professor
    course-coverage    every offering with its TA count
    invitation-status  every invitation with Accepted / Expired / Pending
    audit-log          the newest AUDIT_LOG_LIMIT audit events
    user-activity      registered users with days since their last update
"""
from __future__ import annotations

import csv
from datetime import datetime
import io
from typing import Any, Callable, Dict, List, Optional

from onboarding.invitations import invitation_status
from records.models import utcnow
from records.repo import RecordsRepo

REPORT_IDS = (
    "user-roster",
    "ta-assignments",
    "course-coverage",
    "invitation-status",
    "audit-log",
    "user-activity",
)
JSON_ONLY_REPORTS = frozenset({"audit-log"})
REPORT_FORMATS = ("csv", "json")
AUDIT_LOG_LIMIT = 1000
ACTIVE_WITHIN_DAYS = 30

Row = Dict[str, Any]


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _user_roster(repo: RecordsRepo, now: datetime) -> List[Row]:
    users = sorted(repo.list_users(), key=lambda u: (u.last_name.lower(), u.first_name.lower()))
    return [
        {
            "id": u.id,
            "first_name": u.first_name,
            "last_name": u.last_name,
            "email": u.email,
            "role": u.role,
            "grad_year": u.grad_year,
            "degree_program": u.degree_program,
            "current_role": u.current_role,
            "location": u.location,
            "unclaimed": u.is_unclaimed,
            "created_at": _ts(u.created_at),
        }
        for u in users
    ]


def _ta_assignments(repo: RecordsRepo, now: datetime) -> List[Row]:
    users = {u.id: u for u in repo.list_users()}
    offerings = {o.id: o for o in repo.list_offerings()}
    courses = {c.id: c for c in repo.list_courses()}
    professors = {p.id: p for p in repo.list_professors()}
    rows: List[Row] = []
    for a in repo.list_assignments():
        user = users.get(a.user_id)
        offering = offerings.get(a.course_offering_id)
        course = courses.get(offering.course_id) if offering else None
        professor = professors.get(offering.professor_id) if offering else None
        rows.append(
            {
                "id": a.id,
                "head_ta": user.full_name if user else None,
                "email": user.email if user else None,
                "course_number": course.course_number if course else None,
                "course_name": course.course_name if course else None,
                "semester": offering.semester if offering else None,
                "professor": professor.full_name if professor else None,
                "hours_per_week": a.hours_per_week,
                "responsibilities": a.responsibilities,
                "created_at": _ts(a.created_at),
            }
        )
    rows.sort(key=lambda r: (r["course_number"] or "", r["semester"] or "", r["head_ta"] or ""))
    return rows


def _course_coverage(repo: RecordsRepo, now: datetime) -> List[Row]:
    courses = {c.id: c for c in repo.list_courses()}
    professors = {p.id: p for p in repo.list_professors()}
    ta_counts: Dict[str, int] = {}
    for a in repo.list_assignments():
        ta_counts[a.course_offering_id] = ta_counts.get(a.course_offering_id, 0) + 1
    rows: List[Row] = []
    for o in repo.list_offerings():
        course = courses.get(o.course_id)
        professor = professors.get(o.professor_id)
        count = ta_counts.get(o.id, 0)
        rows.append(
            {
                "offering_id": o.id,
                "course_number": course.course_number if course else None,
                "course_name": course.course_name if course else None,
                "semester": o.semester,
                "professor": professor.full_name if professor else None,
                "ta_count": count,
                "status": "No TAs" if count == 0 else f"{count} TA(s)",
            }
        )
    rows.sort(key=lambda r: (r["course_number"] or "", r["semester"] or ""))
    return rows


def _invitation_status(repo: RecordsRepo, now: datetime) -> List[Row]:
    users = {u.id: u for u in repo.list_users()}
    invitations = sorted(repo.list_invitations(), key=lambda inv: inv.created_at, reverse=True)
    rows: List[Row] = []
    for inv in invitations:
        inviter = users.get(inv.invited_by)
        rows.append(
            {
                "id": inv.id,
                "email": inv.email,
                "role": inv.role,
                "invited_by": inviter.full_name if inviter else None,
                "status": invitation_status(inv, now).capitalize(),
                "created_at": _ts(inv.created_at),
                "expires_at": _ts(inv.expires_at),
                "used_at": _ts(inv.used_at),
            }
        )
    return rows


def _audit_log(repo: RecordsRepo, now: datetime) -> List[Row]:
    return [
        {
            "id": ev.id,
            "action": ev.action,
            "entity_type": ev.entity_type,
            "entity_id": ev.entity_id,
            "user_id": ev.user_id,
            "metadata": dict(ev.metadata or {}),
            "ip_address": ev.ip_address,
            "user_agent": ev.user_agent,
            "created_at": _ts(ev.created_at),
        }
        for ev in repo.list_audit_events(limit=AUDIT_LOG_LIMIT)
    ]


def _user_activity(repo: RecordsRepo, now: datetime) -> List[Row]:
    rows: List[Row] = []
    users = sorted(repo.list_users(is_unclaimed=False), key=lambda u: u.updated_at, reverse=True)
    for u in users:
        days = max(0, (now - u.updated_at).days)
        rows.append(
            {
                "id": u.id,
                "name": u.full_name,
                "email": u.email,
                "role": u.role,
                "last_activity": _ts(u.updated_at),
                "days_since_last_activity": days,
                "status": "Active" if days < ACTIVE_WITHIN_DAYS else "Inactive",
            }
        )
    return rows


_BUILDERS: Dict[str, Callable[[RecordsRepo, datetime], List[Row]]] = {
    "user-roster": _user_roster,
    "ta-assignments": _ta_assignments,
    "course-coverage": _course_coverage,
    "invitation-status": _invitation_status,
    "audit-log": _audit_log,
    "user-activity": _user_activity,
}


def report_format(report_id: str, requested: Optional[str]) -> str:
    """Effective output format; raises ValueError(`invalid_format`)."""
    if report_id in JSON_ONLY_REPORTS:
        return "json"
    fmt = (requested or "csv").strip().lower()
    if fmt not in REPORT_FORMATS:
        raise ValueError("invalid_format")
    return fmt


def generate_report(repo: RecordsRepo, report_id: str, now: Optional[datetime] = None) -> List[Row]:
    builder = _BUILDERS.get(report_id)
    if builder is None:
        raise ValueError("invalid_report")
    return builder(repo, now or utcnow())


def to_csv(rows: List[Row]) -> str:
    """Header row from the first row's keys; an empty report is an empty string."""
    if not rows:
        return ""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(rows[0].keys()), lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue()


def report_filename(report_id: str, fmt: str, now: Optional[datetime] = None) -> str:
    return f"{report_id}-{(now or utcnow()).date().isoformat()}.{fmt}"


__all__ = [
    "REPORT_IDS",
    "JSON_ONLY_REPORTS",
    "AUDIT_LOG_LIMIT",
    "generate_report",
    "report_filename",
    "report_format",
    "to_csv",
]
