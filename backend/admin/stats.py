"""
System-wide statistics for the admin dashboard.

Computed in Python over repository listings; the department-scale data set
(hundreds of users, a few thousand records) keeps this cheap.
"""
from __future__ import annotations

import calendar
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Tuple

from records.models import ROLE_ADMIN, ROLE_HEAD_TA, utcnow
from records.repo import RecordsRepo

DEFAULT_HOURS_PER_RECORD = 10
TOP_N = 5
GROWTH_MONTHS = 6


class ActiveSessionCounter(Protocol):
    def count_all_active(self) -> int: ...


def system_stats(repo: RecordsRepo, sessions: ActiveSessionCounter, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)

    all_users = repo.list_users()
    registered = [u for u in all_users if not u.is_unclaimed]
    users_by_id = {u.id: u for u in all_users}
    courses = repo.list_courses()
    offerings = repo.list_offerings()
    assignments = repo.list_assignments()
    invitations = repo.list_invitations()
    offering_course = {o.id: o.course_id for o in offerings}

    # Distinct TAs per course
    tas_per_course: Dict[str, set] = defaultdict(set)
    for a in assignments:
        course_id = offering_course.get(a.course_offering_id)
        if course_id:
            tas_per_course[course_id].add(a.user_id)
    courses_with_tas = [c for c in courses if tas_per_course.get(c.id)]
    popular = sorted(courses_with_tas, key=lambda c: (-len(tas_per_course[c.id]), c.course_number))[:TOP_N]

    hours_by_user: Dict[str, int] = defaultdict(int)
    records_by_user: Counter = Counter()
    for a in assignments:
        hours_by_user[a.user_id] += a.hours_per_week if a.hours_per_week is not None else DEFAULT_HOURS_PER_RECORD
        records_by_user[a.user_id] += 1
    avg_workload = (sum(hours_by_user.values()) / len(hours_by_user)) if hours_by_user else 0.0

    invites_by_user = Counter(inv.invited_by for inv in invitations)

    def _user_entry(user_id: str, count: int) -> Dict[str, Any]:
        user = users_by_id.get(user_id)
        return {"id": user_id, "name": user.full_name if user else None, "count": count}

    return {
        "totals": {
            "users": len(registered),
            "admins": sum(1 for u in registered if u.role == ROLE_ADMIN),
            "head_tas": sum(1 for u in registered if u.role == ROLE_HEAD_TA),
            "unclaimed_profiles": sum(1 for u in all_users if u.is_unclaimed and not u.claimed_by),
            "courses": len(courses),
            "professors": len(repo.list_professors()),
            "offerings": len(offerings),
            "assignments": len(assignments),
            "active_sessions": int(sessions.count_all_active()),
            "pending_invitations": sum(1 for inv in invitations if inv.is_active(now)),
        },
        "recent_activity": {
            "new_users_last_7_days": sum(1 for u in registered if u.created_at >= week_ago),
            "new_users_last_30_days": sum(1 for u in registered if u.created_at >= month_ago),
            "new_assignments_last_7_days": sum(1 for a in assignments if a.created_at >= week_ago),
            "new_assignments_last_30_days": sum(1 for a in assignments if a.created_at >= month_ago),
        },
        "course_stats": {
            "courses_without_tas": len(courses) - len(courses_with_tas),
            "average_tas_per_course": round(
                sum(len(tas_per_course[c.id]) for c in courses) / len(courses), 2
            ) if courses else 0.0,
            "popular_courses": [
                {
                    "id": c.id,
                    "course_number": c.course_number,
                    "course_name": c.course_name,
                    "ta_count": len(tas_per_course[c.id]),
                }
                for c in popular
            ],
        },
        "user_stats": {
            "average_workload_hours": round(avg_workload, 2),
            "most_active_users": [_user_entry(uid, n) for uid, n in records_by_user.most_common(TOP_N)],
            "top_inviters": [_user_entry(uid, n) for uid, n in invites_by_user.most_common(TOP_N)],
        },
    }


def _recent_months(now: datetime, months: int) -> List[Tuple[int, int]]:
    year, month = now.year, now.month
    out: List[Tuple[int, int]] = []
    for _ in range(months):
        out.append((year, month))
        year, month = (year, month - 1) if month > 1 else (year - 1, 12)
    return list(reversed(out))


def user_growth(repo: RecordsRepo, now: Optional[datetime] = None, months: int = GROWTH_MONTHS) -> Dict[str, Any]:
    """New registered users per calendar month, oldest month first.

    Months without signups are present with 0; unclaimed profiles do not count.
    """
    now = now or utcnow()
    buckets = _recent_months(now, max(1, months))
    counts: Counter = Counter()
    for u in repo.list_users():
        if u.is_unclaimed:
            continue
        counts[(u.created_at.year, u.created_at.month)] += 1
    return {
        "labels": [f"{calendar.month_abbr[m]} {y}" for y, m in buckets],
        "datasets": [{"label": "New Users", "data": [counts[b] for b in buckets]}],
    }


__all__ = ["system_stats", "user_growth", "DEFAULT_HOURS_PER_RECORD", "GROWTH_MONTHS"]
