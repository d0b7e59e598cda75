"""
Global search across users, courses and professors.

Scoring starts at 100 per hit; exact matches weigh more than partial ones,
and courses and professors with more activity get a small bonus. Results of
all kinds are merged and sorted by score.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from records.models import ROLE_ADMIN
from records.repo import RecordsRepo
from teaching.semesters import season_order

KIND_USER = "user"
KIND_COURSE = "course"
KIND_PROFESSOR = "professor"
SEARCH_KINDS = (KIND_USER, KIND_COURSE, KIND_PROFESSOR)

DEFAULT_LIMIT = 20


@dataclass
class SearchResult:
    kind: str
    id: str
    title: str
    subtitle: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _contains(value: Optional[str], needle: str) -> bool:
    return bool(value) and needle in value.lower()


def search_users(repo: RecordsRepo, query: str, include_private: bool = False) -> List[SearchResult]:
    needle = query.strip().lower()
    results = []
    for user in repo.list_users():
        if user.is_unclaimed and user.claimed_by:
            continue
        full_name = user.full_name
        fields = [user.first_name, user.last_name, user.current_role, user.degree_program, user.location, full_name]
        if include_private:
            fields.append(user.email)
        if not any(_contains(v, needle) for v in fields):
            continue
        score = 100
        if include_private and user.email.lower() == needle:
            score += 50
        if full_name.lower() == needle:
            score += 40
        if _contains(user.first_name, needle):
            score += 20
        if _contains(user.last_name, needle):
            score += 20
        if include_private and _contains(user.email, needle):
            score += 15
        metadata: Dict[str, Any] = {
            "grad_year": user.grad_year,
            "degree_program": user.degree_program,
            "role": user.role,
        }
        if include_private:
            metadata.update(email=user.email, current_role=user.current_role, location=user.location)
        results.append(
            SearchResult(
                kind=KIND_USER,
                id=user.id,
                title=full_name,
                subtitle="Administrator" if user.role == ROLE_ADMIN else "Head TA",
                score=score,
                metadata=metadata,
            )
        )
    return results


def search_courses(repo: RecordsRepo, query: str) -> List[SearchResult]:
    needle = query.strip().lower()
    results = []
    for course in repo.list_courses():
        label = f"{course.course_number} - {course.course_name}"
        if not (_contains(course.course_number, needle) or _contains(course.course_name, needle) or _contains(label, needle)):
            continue
        offerings = repo.list_offerings(course_id=course.id)
        tas = {a.user_id for o in offerings for a in repo.list_assignments(offering_id=o.id)}
        latest = max(offerings, key=lambda o: (o.year, season_order(o.season)), default=None)
        score = 100
        if course.course_number.lower() == needle:
            score += 60
        if _contains(course.course_number, needle):
            score += 30
        if _contains(course.course_name, needle):
            score += 20
        score += min(len(tas) * 2, 20)
        results.append(
            SearchResult(
                kind=KIND_COURSE,
                id=course.id,
                title=label,
                subtitle=f"Last offered: {latest.semester}" if latest else "Not recently offered",
                score=score,
                metadata={"course_number": course.course_number, "total_tas": len(tas)},
            )
        )
    return results


def search_professors(repo: RecordsRepo, query: str) -> List[SearchResult]:
    needle = query.strip().lower()
    results = []
    for prof in repo.list_professors():
        full_name = prof.full_name
        if not any(_contains(v, needle) for v in (prof.first_name, prof.last_name, prof.email, full_name)):
            continue
        offerings = repo.list_offerings(professor_id=prof.id)
        latest = max(offerings, key=lambda o: (o.year, season_order(o.season)), default=None)
        latest_course = repo.get_course(latest.course_id) if latest else None
        score = 100
        if prof.email.lower() == needle:
            score += 50
        if full_name.lower() == needle:
            score += 40
        if _contains(prof.first_name, needle):
            score += 20
        if _contains(prof.last_name, needle):
            score += 20
        score += min(len(offerings) * 3, 30)
        results.append(
            SearchResult(
                kind=KIND_PROFESSOR,
                id=prof.id,
                title=full_name,
                subtitle=(
                    f"{latest_course.course_number} - {latest_course.course_name}"
                    if latest_course
                    else "No courses assigned"
                ),
                score=score,
                metadata={"email": prof.email, "total_courses": len(offerings)},
            )
        )
    return results


def search(
    repo: RecordsRepo,
    query: str,
    kinds: Optional[Iterable[str]] = None,
    limit: int = DEFAULT_LIMIT,
    include_private: bool = False,
) -> List[SearchResult]:
    if not query or not query.strip():
        return []
    wanted = set(kinds or SEARCH_KINDS)
    unknown = wanted - set(SEARCH_KINDS)
    if unknown:
        raise ValueError("invalid_kind")
    results: List[SearchResult] = []
    if KIND_USER in wanted:
        results.extend(search_users(repo, query, include_private))
    if KIND_COURSE in wanted:
        results.extend(search_courses(repo, query))
    if KIND_PROFESSOR in wanted:
        results.extend(search_professors(repo, query))
    results.sort(key=lambda r: r.score, reverse=True)
    return results[: max(1, limit)]


def search_suggestions(repo: RecordsRepo, partial: str, kind: Optional[str] = None, limit: int = 5) -> List[str]:
    """Prefix completions; nothing for inputs shorter than two characters."""
    prefix = (partial or "").strip().lower()
    if len(prefix) < 2:
        return []
    out: List[str] = []
    if kind in (None, KIND_COURSE):
        out.extend(
            sorted({c.course_number for c in repo.list_courses() if c.course_number.lower().startswith(prefix)})[:limit]
        )
    if kind in (None, KIND_USER):
        names = {
            u.full_name
            for u in repo.list_users()
            if u.first_name.lower().startswith(prefix) or u.last_name.lower().startswith(prefix)
        }
        out.extend(sorted(names)[:limit])
    if kind in (None, KIND_PROFESSOR):
        names = {
            p.full_name
            for p in repo.list_professors()
            if p.first_name.lower().startswith(prefix) or p.last_name.lower().startswith(prefix)
        }
        out.extend(sorted(names)[:limit])
    return out


__all__ = ["SearchResult", "search", "search_suggestions", "SEARCH_KINDS"]
