"""
Public Head TA directory.

Only head TAs are listed. Every profile passes through the owner's privacy
settings before it leaves this module; users without stored settings get the
defaults (email hidden, everything else visible).
"""
from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Dict, List, Optional

from records.models import ROLE_HEAD_TA, PrivacySettings, User
from records.repo import RecordsRepo
from teaching.semesters import season_order

from .cache import DIRECTORY_CACHE, TTL_LONG, TTL_MEDIUM, TTLCache

logger = logging.getLogger("wuheadtas.directory")

CACHE_PREFIX = "directory:"
DEFAULT_LIMIT = 50
MAX_LIMIT = 100


def _listable(user: User) -> bool:
    # A claimed profile has been merged into its claimer's account.
    return user.role == ROLE_HEAD_TA and not (user.is_unclaimed and user.claimed_by)


@dataclass
class PublicDirectory:
    repo: RecordsRepo
    cache: TTLCache = field(default_factory=lambda: DIRECTORY_CACHE)

    def invalidate(self) -> None:
        dropped = self.cache.clear_prefix(CACHE_PREFIX)
        logger.debug("Directory cache invalidated (%s entries)", dropped)

    def _privacy(self, user_id: str) -> PrivacySettings:
        return self.repo.get_privacy_settings(user_id) or PrivacySettings(user_id=user_id)

    def _courses(self, user_id: str) -> List[Dict[str, Any]]:
        entries = []
        for record in self.repo.list_assignments(user_id=user_id):
            offering = self.repo.get_offering(record.course_offering_id)
            if offering is None:
                continue
            course = self.repo.get_course(offering.course_id)
            if course is None:
                continue
            prof = self.repo.get_professor(offering.professor_id)
            entries.append(
                {
                    "course_number": course.course_number,
                    "course_name": course.course_name,
                    "semester": offering.semester,
                    "year": offering.year,
                    "season": offering.season,
                    "professor": prof.full_name if prof else None,
                }
            )
        entries.sort(key=lambda e: (e["year"], season_order(e["season"])), reverse=True)
        return entries

    def _public_view(self, user: User, privacy: PrivacySettings) -> Dict[str, Any]:
        show_email = privacy.show_email and not user.has_placeholder_email
        return {
            "id": user.id,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "email": user.email if show_email else None,
            "grad_year": user.grad_year if privacy.show_grad_year else None,
            "degree_program": user.degree_program,
            "current_role": user.current_role,
            "location": user.location if privacy.show_location else None,
            "linkedin_url": user.linkedin_url if privacy.show_linkedin else None,
            "personal_site": user.personal_site if privacy.show_personal_site else None,
            "is_unclaimed": user.is_unclaimed,
            "allow_contact": privacy.allow_contact,
            "courses": self._courses(user.id) if privacy.show_courses else [],
        }

    def list_profiles(
        self,
        *,
        query: Optional[str] = None,
        grad_year: Optional[int] = None,
        location: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        limit = max(1, min(int(limit), MAX_LIMIT))
        offset = max(0, int(offset))
        key = CACHE_PREFIX + "list:" + json.dumps(
            {"q": query, "grad_year": grad_year, "location": location, "limit": limit, "offset": offset},
            sort_keys=True,
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        needle = (query or "").strip().lower()
        matches: List[Dict[str, Any]] = []
        # Repository order is last name, then first name.
        for user in self.repo.list_users(role=ROLE_HEAD_TA):
            if not _listable(user):
                continue
            privacy = self._privacy(user.id)
            if not privacy.appear_in_directory:
                continue
            visible_location = user.location if privacy.show_location else None
            visible_year = user.grad_year if privacy.show_grad_year else None
            if needle and not any(
                needle in (value or "").lower() for value in (user.first_name, user.last_name, visible_location)
            ):
                continue
            if grad_year is not None and visible_year != grad_year:
                continue
            if location and visible_location != location:
                continue
            matches.append(self._public_view(user, privacy))

        page = matches[offset : offset + limit]
        self.cache.set(key, page, TTL_MEDIUM)
        return page

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = self.repo.get_user(user_id)
        if user is None or not _listable(user):
            return None
        privacy = self._privacy(user.id)
        if not privacy.appear_in_directory:
            return None
        return self._public_view(user, privacy)

    def directory_stats(self) -> Dict[str, Any]:
        key = CACHE_PREFIX + "stats"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        locations = set()
        grad_years = set()
        for user in self.repo.list_users(role=ROLE_HEAD_TA):
            if not _listable(user):
                continue
            privacy = self._privacy(user.id)
            if not privacy.appear_in_directory:
                continue
            if user.location and privacy.show_location:
                locations.add(user.location)
            if user.grad_year and privacy.show_grad_year:
                grad_years.add(user.grad_year)
        stats = {"locations": sorted(locations), "grad_years": sorted(grad_years, reverse=True)}
        self.cache.set(key, stats, TTL_LONG)
        return stats


__all__ = ["PublicDirectory", "CACHE_PREFIX"]
