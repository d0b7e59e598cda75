"""
Course catalog: courses, professors and their semester offerings.

Permissions are enforced by the web adapter (admin-only writes); this service
owns validation and the business rules around offerings.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

from audit import audit_log
from audit.audit_log import AuditLogger
from records.models import SEASONS, Course, CourseOffering, Professor, utcnow
from records.repo import RecordsRepo
from records.validation import (
    COURSE_NUMBER_RE,
    MAX_COURSE_NAME_LENGTH,
    MAX_OFFERING_YEAR,
    MIN_OFFERING_YEAR,
    is_valid_email,
    normalize_email,
    normalize_name,
)

from .prediction import PredictedOffering, predict_course_offerings
from .semesters import format_semester

logger = logging.getLogger("wuheadtas.teaching")

_UNSET = object()

MAX_PAST_YEARS = 10
MAX_FUTURE_YEARS = 2
PROFESSOR_LOAD_WARNING = 3
SEASON_SHARE_WARNING = 0.8


class OfferingValidationError(ValueError):
    def __init__(self, errors: List[str]) -> None:
        super().__init__("invalid_offering")
        self.errors = errors


@dataclass
class OfferingValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class HistoricalOffering:
    course_id: str
    professor_id: str
    year: int
    season: str


@dataclass
class HistoricalOfferingsResult:
    created: int = 0
    skipped: int = 0
    offerings: List[CourseOffering] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


def _normalize_course_number(value: str) -> str:
    cleaned = (value or "").strip().upper()
    if not COURSE_NUMBER_RE.match(cleaned):
        raise ValueError("invalid_course_number")
    return cleaned


@dataclass
class CatalogService:
    repo: RecordsRepo
    audit_logger: Optional[AuditLogger] = None
    clock: Callable[[], datetime] = utcnow

    def _audit(self, action: str, entity_type: str, actor_id: Optional[str], entity_id: str, **meta: Any) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(action, entity_type, user_id=actor_id, entity_id=entity_id, metadata=meta)

    # --- Courses ---------------------------------------------------------------------

    def create_course(self, *, course_number: str, course_name: str, actor_id: Optional[str] = None) -> Course:
        number = _normalize_course_number(course_number)
        name = normalize_name(course_name, code="invalid_course_name", max_length=MAX_COURSE_NAME_LENGTH)
        course = self.repo.create_course(course_number=number, course_name=name)
        self._audit(audit_log.COURSE_CREATED, audit_log.ENTITY_COURSE, actor_id, course.id, course_name=name)
        return course

    def update_course(
        self,
        course_id: str,
        *,
        course_number: Any = _UNSET,
        course_name: Any = _UNSET,
        actor_id: Optional[str] = None,
    ) -> Course:
        fields: Dict[str, Any] = {}
        if course_number is not _UNSET:
            fields["course_number"] = _normalize_course_number(course_number)
        if course_name is not _UNSET:
            fields["course_name"] = normalize_name(
                course_name, code="invalid_course_name", max_length=MAX_COURSE_NAME_LENGTH
            )
        course = self.repo.update_course(course_id, **fields)
        if course is None:
            raise LookupError("course_not_found")
        self._audit(audit_log.COURSE_UPDATED, audit_log.ENTITY_COURSE, actor_id, course_id, fields=sorted(fields))
        return course

    def delete_course(self, course_id: str, *, actor_id: Optional[str] = None) -> None:
        if self.repo.get_course(course_id) is None:
            raise LookupError("course_not_found")
        if self.repo.list_offerings(course_id=course_id):
            raise ValueError("course_has_offerings")
        self.repo.delete_course(course_id)
        self._audit(audit_log.COURSE_DELETED, audit_log.ENTITY_COURSE, actor_id, course_id)

    # --- Professors ------------------------------------------------------------------

    def create_professor(
        self, *, first_name: str, last_name: str, email: str, actor_id: Optional[str] = None
    ) -> Professor:
        first = normalize_name(first_name, code="invalid_first_name")
        last = normalize_name(last_name, code="invalid_last_name")
        if not is_valid_email(email):
            raise ValueError("invalid_email")
        prof = self.repo.create_professor(first_name=first, last_name=last, email=normalize_email(email))
        self._audit(audit_log.PROFESSOR_CREATED, audit_log.ENTITY_PROFESSOR, actor_id, prof.id)
        return prof

    def update_professor(
        self,
        professor_id: str,
        *,
        first_name: Any = _UNSET,
        last_name: Any = _UNSET,
        email: Any = _UNSET,
        actor_id: Optional[str] = None,
    ) -> Professor:
        fields: Dict[str, Any] = {}
        if first_name is not _UNSET:
            fields["first_name"] = normalize_name(first_name, code="invalid_first_name")
        if last_name is not _UNSET:
            fields["last_name"] = normalize_name(last_name, code="invalid_last_name")
        if email is not _UNSET:
            if not is_valid_email(email):
                raise ValueError("invalid_email")
            fields["email"] = normalize_email(email)
        prof = self.repo.update_professor(professor_id, **fields)
        if prof is None:
            raise LookupError("professor_not_found")
        self._audit(audit_log.PROFESSOR_UPDATED, audit_log.ENTITY_PROFESSOR, actor_id, professor_id)
        return prof

    def delete_professor(self, professor_id: str, *, actor_id: Optional[str] = None) -> None:
        if self.repo.get_professor(professor_id) is None:
            raise LookupError("professor_not_found")
        if self.repo.list_offerings(professor_id=professor_id):
            raise ValueError("professor_has_offerings")
        self.repo.delete_professor(professor_id)
        self._audit(audit_log.PROFESSOR_DELETED, audit_log.ENTITY_PROFESSOR, actor_id, professor_id)

    # --- Offerings -------------------------------------------------------------------

    def validate_course_offering(
        self,
        course_id: str,
        professor_id: Optional[str],
        year: int,
        season: str,
        *,
        now: Optional[datetime] = None,
        exclude_offering_id: Optional[str] = None,
    ) -> OfferingValidation:
        errors: List[str] = []
        warnings: List[str] = []
        current_year = (now or self.clock()).year

        if year < current_year - MAX_PAST_YEARS:
            errors.append("Year is too far in the past (more than 10 years)")
        elif year > current_year + MAX_FUTURE_YEARS:
            errors.append("Year is too far in the future (more than 2 years)")
        if season not in SEASONS:
            errors.append("Invalid season. Must be fall, spring, or summer")

        history = [o for o in self.repo.list_offerings(course_id=course_id) if o.id != exclude_offering_id]
        if any(o.year == year and o.season == season for o in history):
            errors.append("Course offering already exists for this semester")

        if len(history) >= 3:
            total = len(history)
            for pattern in ("fall", "spring", "summer"):
                share = sum(1 for o in history if o.season == pattern) / total
                if share > SEASON_SHARE_WARNING and season != pattern:
                    warnings.append(f"Course is typically only offered in {pattern}")
                    break

        if professor_id:
            load = [
                o
                for o in self.repo.list_offerings(professor_id=professor_id, year=year, season=season)
                if o.id != exclude_offering_id
            ]
            if len(load) >= PROFESSOR_LOAD_WARNING:
                warnings.append("Professor already has 3 or more courses this semester")

        return OfferingValidation(is_valid=not errors, errors=errors, warnings=warnings)

    def _check_refs(self, course_id: str, professor_id: str) -> None:
        if self.repo.get_course(course_id) is None:
            raise LookupError("course_not_found")
        if self.repo.get_professor(professor_id) is None:
            raise LookupError("professor_not_found")

    def create_offering(
        self,
        *,
        course_id: str,
        professor_id: str,
        year: int,
        season: str,
        actor_id: Optional[str] = None,
    ) -> CourseOffering:
        if year < MIN_OFFERING_YEAR or year > MAX_OFFERING_YEAR:
            raise ValueError("invalid_year")
        self._check_refs(course_id, professor_id)
        check = self.validate_course_offering(course_id, professor_id, year, season)
        if not check.is_valid:
            raise OfferingValidationError(check.errors)
        offering = self.repo.create_offering(
            course_id=course_id,
            professor_id=professor_id,
            year=year,
            season=season,
            semester=format_semester(year, season),
            updated_by=actor_id,
        )
        self._audit(audit_log.OFFERING_CREATED, audit_log.ENTITY_OFFERING, actor_id, offering.id)
        return offering

    def create_historical_offerings(
        self, items: List[HistoricalOffering], *, actor_id: Optional[str] = None
    ) -> HistoricalOfferingsResult:
        """Record past offerings in bulk.

        The ten-year window of `validate_course_offering` does not apply; any
        year in MIN_OFFERING_YEAR..MAX_OFFERING_YEAR is accepted. An offering
        that already exists for the course and semester (in the store or
        earlier in the batch) is skipped without an error; invalid items are
        skipped with `{index, error}`.
        """
        result = HistoricalOfferingsResult()
        seen = set()
        for index, item in enumerate(items):
            try:
                if item.year < MIN_OFFERING_YEAR or item.year > MAX_OFFERING_YEAR:
                    raise ValueError("invalid_year")
                if item.season not in SEASONS:
                    raise ValueError("invalid_season")
                self._check_refs(item.course_id, item.professor_id)
                key = (item.course_id, item.year, item.season)
                if key in seen or any(
                    o.year == item.year and o.season == item.season
                    for o in self.repo.list_offerings(course_id=item.course_id)
                ):
                    result.skipped += 1
                    continue
                offering = self.repo.create_offering(
                    course_id=item.course_id,
                    professor_id=item.professor_id,
                    year=item.year,
                    season=item.season,
                    semester=format_semester(item.year, item.season),
                    updated_by=actor_id,
                )
            except (LookupError, ValueError) as exc:
                logger.warning("Historical offering %s rejected: %s", index, exc)
                result.errors.append({"index": index, "error": str(exc)})
                result.skipped += 1
                continue
            seen.add(key)
            result.offerings.append(offering)
            result.created += 1
        if result.created and self.audit_logger is not None:
            self.audit_logger.log(
                audit_log.BULK_OPERATION,
                audit_log.ENTITY_OFFERING,
                user_id=actor_id,
                metadata={"operation": "historical_offerings", "created": result.created, "skipped": result.skipped},
            )
        logger.info("Historical offerings recorded (created=%s, skipped=%s)", result.created, result.skipped)
        return result

    def update_offering(
        self,
        offering_id: str,
        *,
        professor_id: Any = _UNSET,
        year: Any = _UNSET,
        season: Any = _UNSET,
        actor_id: Optional[str] = None,
    ) -> CourseOffering:
        current = self.repo.get_offering(offering_id)
        if current is None:
            raise LookupError("offering_not_found")
        new_prof = current.professor_id if professor_id is _UNSET else professor_id
        new_year = current.year if year is _UNSET else int(year)
        new_season = current.season if season is _UNSET else season
        if new_year < MIN_OFFERING_YEAR or new_year > MAX_OFFERING_YEAR:
            raise ValueError("invalid_year")
        self._check_refs(current.course_id, new_prof)
        if (new_year, new_season) != (current.year, current.season) or new_prof != current.professor_id:
            check = self.validate_course_offering(
                current.course_id, new_prof, new_year, new_season, exclude_offering_id=offering_id
            )
            if not check.is_valid:
                raise OfferingValidationError(check.errors)
        updated = self.repo.update_offering(
            offering_id,
            professor_id=new_prof,
            year=new_year,
            season=new_season,
            semester=format_semester(new_year, new_season),
            updated_by=actor_id,
        )
        assert updated is not None
        self._audit(audit_log.OFFERING_UPDATED, audit_log.ENTITY_OFFERING, actor_id, offering_id)
        return updated

    def delete_offering(self, offering_id: str, *, actor_id: Optional[str] = None) -> None:
        if self.repo.get_offering(offering_id) is None:
            raise LookupError("offering_not_found")
        if self.repo.list_assignments(offering_id=offering_id):
            raise ValueError("offering_has_records")
        self.repo.delete_offering(offering_id)
        self._audit(audit_log.OFFERING_DELETED, audit_log.ENTITY_OFFERING, actor_id, offering_id)

    def describe_offering(self, offering: CourseOffering) -> Dict[str, Any]:
        """Offering with its course and professor resolved."""
        course = self.repo.get_course(offering.course_id)
        prof = self.repo.get_professor(offering.professor_id)
        return {
            "id": offering.id,
            "course_id": offering.course_id,
            "course_number": course.course_number if course else None,
            "course_name": course.course_name if course else None,
            "professor_id": offering.professor_id,
            "professor_name": prof.full_name if prof else None,
            "semester": offering.semester,
            "year": offering.year,
            "season": offering.season,
            "ta_count": len(self.repo.list_assignments(offering_id=offering.id)),
            "created_at": offering.created_at.isoformat(),
        }

    def find_missing_ta_assignments(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or self.clock()
        missing = []
        for offering in self.repo.list_offerings():
            if self.repo.list_assignments(offering_id=offering.id):
                continue
            entry = self.describe_offering(offering)
            entry["days_since_created"] = max(0, (now - offering.created_at).days)
            missing.append(entry)
        # Most recent semesters first
        missing.sort(key=lambda e: (-e["year"], e["course_number"] or ""))
        return missing

    def predictions(self, target_year: int, target_season: str) -> List[PredictedOffering]:
        return predict_course_offerings(self.repo.list_courses(), self.repo.list_offerings(), target_year, target_season)


__all__ = [
    "CatalogService",
    "HistoricalOffering",
    "HistoricalOfferingsResult",
    "OfferingValidation",
    "OfferingValidationError",
]
