"""
Head-TA records: who served which course offering, with weekly hours.

Business rules:
    - A head TA works at most 20 hours per week and serves at most 3 courses
      in one semester. Records without hours count as 10 hours.
    - Head TAs record themselves; admins record anyone.
    - Historical imports create unclaimed profiles on the fly and never
      send email.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import random
from typing import Any, Callable, Dict, List, Optional

from audit import audit_log
from audit.audit_log import AuditLogger
from identity_access.domain import can_manage_hta_records, is_admin
from onboarding.claims import ClaimsService
from records.models import ROLE_HEAD_TA, TAAssignment, User, utcnow
from records.repo import RecordsRepo
from records.validation import MAX_RESPONSIBILITIES_LENGTH, normalize_hours, normalize_optional_text

logger = logging.getLogger("wuheadtas.teaching")

_UNSET = object()

MAX_HOURS_PER_WEEK = 20
MAX_RECORDS_PER_SEMESTER = 3
DEFAULT_HOURS = 10
SENIOR_TA_YEARS = 2
HISTORICAL_RESPONSIBILITIES = "Head TA (historical record)"


@dataclass
class Availability:
    can_record: bool
    current_hours: int
    max_hours: int = MAX_HOURS_PER_WEEK
    reasons: List[str] = field(default_factory=list)


@dataclass
class Workload:
    user_id: str
    total_hours_per_week: int
    records: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class Suggestion:
    user_id: str
    user_name: str
    course_offering_id: str
    course_number: str
    course_name: str
    score: float
    reasons: List[str]
    suggested_hours: int


@dataclass
class HistoricalRecord:
    first_name: str
    last_name: str
    course_offering_id: str
    email: Optional[str] = None
    hours_per_week: Optional[int] = None
    responsibilities: Optional[str] = None
    grad_year: Optional[int] = None
    degree_program: Optional[str] = None
    location: Optional[str] = None


@dataclass
class HistoricalImportResult:
    created: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class HTARecordsService:
    repo: RecordsRepo
    audit_logger: Optional[AuditLogger] = None
    clock: Callable[[], datetime] = utcnow
    rng: random.Random = field(default_factory=random.Random)

    def _audit(self, action: str, actor_id: Optional[str], entity_id: str, **meta: Any) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(
                action, audit_log.ENTITY_HTA_RECORD, user_id=actor_id, entity_id=entity_id, metadata=meta
            )

    # --- Workload and availability ---------------------------------------------------

    def calculate_workload(self, user_id: str, year: Optional[int] = None, season: Optional[str] = None) -> Workload:
        """Total weekly hours of a user, optionally limited to one semester."""
        entries: List[Dict[str, Any]] = []
        total = 0
        for record in self.repo.list_assignments(user_id=user_id):
            offering = self.repo.get_offering(record.course_offering_id)
            if offering is None:
                continue
            if year and season and (offering.year != year or offering.season != season):
                continue
            course = self.repo.get_course(offering.course_id)
            hours = record.hours_per_week or DEFAULT_HOURS
            total += hours
            entries.append(
                {
                    "id": record.id,
                    "course_number": course.course_number if course else None,
                    "course_name": course.course_name if course else None,
                    "hours_per_week": hours,
                    "semester": offering.semester,
                }
            )
        return Workload(user_id=user_id, total_hours_per_week=total, records=entries)

    def can_record_head_ta(self, user_id: str, offering_id: str, hours: int = DEFAULT_HOURS) -> Availability:
        user = self.repo.get_user(user_id)
        if user is None:
            return Availability(False, 0, reasons=["User not found"])
        if user.role != ROLE_HEAD_TA:
            return Availability(False, 0, reasons=["User is not a head TA"])
        offering = self.repo.get_offering(offering_id)
        if offering is None:
            return Availability(False, 0, reasons=["Course offering not found"])
        if any(a.course_offering_id == offering_id for a in self.repo.list_assignments(user_id=user_id)):
            return Availability(False, 0, reasons=["Head TA is already recorded for this course"])

        workload = self.calculate_workload(user_id, offering.year, offering.season)
        reasons: List[str] = []
        if workload.total_hours_per_week + hours > MAX_HOURS_PER_WEEK:
            reasons.append(
                f"Adding {hours} hours would exceed maximum of {MAX_HOURS_PER_WEEK} hours per week"
            )
        if len(workload.records) >= MAX_RECORDS_PER_SEMESTER:
            reasons.append("Head TA already has 3 course records this semester")
        return Availability(not reasons, workload.total_hours_per_week, reasons=reasons)

    def suggest_head_tas(self, offering_id: str, max_suggestions: int = 5) -> List[Suggestion]:
        offering = self.repo.get_offering(offering_id)
        if offering is None:
            return []
        course = self.repo.get_course(offering.course_id)
        if course is None:
            return []
        current_year = self.clock().year
        suggestions: List[Suggestion] = []
        for ta in self.repo.list_users(role=ROLE_HEAD_TA):
            availability = self.can_record_head_ta(ta.id, offering_id)
            if not availability.can_record:
                continue
            reasons: List[str] = []
            score = 100.0 + max(0, 40 - availability.current_hours * 2)
            if availability.current_hours < DEFAULT_HOURS:
                reasons.append("Has availability for more courses")

            past_courses = set()
            for record in self.repo.list_assignments(user_id=ta.id):
                if record.course_offering_id == offering_id:
                    continue
                past = self.repo.get_offering(record.course_offering_id)
                if past is not None:
                    past_courses.add(past.course_id)
            if offering.course_id in past_courses:
                score += 30
                reasons.append("Has taught this course before")

            if ta.grad_year and current_year - ta.grad_year >= SENIOR_TA_YEARS:
                score += 20
                reasons.append("Experienced TA (2+ years)")

            score += self.rng.random() * 10
            suggestions.append(
                Suggestion(
                    user_id=ta.id,
                    user_name=ta.full_name,
                    course_offering_id=offering_id,
                    course_number=course.course_number,
                    course_name=course.course_name,
                    score=score,
                    reasons=reasons,
                    suggested_hours=15 if course.course_number.startswith("6") else DEFAULT_HOURS,
                )
            )
        suggestions.sort(key=lambda s: s.score, reverse=True)
        return suggestions[:max_suggestions]

    # --- CRUD ------------------------------------------------------------------------

    def describe_record(self, record: TAAssignment) -> Dict[str, Any]:
        offering = self.repo.get_offering(record.course_offering_id)
        course = self.repo.get_course(offering.course_id) if offering else None
        user = self.repo.get_user(record.user_id)
        return {
            "id": record.id,
            "user_id": record.user_id,
            "user_name": user.full_name if user else None,
            "course_offering_id": record.course_offering_id,
            "course_number": course.course_number if course else None,
            "course_name": course.course_name if course else None,
            "semester": offering.semester if offering else None,
            "hours_per_week": record.hours_per_week,
            "responsibilities": record.responsibilities,
            "created_at": record.created_at.isoformat(),
        }

    def list_records(self, *, user_id: Optional[str] = None, offering_id: Optional[str] = None) -> List[TAAssignment]:
        return self.repo.list_assignments(user_id=user_id, offering_id=offering_id)

    def _owned_record(self, actor: User, record_id: str) -> TAAssignment:
        record = self.repo.get_assignment(record_id)
        if record is None:
            raise LookupError("record_not_found")
        if not can_manage_hta_records(actor.role):
            raise PermissionError("forbidden")
        if record.user_id != actor.id and not is_admin(actor.role):
            raise PermissionError("forbidden")
        return record

    def create_record(
        self,
        actor: User,
        *,
        course_offering_id: str,
        user_id: Optional[str] = None,
        hours_per_week: Optional[int] = None,
        responsibilities: Optional[str] = None,
    ) -> TAAssignment:
        target_id = user_id or actor.id
        if not can_manage_hta_records(actor.role):
            raise PermissionError("forbidden")
        if target_id != actor.id and not is_admin(actor.role):
            raise PermissionError("forbidden")
        hours = normalize_hours(hours_per_week)
        text = normalize_optional_text(
            responsibilities, code="invalid_responsibilities", max_length=MAX_RESPONSIBILITIES_LENGTH
        )
        if self.repo.get_user(target_id) is None:
            raise LookupError("user_not_found")
        offering = self.repo.get_offering(course_offering_id)
        if offering is None:
            raise LookupError("offering_not_found")
        record = self.repo.create_assignment(
            user_id=target_id,
            course_offering_id=course_offering_id,
            hours_per_week=hours,
            responsibilities=text,
        )
        course = self.repo.get_course(offering.course_id)
        self._audit(
            audit_log.HTA_RECORD_CREATED,
            actor.id,
            record.id,
            course_name=course.course_name if course else None,
            semester=offering.semester,
            for_user=target_id,
        )
        return record

    def update_record(
        self,
        actor: User,
        record_id: str,
        *,
        hours_per_week: Any = _UNSET,
        responsibilities: Any = _UNSET,
    ) -> TAAssignment:
        self._owned_record(actor, record_id)
        fields: Dict[str, Any] = {}
        if hours_per_week is not _UNSET:
            fields["hours_per_week"] = normalize_hours(hours_per_week)
        if responsibilities is not _UNSET:
            fields["responsibilities"] = normalize_optional_text(
                responsibilities, code="invalid_responsibilities", max_length=MAX_RESPONSIBILITIES_LENGTH
            )
        updated = self.repo.update_assignment(record_id, **fields)
        if updated is None:
            raise LookupError("record_not_found")
        self._audit(audit_log.HTA_RECORD_UPDATED, actor.id, record_id, fields=sorted(fields))
        return updated

    def delete_record(self, actor: User, record_id: str) -> None:
        self._owned_record(actor, record_id)
        self.repo.delete_assignment(record_id)
        self._audit(audit_log.HTA_RECORD_DELETED, actor.id, record_id)

    # --- Historical import -----------------------------------------------------------

    def create_historical_records(self, items: List[HistoricalRecord], recorded_by: Optional[str]) -> HistoricalImportResult:
        claims = ClaimsService(repo=self.repo, audit_logger=self.audit_logger, clock=self.clock)
        result = HistoricalImportResult()
        for index, item in enumerate(items):
            try:
                if self.repo.get_offering(item.course_offering_id) is None:
                    result.errors.append(
                        {"index": index, "error": f"Course offering {item.course_offering_id} not found"}
                    )
                    result.skipped += 1
                    continue
                profile = claims.find_unclaimed_by_name(item.first_name, item.last_name)
                if profile is None:
                    profile = claims.create_unclaimed_profile(
                        first_name=item.first_name,
                        last_name=item.last_name,
                        recorded_by=recorded_by,
                        email=item.email,
                        grad_year=item.grad_year,
                        degree_program=item.degree_program,
                        location=item.location,
                    )
                if any(
                    a.course_offering_id == item.course_offering_id
                    for a in self.repo.list_assignments(user_id=profile.id)
                ):
                    result.errors.append(
                        {
                            "index": index,
                            "error": f"Assignment already exists for {item.first_name} {item.last_name}",
                        }
                    )
                    result.skipped += 1
                    continue
                self.repo.create_assignment(
                    user_id=profile.id,
                    course_offering_id=item.course_offering_id,
                    hours_per_week=normalize_hours(item.hours_per_week),
                    responsibilities=normalize_optional_text(
                        item.responsibilities,
                        code="invalid_responsibilities",
                        max_length=MAX_RESPONSIBILITIES_LENGTH,
                    )
                    or HISTORICAL_RESPONSIBILITIES,
                )
                result.created += 1
            except ValueError as exc:
                logger.warning("Historical record %s rejected: %s", index, exc)
                result.errors.append({"index": index, "error": str(exc)})
                result.skipped += 1
        if result.created and self.audit_logger is not None:
            self.audit_logger.log(
                audit_log.BULK_OPERATION,
                audit_log.ENTITY_HTA_RECORD,
                user_id=recorded_by,
                metadata={"operation": "historical_import", "created": result.created, "skipped": result.skipped},
            )
        return result


__all__ = [
    "Availability",
    "HTARecordsService",
    "HistoricalImportResult",
    "HistoricalRecord",
    "Suggestion",
    "Workload",
    "MAX_HOURS_PER_WEEK",
]
