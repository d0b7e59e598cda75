"""
Head-TA record API routes.

Permissions:
    - Signed-in users read records, availability and suggestions.
    - Head TAs create, edit and delete their own records; admins any record.
    - The historical import is admin-only.

Notes:
    `GET /api/hta-records/check` is advisory. `POST /api/hta-records` only
    refuses a duplicate (same user and offering) with 409 `assignment_taken`.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import field_validator

from teaching.hta_records import DEFAULT_HOURS, HistoricalRecord

import wiring
from serializers import serialize

from .security import (
    _bad_request,
    _csrf_guard,
    _current_user,
    _json_private,
    _not_found,
    _require_admin,
    _service_error,
)

hta_records_router = APIRouter(tags=["HTA Records"])
logger = logging.getLogger("wuheadtas.web")

MAX_HISTORICAL_ITEMS = 500


class RecordCreate(BaseModel):
    course_offering_id: str = Field(..., min_length=1)
    user_id: str | None = None
    hours_per_week: int | None = None
    responsibilities: str | None = Field(default=None, max_length=5000)


class RecordUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    hours_per_week: int | None = None
    responsibilities: str | None = Field(default=None, max_length=5000)


class HistoricalItem(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    course_offering_id: str = Field(..., min_length=1)
    email: str | None = Field(default=None, max_length=320)
    hours_per_week: int | None = None
    responsibilities: str | None = Field(default=None, max_length=5000)
    grad_year: int | None = None
    degree_program: str | None = Field(default=None, max_length=200)
    location: str | None = Field(default=None, max_length=200)

    @field_validator("email", "responsibilities", "degree_program", "location")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class HistoricalImport(BaseModel):
    records: List[HistoricalItem] = Field(..., min_length=1, max_length=MAX_HISTORICAL_ITEMS)


@hta_records_router.get("/api/hta-records")
async def list_records(request: Request, user_id: str | None = None, offering_id: str | None = None):
    _, error = _current_user(request)
    if error:
        return error
    service = wiring.hta_records_service()
    records = service.list_records(user_id=user_id, offering_id=offering_id)
    return _json_private([service.describe_record(r) for r in records])


@hta_records_router.post("/api/hta-records")
async def create_record(request: Request, payload: RecordCreate):
    """Record a head-TA assignment; `user_id` defaults to the caller."""
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    service = wiring.hta_records_service()
    try:
        record = service.create_record(
            user,
            course_offering_id=payload.course_offering_id,
            user_id=payload.user_id,
            hours_per_week=payload.hours_per_week,
            responsibilities=payload.responsibilities,
        )
    except (PermissionError, LookupError, ValueError) as exc:
        return _service_error(exc)
    wiring.invalidate_directory()
    return _json_private(service.describe_record(record), status_code=201)


@hta_records_router.get("/api/hta-records/check")
async def check_availability(request: Request, offering_id: str, user_id: str | None = None, hours: int = DEFAULT_HOURS):
    """Whether a head TA can take on `offering_id` (hours and course-count caps)."""
    user, error = _current_user(request)
    if error:
        return error
    if hours < 1:
        return _bad_request("invalid_hours")
    availability = wiring.hta_records_service().can_record_head_ta(user_id or user.id, offering_id, hours)
    return _json_private(serialize(availability))


@hta_records_router.get("/api/hta-records/suggestions")
async def suggestions(request: Request, offering_id: str, limit: int = 5):
    """Head TAs ranked for an offering by spare hours, experience and history."""
    _, error = _current_user(request)
    if error:
        return error
    service = wiring.hta_records_service()
    if wiring.get_repo().get_offering(offering_id) is None:
        return _not_found("offering_not_found")
    limit = max(1, min(20, int(limit or 5)))
    return _json_private([serialize(s) for s in service.suggest_head_tas(offering_id, limit)])


@hta_records_router.post("/api/hta-records/historical")
async def import_historical(request: Request, payload: HistoricalImport):
    """
    Admin only: import past head TAs who never registered.

    Each item finds or creates an unclaimed profile by name and records it
    for the offering. Bad items are skipped and reported by index.
    """
    user, error = _require_admin(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    items = [HistoricalRecord(**item.model_dump()) for item in payload.records]
    result = wiring.hta_records_service().create_historical_records(items, user.id)
    if result.created:
        wiring.invalidate_directory()
    return _json_private(serialize(result))


@hta_records_router.get("/api/hta-records/workload")
async def workload(request: Request, user_id: str | None = None, year: int | None = None, season: str | None = None):
    """Weekly hours of a head TA, optionally for one semester; defaults to the caller."""
    user, error = _current_user(request)
    if error:
        return error
    if (year is None) != (season is None):
        return _bad_request("year_and_season_required")
    result = wiring.hta_records_service().calculate_workload(user_id or user.id, year, season)
    return _json_private(serialize(result))


@hta_records_router.get("/api/hta-records/{record_id}")
async def get_record(request: Request, record_id: str):
    _, error = _current_user(request)
    if error:
        return error
    service = wiring.hta_records_service()
    record = wiring.get_repo().get_assignment(record_id)
    if record is None:
        return _not_found("record_not_found")
    return _json_private(service.describe_record(record))


@hta_records_router.patch("/api/hta-records/{record_id}")
async def update_record(request: Request, record_id: str, payload: RecordUpdate):
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    service = wiring.hta_records_service()
    try:
        record = service.update_record(user, record_id, **payload.model_dump(exclude_unset=True))
    except (PermissionError, LookupError, ValueError) as exc:
        return _service_error(exc)
    wiring.invalidate_directory()
    return _json_private(service.describe_record(record))


@hta_records_router.delete("/api/hta-records/{record_id}")
async def delete_record(request: Request, record_id: str):
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        wiring.hta_records_service().delete_record(user, record_id)
    except (PermissionError, LookupError) as exc:
        return _service_error(exc)
    wiring.invalidate_directory()
    return _json_private({"ok": True})
