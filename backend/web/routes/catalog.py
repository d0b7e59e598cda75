"""
Course catalog API routes: courses, professors and course offerings.

Permissions:
    - Any signed-in user may read the catalog.
    - Writes are admin-only (`can_manage_courses`).

Notes:
    Offering writes run `validate_course_offering`; a failed validation is a
    400 with the human-readable `errors` list. Warnings never block a write
    and are only returned by `POST /api/offerings/validate`.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from identity_access.domain import can_manage_courses
from teaching.catalog import HistoricalOffering
from teaching.semesters import next_semester, semester

import wiring
from serializers import serialize

from .security import (
    _bad_request,
    _csrf_guard,
    _current_user,
    _forbidden,
    _json_private,
    _not_found,
    _service_error,
)

catalog_router = APIRouter(tags=["Catalog"])

MAX_HISTORICAL_OFFERINGS = 500


class CourseCreate(BaseModel):
    course_number: str = Field(..., min_length=1, max_length=20)
    course_name: str = Field(..., min_length=1, max_length=200)


class CourseUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    course_number: str | None = Field(default=None, max_length=20)
    course_name: str | None = Field(default=None, max_length=200)


class ProfessorCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=1, max_length=320)


class ProfessorUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    email: str | None = Field(default=None, max_length=320)


class OfferingCreate(BaseModel):
    course_id: str = Field(..., min_length=1)
    professor_id: str = Field(..., min_length=1)
    year: int
    season: str = Field(..., min_length=1, max_length=10)


class OfferingUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    professor_id: str | None = None
    year: int | None = None
    season: str | None = Field(default=None, max_length=10)


class OfferingCheck(BaseModel):
    course_id: str = Field(..., min_length=1)
    professor_id: str | None = None
    year: int
    season: str = Field(..., min_length=1, max_length=10)
    exclude_offering_id: str | None = None


class HistoricalOfferingItem(BaseModel):
    course_id: str = Field(..., min_length=1)
    professor_id: str = Field(..., min_length=1)
    year: int
    season: str = Field(..., min_length=1, max_length=10)


class HistoricalOfferings(BaseModel):
    offerings: List[HistoricalOfferingItem] = Field(..., min_length=1, max_length=MAX_HISTORICAL_OFFERINGS)


def _require_manager(request: Request):
    user, error = _current_user(request)
    if error:
        return None, error
    if not can_manage_courses(user.role):
        return None, _forbidden()
    csrf = _csrf_guard(request)
    if csrf:
        return None, csrf
    return user, None


def _set_fields(payload: BaseModel) -> dict:
    # Only fields the client sent; nulls are not meaningful for catalog rows.
    return {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}


# --- Courses ------------------------------------------------------------------------


@catalog_router.get("/api/courses")
async def list_courses(request: Request):
    _, error = _current_user(request)
    if error:
        return error
    return _json_private([serialize(c) for c in wiring.get_repo().list_courses()])


@catalog_router.post("/api/courses")
async def create_course(request: Request, payload: CourseCreate):
    user, error = _require_manager(request)
    if error:
        return error
    try:
        course = wiring.catalog_service().create_course(
            course_number=payload.course_number, course_name=payload.course_name, actor_id=user.id
        )
    except ValueError as exc:
        return _service_error(exc)
    return _json_private(serialize(course), status_code=201)


@catalog_router.get("/api/courses/{course_id}")
async def get_course(request: Request, course_id: str):
    """Course with its offerings, newest first."""
    _, error = _current_user(request)
    if error:
        return error
    repo = wiring.get_repo()
    course = repo.get_course(course_id)
    if course is None:
        return _not_found("course_not_found")
    service = wiring.catalog_service()
    offerings = [service.describe_offering(o) for o in repo.list_offerings(course_id=course_id)]
    return _json_private({**serialize(course), "offerings": offerings})


@catalog_router.patch("/api/courses/{course_id}")
async def update_course(request: Request, course_id: str, payload: CourseUpdate):
    user, error = _require_manager(request)
    if error:
        return error
    try:
        course = wiring.catalog_service().update_course(course_id, actor_id=user.id, **_set_fields(payload))
    except (ValueError, LookupError) as exc:
        return _service_error(exc)
    wiring.invalidate_directory()
    return _json_private(serialize(course))


@catalog_router.delete("/api/courses/{course_id}")
async def delete_course(request: Request, course_id: str):
    user, error = _require_manager(request)
    if error:
        return error
    try:
        wiring.catalog_service().delete_course(course_id, actor_id=user.id)
    except (ValueError, LookupError) as exc:
        return _service_error(exc)
    return _json_private({"ok": True})


# --- Professors ---------------------------------------------------------------------


@catalog_router.get("/api/professors")
async def list_professors(request: Request):
    _, error = _current_user(request)
    if error:
        return error
    return _json_private([serialize(p) for p in wiring.get_repo().list_professors()])


@catalog_router.post("/api/professors")
async def create_professor(request: Request, payload: ProfessorCreate):
    user, error = _require_manager(request)
    if error:
        return error
    try:
        prof = wiring.catalog_service().create_professor(
            first_name=payload.first_name, last_name=payload.last_name, email=payload.email, actor_id=user.id
        )
    except ValueError as exc:
        return _service_error(exc)
    return _json_private(serialize(prof), status_code=201)


@catalog_router.get("/api/professors/{professor_id}")
async def get_professor(request: Request, professor_id: str):
    _, error = _current_user(request)
    if error:
        return error
    repo = wiring.get_repo()
    prof = repo.get_professor(professor_id)
    if prof is None:
        return _not_found("professor_not_found")
    service = wiring.catalog_service()
    offerings = [service.describe_offering(o) for o in repo.list_offerings(professor_id=professor_id)]
    return _json_private({**serialize(prof), "offerings": offerings})


@catalog_router.patch("/api/professors/{professor_id}")
async def update_professor(request: Request, professor_id: str, payload: ProfessorUpdate):
    user, error = _require_manager(request)
    if error:
        return error
    try:
        prof = wiring.catalog_service().update_professor(professor_id, actor_id=user.id, **_set_fields(payload))
    except (ValueError, LookupError) as exc:
        return _service_error(exc)
    wiring.invalidate_directory()
    return _json_private(serialize(prof))


@catalog_router.delete("/api/professors/{professor_id}")
async def delete_professor(request: Request, professor_id: str):
    user, error = _require_manager(request)
    if error:
        return error
    try:
        wiring.catalog_service().delete_professor(professor_id, actor_id=user.id)
    except (ValueError, LookupError) as exc:
        return _service_error(exc)
    return _json_private({"ok": True})


# --- Offerings ----------------------------------------------------------------------


@catalog_router.get("/api/offerings")
async def list_offerings(
    request: Request,
    course_id: str | None = None,
    professor_id: str | None = None,
    year: int | None = None,
    season: str | None = None,
):
    _, error = _current_user(request)
    if error:
        return error
    service = wiring.catalog_service()
    offerings = wiring.get_repo().list_offerings(
        course_id=course_id, professor_id=professor_id, year=year, season=season
    )
    return _json_private([service.describe_offering(o) for o in offerings])


@catalog_router.post("/api/offerings")
async def create_offering(request: Request, payload: OfferingCreate):
    user, error = _require_manager(request)
    if error:
        return error
    service = wiring.catalog_service()
    try:
        offering = service.create_offering(
            course_id=payload.course_id,
            professor_id=payload.professor_id,
            year=payload.year,
            season=payload.season.strip().lower(),
            actor_id=user.id,
        )
    except (ValueError, LookupError) as exc:
        return _service_error(exc)
    return _json_private(service.describe_offering(offering), status_code=201)


@catalog_router.post("/api/offerings/historical")
async def create_historical_offerings(request: Request, payload: HistoricalOfferings):
    """
    Admin only: record past semesters in bulk.

    Returns `{created, skipped, offerings, errors}`. Existing semesters are
    skipped silently; invalid items are skipped and reported by index.
    """
    user, error = _require_manager(request)
    if error:
        return error
    service = wiring.catalog_service()
    items = [
        HistoricalOffering(
            course_id=item.course_id,
            professor_id=item.professor_id,
            year=item.year,
            season=item.season.strip().lower(),
        )
        for item in payload.offerings
    ]
    result = service.create_historical_offerings(items, actor_id=user.id)
    return _json_private(
        {
            "created": result.created,
            "skipped": result.skipped,
            "offerings": [service.describe_offering(o) for o in result.offerings],
            "errors": result.errors,
        }
    )


@catalog_router.post("/api/offerings/validate")
async def validate_offering(request: Request, payload: OfferingCheck):
    """Dry-run check for the offering form: `{is_valid, errors, warnings}`."""
    _, error = _current_user(request)
    if error:
        return error
    result = wiring.catalog_service().validate_course_offering(
        payload.course_id,
        payload.professor_id,
        payload.year,
        payload.season.strip().lower(),
        exclude_offering_id=payload.exclude_offering_id,
    )
    return _json_private(serialize(result))


@catalog_router.get("/api/offerings/missing-tas")
async def offerings_missing_tas(request: Request):
    """Offerings without any head-TA record, most recent semesters first."""
    _, error = _current_user(request)
    if error:
        return error
    return _json_private(wiring.catalog_service().find_missing_ta_assignments())


@catalog_router.get("/api/offerings/predictions")
async def offering_predictions(request: Request, year: int | None = None, season: str | None = None):
    """
    Courses likely to be offered in a target semester.

    Without `year`/`season` the target is the semester after the current one.
    Both must be given together.
    """
    _, error = _current_user(request)
    if error:
        return error
    if (year is None) != (season is None):
        return _bad_request("year_and_season_required")
    if year is None:
        target = next_semester()
    else:
        try:
            target = semester(year, season.strip().lower())
        except ValueError:
            return _bad_request("invalid_season")
    predictions = wiring.catalog_service().predictions(target.year, target.season)
    return _json_private(
        {
            "target": {"year": target.year, "season": target.season, "semester": target.display},
            "predictions": [p.to_dict() for p in predictions],
        }
    )


@catalog_router.get("/api/offerings/{offering_id}")
async def get_offering(request: Request, offering_id: str):
    _, error = _current_user(request)
    if error:
        return error
    offering = wiring.get_repo().get_offering(offering_id)
    if offering is None:
        return _not_found("offering_not_found")
    return _json_private(wiring.catalog_service().describe_offering(offering))


@catalog_router.patch("/api/offerings/{offering_id}")
async def update_offering(request: Request, offering_id: str, payload: OfferingUpdate):
    user, error = _require_manager(request)
    if error:
        return error
    fields = _set_fields(payload)
    if "season" in fields:
        fields["season"] = fields["season"].strip().lower()
    service = wiring.catalog_service()
    try:
        offering = service.update_offering(offering_id, actor_id=user.id, **fields)
    except (ValueError, LookupError) as exc:
        return _service_error(exc)
    wiring.invalidate_directory()
    return _json_private(service.describe_offering(offering))


@catalog_router.delete("/api/offerings/{offering_id}")
async def delete_offering(request: Request, offering_id: str):
    user, error = _require_manager(request)
    if error:
        return error
    try:
        wiring.catalog_service().delete_offering(offering_id, actor_id=user.id)
    except (ValueError, LookupError) as exc:
        return _service_error(exc)
    return _json_private({"ok": True})
