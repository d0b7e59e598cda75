"""
Users API routes: listing, profile edits, privacy settings, account deletion
and the unclaimed-profile workflow.

Permissions:
    - Signed-in users list registered head TAs and admins; email and other
      private fields are shown to admins and to the owner only.
    - Owners and admins edit profiles and privacy settings.
    - Account deletion is admin-only and never self (see admin.accounts).
    - Unclaimed profiles are listed and created by admins; any user may claim
      a profile whose name matches theirs.
    - Role toggles and invitation history are admin-only.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import field_validator

from identity_access.domain import can_change_roles, can_view_private_info, is_admin

import wiring
from serializers import serialize, serialize_user

from .security import (
    _bad_request,
    _conflict,
    _csrf_guard,
    _current_user,
    _forbidden,
    _json_private,
    _not_found,
    _request_context,
    _require_admin,
    _service_error,
    _session_store,
)

users_router = APIRouter(tags=["Users"])  # explicit paths, no prefix
logger = logging.getLogger("wuheadtas.web")


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    grad_year: int | None = None
    degree_program: str | None = Field(default=None, max_length=200)
    current_role: str | None = Field(default=None, max_length=200)
    linkedin_url: str | None = Field(default=None, max_length=500)
    personal_site: str | None = Field(default=None, max_length=500)
    location: str | None = Field(default=None, max_length=200)


class PrivacyUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    show_email: bool | None = None
    show_grad_year: bool | None = None
    show_location: bool | None = None
    show_linkedin: bool | None = None
    show_personal_site: bool | None = None
    show_courses: bool | None = None
    appear_in_directory: bool | None = None
    allow_contact: bool | None = None


class UnclaimedProfileCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str | None = Field(default=None, max_length=320)
    grad_year: int | None = None
    degree_program: str | None = Field(default=None, max_length=200)
    location: str | None = Field(default=None, max_length=200)

    @field_validator("email", "degree_program", "location")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class ClaimPayload(BaseModel):
    # Admins may claim on behalf of another registered user.
    user_id: str | None = None


@users_router.get("/api/users")
async def list_users(request: Request, q: str | None = None, role: str | None = None, limit: int = 100, offset: int = 0):
    """Registered users, ordered by last name then first name."""
    user, error = _current_user(request)
    if error:
        return error
    limit = max(1, min(200, int(limit or 100)))
    offset = max(0, int(offset or 0))
    query = (q or "").strip() or None
    users = wiring.get_repo().list_users(role=role, is_unclaimed=False, query=query)
    page = users[offset : offset + limit]
    private = is_admin(user.role)
    return _json_private(
        {
            "items": [serialize_user(u, private=private or u.id == user.id) for u in page],
            "total": len(users),
        }
    )


@users_router.get("/api/users/unclaimed")
async def list_unclaimed_profiles(request: Request, q: str | None = None, without_invitation: bool = False):
    """Admin only: historical profiles nobody has claimed yet, with their record counts."""
    _, error = _require_admin(request)
    if error:
        return error
    repo = wiring.get_repo()
    profiles = wiring.claims_service().list_unclaimed((q or "").strip() or None, without_invitation=without_invitation)
    items = []
    for profile in profiles:
        data = serialize_user(profile, private=True)
        data["record_count"] = len(repo.list_assignments(user_id=profile.id))
        items.append(data)
    return _json_private(items)


@users_router.post("/api/users/unclaimed")
async def create_unclaimed_profile(request: Request, payload: UnclaimedProfileCreate):
    """Admin only: record a historical head TA who has not registered."""
    user, error = _require_admin(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        profile = wiring.claims_service().create_unclaimed_profile(
            first_name=payload.first_name,
            last_name=payload.last_name,
            recorded_by=user.id,
            email=payload.email,
            grad_year=payload.grad_year,
            degree_program=payload.degree_program,
            location=payload.location,
        )
    except ValueError as exc:
        if str(exc) == "email_taken":
            return _conflict("email_taken")
        return _bad_request(str(exc))
    wiring.invalidate_directory()
    return _json_private(serialize_user(profile, private=True), status_code=201)


@users_router.post("/api/users/unclaimed/{profile_id}/mark-invitation-sent")
async def mark_invitation_sent(request: Request, profile_id: str):
    """Admin only: stamp `invitation_sent_at` after inviting a profile outside the app."""
    _, error = _require_admin(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        profile = wiring.claims_service().mark_invitation_sent(profile_id)
    except LookupError:
        return _not_found("profile_not_found")
    return _json_private({"ok": True, "invitation_sent_at": profile.invitation_sent_at.isoformat()})


@users_router.get("/api/users/claimable")
async def list_claimable_profiles(request: Request):
    """Unclaimed profiles whose names resemble the caller's."""
    user, error = _current_user(request)
    if error:
        return error
    profiles = wiring.claims_service().find_claimable_profiles(user.id)
    return _json_private([serialize_user(p) for p in profiles])


@users_router.post("/api/users/{profile_id}/claim")
async def claim_profile(request: Request, profile_id: str, payload: ClaimPayload | None = None):
    """
    Merge an unclaimed profile into an account.

    Behavior:
        - The caller claims for themselves; the names must match (equal last
          names, first names equal, prefixed or a known nickname), else 403
          `name_mismatch`.
        - Admins may pass `user_id` to claim on someone's behalf without the
          name check.
        - 404 when the profile does not exist or is already claimed.
    """
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    target_id = user.id
    if payload is not None and payload.user_id and payload.user_id != user.id:
        if not is_admin(user.role):
            return _forbidden()
        target_id = payload.user_id
    try:
        moved = wiring.claims_service().claim_profile(
            profile_id,
            target_id,
            require_name_match=not is_admin(user.role),
            context=_request_context(request),
        )
    except PermissionError as exc:
        return _forbidden(str(exc))
    except LookupError as exc:
        detail = "user_not_found" if str(exc) == "user_not_found" else "profile_not_found"
        return _not_found(detail)
    wiring.invalidate_directory()
    return _json_private({"claimed_profile_id": profile_id, "user_id": target_id, "records_moved": moved})


@users_router.get("/api/users/{user_id}")
async def get_user(request: Request, user_id: str):
    user, error = _current_user(request)
    if error:
        return error
    target = wiring.get_repo().get_user(user_id)
    if target is None:
        return _not_found("user_not_found")
    private = can_view_private_info(user.id, user.role, target.id)
    return _json_private(serialize_user(target, private=private))


@users_router.patch("/api/users/{user_id}")
async def update_user(request: Request, user_id: str, payload: ProfileUpdate):
    """
    Update profile fields. Only fields present in the body change; an
    explicit null clears an optional field.

    Permissions:
        Owner or admin. Role changes go through `/api/admin/users/{id}/role`.
    """
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    changes = payload.model_dump(exclude_unset=True)
    try:
        updated = wiring.profiles_service().update_profile(user, user_id, changes, context=_request_context(request))
    except PermissionError:
        return _forbidden()
    except LookupError:
        return _not_found("user_not_found")
    except ValueError as exc:
        return _bad_request(str(exc))
    return _json_private(serialize_user(updated, private=True))


@users_router.delete("/api/users/{user_id}")
async def delete_user(request: Request, user_id: str):
    """
    Delete an account when nothing references it.

    Behavior:
        - 409 `user_not_deletable` with the blocking reasons and counts.
        - 200 `{ok: true}` on success.
    """
    user, error = _require_admin(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    service = wiring.accounts_service(_session_store(request))
    try:
        check = service.delete_user(user, user_id, context=_request_context(request))
    except PermissionError as exc:
        return _forbidden(str(exc))
    except LookupError:
        return _not_found("user_not_found")
    if not check.can_delete:
        return _json_private(
            {"error": "conflict", "detail": "user_not_deletable", "reasons": check.reasons, "counts": check.counts},
            status_code=409,
        )
    wiring.invalidate_directory()
    return _json_private({"ok": True})


@users_router.post("/api/users/{user_id}/toggle-role")
async def toggle_role(request: Request, user_id: str):
    """
    Admin only: switch a user between admin and head TA.

    Behavior:
        - 400 `cannot_demote_self` when an admin targets themselves.
        - 409 `last_admin`, 404 `user_not_found`.
    """
    user, error = _require_admin(request, can_change_roles)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    service = wiring.accounts_service(_session_store(request))
    try:
        updated = service.toggle_role(user, user_id, context=_request_context(request))
    except (PermissionError, LookupError, ValueError) as exc:
        return _service_error(exc)
    wiring.invalidate_directory()
    return _json_private(serialize_user(updated, private=True))


@users_router.get("/api/users/{user_id}/invitation-history")
async def invitation_history(request: Request, user_id: str):
    """Admin only: `{items, total}` of invitations sent for an unclaimed profile."""
    _, error = _require_admin(request)
    if error:
        return error
    try:
        items = wiring.invitations_service().invitation_history(user_id)
    except (LookupError, ValueError) as exc:
        return _service_error(exc)
    return _json_private({"items": items, "total": len(items)})


@users_router.get("/api/users/{user_id}/privacy")
async def get_privacy(request: Request, user_id: str):
    user, error = _current_user(request)
    if error:
        return error
    try:
        settings = wiring.profiles_service().get_privacy(user, user_id)
    except PermissionError:
        return _forbidden()
    except LookupError:
        return _not_found("user_not_found")
    return _json_private(serialize(settings))


@users_router.put("/api/users/{user_id}/privacy")
async def update_privacy(request: Request, user_id: str, payload: PrivacyUpdate):
    """Owner or admin: change any subset of the privacy flags."""
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    flags = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    try:
        settings = wiring.profiles_service().update_privacy(user, user_id, flags)
    except PermissionError:
        return _forbidden()
    except LookupError:
        return _not_found("user_not_found")
    return _json_private(serialize(settings))
