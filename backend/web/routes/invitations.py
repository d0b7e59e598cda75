"""
Invitation API routes.

Permissions:
    - Any signed-in user may invite head TAs and manage their own invitations.
    - Admins see and manage every invitation, may invite admins and send
      claim-profile invitations.
    - `POST /api/invitations/validate` is public and rate limited per IP.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from pydantic.functional_validators import field_validator

from identity_access.domain import is_admin
from identity_access.rate_limit import TOKEN_VALIDATION_LIMITER
from onboarding.invitations import (
    DEFAULT_EXPIRATION_DAYS,
    InvitationError,
    InvitationResult,
    invitation_status,
)
from records.models import ROLE_HEAD_TA, utcnow

import wiring
from serializers import serialize_invitation, serialize_user

from .security import (
    _client_ip,
    _csrf_guard,
    _current_user,
    _json_private,
    _private_error,
    _request_context,
    _require_admin,
)

invitations_router = APIRouter(tags=["Invitations"])
logger = logging.getLogger("wuheadtas.web")

_NOT_FOUND_CODES = {"invitation_not_found", "offering_not_found", "profile_not_found", "inviter_not_found", "invalid_token"}
_FORBIDDEN_CODES = {"forbidden", "admin_invite_forbidden"}
_CONFLICT_CODES = {"user_exists", "invitation_pending", "profile_already_claimed", "invitation_used"}


def _invitation_error(exc: InvitationError):
    body = {"detail": exc.code, "message": exc.message}
    if exc.code in _NOT_FOUND_CODES:
        return _private_error({"error": "not_found", **body}, status_code=404)
    if exc.code in _FORBIDDEN_CODES:
        return _private_error({"error": "forbidden", **body}, status_code=403)
    if exc.code in _CONFLICT_CODES:
        return _private_error({"error": "conflict", **body}, status_code=409)
    return _private_error({"error": "bad_request", **body}, status_code=400)


def _result_payload(result: InvitationResult) -> dict:
    return {
        "invitation": serialize_invitation(result.invitation, status=invitation_status(result.invitation, utcnow())),
        "email_sent": result.email_sent,
    }


class InvitationCreate(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    role: str = ROLE_HEAD_TA
    expiration_days: int = DEFAULT_EXPIRATION_DAYS


class TokenPayload(BaseModel):
    token: str = Field(default="", max_length=256)


class TargetedInvitationCreate(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    offering_id: str = Field(..., min_length=1)
    recipient_name: str | None = Field(default=None, max_length=200)
    message: str | None = Field(default=None, max_length=2000)

    @field_validator("recipient_name", "message")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class ClaimInvitationCreate(BaseModel):
    profile_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1, max_length=320)
    recipient_name: str | None = Field(default=None, max_length=200)
    message: str | None = Field(default=None, max_length=2000)

    @field_validator("recipient_name", "message")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class BulkClaimInvitationCreate(BaseModel):
    profile_ids: List[str] = Field(..., min_length=1, max_length=200)
    message: str | None = Field(default=None, max_length=2000)


@invitations_router.get("/api/invitations")
async def list_invitations(request: Request):
    """Admins: all invitations. Head TAs: the ones they sent."""
    user, error = _current_user(request)
    if error:
        return error
    now = utcnow()
    items = wiring.invitations_service().list_invitations(user.id, user.role)
    return _json_private([serialize_invitation(inv, status=invitation_status(inv, now)) for inv in items])


@invitations_router.post("/api/invitations")
async def create_invitation(request: Request, payload: InvitationCreate):
    """
    Invite someone by email.

    Behavior:
        - 201 with `{invitation, email_sent}`; the invitation survives a
          failed delivery and can be resent.
        - 403 `admin_invite_forbidden` when a head TA tries to invite an admin.
        - 409 `user_exists` / `invitation_pending`.
    """
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        result = wiring.invitations_service().create_invitation(
            user.id,
            payload.email,
            payload.role,
            payload.expiration_days,
            context=_request_context(request),
        )
    except InvitationError as exc:
        return _invitation_error(exc)
    return _json_private(_result_payload(result), status_code=201)


@invitations_router.post("/api/invitations/validate")
async def validate_invitation(request: Request, payload: TokenPayload):
    """
    Check a token before showing the signup form. Public.

    Behavior:
        - 400 `token_required` for an empty token.
        - 404 with the failing code for unknown, used or expired tokens and
          for emails that already belong to a registered user.
        - 200 with the invitation (never the token) when valid.
        - 429 after 30 checks per minute from one client IP.
    """
    limit = TOKEN_VALIDATION_LIMITER.hit(f"validate:{_client_ip(request) or '-'}")
    if not limit.allowed:
        resp = _private_error({"error": "rate_limited"}, status_code=429)
        resp.headers["Retry-After"] = str(TOKEN_VALIDATION_LIMITER.retry_after(limit))
        return resp
    token = payload.token.strip()
    if not token:
        return _private_error({"error": "bad_request", "detail": "token_required"}, status_code=400)
    check = wiring.invitations_service().validate_invitation_token(token)
    if not check.is_valid:
        return _private_error({"error": "not_found", "detail": check.code, "message": check.error}, status_code=404)
    invitation = check.invitation
    body = {"valid": True, "invitation": serialize_invitation(invitation, status="pending")}
    if invitation.claim_profile_id:
        profile = wiring.get_repo().get_user(invitation.claim_profile_id)
        if profile is not None:
            body["profile"] = {"id": profile.id, "first_name": profile.first_name, "last_name": profile.last_name}
    return _json_private(body)


@invitations_router.get("/api/invitations/stats")
async def invitation_stats(request: Request):
    """Invitations the caller sent and how many turned into accounts."""
    user, error = _current_user(request)
    if error:
        return error
    now = utcnow()
    stats = wiring.invitations_service().invitation_stats(user.id)
    return _json_private(
        {
            "total_sent": stats.total_sent,
            "total_accepted": stats.total_accepted,
            "pending": [serialize_invitation(inv, status=invitation_status(inv, now)) for inv in stats.pending],
            "accepted": [serialize_user(u) for u in stats.accepted],
        }
    )


@invitations_router.post("/api/invitations/targeted")
async def create_targeted_invitation(request: Request, payload: TargetedInvitationCreate):
    """Invite someone to record their head-TA work for a specific offering."""
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        result = wiring.invitations_service().send_targeted_invitation(
            user.id,
            email=payload.email,
            offering_id=payload.offering_id,
            recipient_name=payload.recipient_name,
            message=payload.message,
            context=_request_context(request),
        )
    except InvitationError as exc:
        return _invitation_error(exc)
    return _json_private(_result_payload(result), status_code=201)


@invitations_router.post("/api/invitations/claim")
async def create_claim_invitation(request: Request, payload: ClaimInvitationCreate):
    """Admin only: invite the person behind an unclaimed profile to claim it."""
    user, error = _require_admin(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        result = wiring.invitations_service().send_claim_profile_invitation(
            payload.profile_id,
            user.id,
            payload.email,
            payload.recipient_name,
            payload.message,
            context=_request_context(request),
        )
    except InvitationError as exc:
        return _invitation_error(exc)
    return _json_private(_result_payload(result), status_code=201)


@invitations_router.post("/api/invitations/claim/bulk")
async def create_bulk_claim_invitations(request: Request, payload: BulkClaimInvitationCreate):
    """Admin only: claim invitations for many profiles; failures are reported per profile."""
    user, error = _require_admin(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    result = wiring.invitations_service().send_bulk_claim_invitations(
        payload.profile_ids, user.id, payload.message, context=_request_context(request)
    )
    return _json_private({"sent": result.sent, "failed": result.failed, "errors": result.errors})


@invitations_router.post("/api/invitations/{invitation_id}/resend")
async def resend_invitation(request: Request, invitation_id: str):
    """Inviter or admin: new token, new 7-day window, email sent again."""
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        result = wiring.invitations_service().resend_invitation(invitation_id, user.id, user.role)
    except InvitationError as exc:
        return _invitation_error(exc)
    return _json_private(_result_payload(result))


@invitations_router.delete("/api/invitations/{invitation_id}")
async def revoke_invitation(request: Request, invitation_id: str):
    """Inviter or admin: delete an unused invitation."""
    user, error = _current_user(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        wiring.invitations_service().revoke_invitation(invitation_id, user.id, user.role)
    except InvitationError as exc:
        return _invitation_error(exc)
    if is_admin(user.role):
        logger.info("Invitation revoked by admin (id=%s)", invitation_id)
    return _json_private({"ok": True})
