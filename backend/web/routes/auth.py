"""
Authentication routes: password login, logout, current user, invitation
signup, password change and password reset by email.

Why:
    Accounts are invitation-only. Signup redeems an invitation token and
    opens a session right away; every other route works on the opaque
    session cookie that the auth middleware in `main` resolves.

Notes:
    - This module resolves `main` at request time (`_resolve_active_main`) to
      reach the shared session store, cookie name and settings. Tests swap
      `main.SESSION_STORE` and the handlers follow.
    - Responses are `private, no-store`; none of them may be cached.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, Field
from pydantic.functional_validators import field_validator

from identity_access.password_reset import PasswordResetError
from identity_access.passwords import hash_password, validate_password_strength, verify_password
from identity_access.rate_limit import LOGIN_LIMITER, TOKEN_VALIDATION_LIMITER
from onboarding.invitations import InvitationError
from records.validation import normalize_email

import wiring
from serializers import serialize_user

from .security import (
    _bad_request,
    _client_ip,
    _csrf_guard,
    _current_user,
    _json_private,
    _private_error,
    _request_context,
    _resolve_active_main,
)

auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("wuheadtas.web")


class LoginPayload(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1, max_length=1024)


class SignupPayload(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)
    email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1, max_length=1024)
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    grad_year: int | None = None
    degree_program: str | None = Field(default=None, max_length=200)
    current_role: str | None = Field(default=None, max_length=200)
    linkedin_url: str | None = Field(default=None, max_length=500)
    personal_site: str | None = Field(default=None, max_length=500)
    location: str | None = Field(default=None, max_length=200)

    @field_validator("degree_program", "current_role", "linkedin_url", "personal_site", "location")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class ChangePasswordPayload(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=1024)
    new_password: str = Field(..., min_length=1, max_length=1024)


class ForgotPasswordPayload(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)


class ResetPasswordPayload(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=1, max_length=1024)


_RESET_REQUESTED_MESSAGE = "If an account exists with this email, you will receive a password reset link."


def _main(request: Request):
    mod = _resolve_active_main(request)
    if mod is None:  # pragma: no cover - alias fallback
        import main as mod  # type: ignore
    return mod


def _open_session(request: Request, response: Response, user) -> None:
    """Create a server-side session for `user` and set the cookie on `response`."""
    try:
        from ..auth_utils import cookie_opts, session_ttl_seconds  # type: ignore
    except ImportError:  # pragma: no cover - flat layout
        from auth_utils import cookie_opts, session_ttl_seconds  # type: ignore
    mod = _main(request)
    ttl = session_ttl_seconds()
    rec = mod.SESSION_STORE.create(sub=user.id, name=user.full_name, roles=[user.role], ttl_seconds=ttl)
    opts = cookie_opts(mod.SETTINGS.environment)
    response.set_cookie(
        key=mod.SESSION_COOKIE_NAME,
        value=rec.session_id,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=ttl,
    )


def _clear_session_cookie(request: Request, response: Response) -> None:
    try:
        from ..auth_utils import cookie_opts  # type: ignore
    except ImportError:  # pragma: no cover - flat layout
        from auth_utils import cookie_opts  # type: ignore
    mod = _main(request)
    opts = cookie_opts(mod.SETTINGS.environment)
    response.set_cookie(
        key=mod.SESSION_COOKIE_NAME,
        value="",
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        expires=0,
        max_age=0,
    )


@auth_router.post("/api/auth/login")
async def auth_login(request: Request, payload: LoginPayload):
    """
    Password login.

    Behavior:
        - 200 with the user and a fresh session cookie on success.
        - 401 `invalid_credentials` for unknown email, wrong password or an
          unclaimed profile (those never have a usable password).
        - 429 after 10 attempts per email and client IP within 15 minutes.
    Permissions:
        Public.
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    email = normalize_email(payload.email)
    limit = LOGIN_LIMITER.hit(f"login:{email}:{_client_ip(request) or '-'}")
    if not limit.allowed:
        retry = LOGIN_LIMITER.retry_after(limit)
        resp = _private_error({"error": "rate_limited"}, status_code=429)
        resp.headers["Retry-After"] = str(retry)
        resp.headers["X-RateLimit-Limit"] = str(limit.limit)
        resp.headers["X-RateLimit-Remaining"] = "0"
        return resp

    user = wiring.get_repo().get_user_by_email(email)
    if user is None or user.is_unclaimed or not verify_password(user.password_hash, payload.password):
        logger.info("Login failed")
        return _private_error({"error": "unauthenticated", "detail": "invalid_credentials"}, status_code=401)

    resp = _json_private({"user": serialize_user(user, private=True)})
    _open_session(request, resp, user)
    logger.info("Login ok (user=%s)", user.id)
    return resp


@auth_router.post("/api/auth/logout")
async def auth_logout(request: Request):
    """Delete the server-side session (if any) and expire the cookie. Public."""
    mod = _main(request)
    sid = request.cookies.get(mod.SESSION_COOKIE_NAME)
    if sid:
        try:
            mod.SESSION_STORE.delete(sid)
        except Exception as exc:
            logger.warning("Session delete failed: %s", exc.__class__.__name__)
    resp = _json_private({"ok": True})
    _clear_session_cookie(request, resp)
    return resp


@auth_router.get("/api/auth/me")
async def auth_me(request: Request):
    """Return the signed-in user including private fields."""
    user, error = _current_user(request)
    if error:
        return error
    return _json_private({"user": serialize_user(user, private=True)})


@auth_router.post("/api/auth/signup")
async def auth_signup(request: Request, payload: SignupPayload):
    """
    Redeem an invitation token and create (or claim) the account.

    Behavior:
        - 201 with the user and a session cookie.
        - 404 `invalid_token` for an unknown token.
        - 409 `user_exists` when the email is already registered.
        - 400 with the failing code otherwise (`token_used`,
          `invitation_expired`, `email_mismatch`, `weak_password`, ...).
    Permissions:
        Public; the token is the credential.
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    profile = payload.model_dump(
        include={"grad_year", "degree_program", "current_role", "linkedin_url", "personal_site", "location"}
    )
    try:
        user = wiring.invitations_service().accept_invitation(
            token=payload.token.strip(),
            email=payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            profile=profile,
            context=_request_context(request),
        )
    except InvitationError as exc:
        if exc.code == "invalid_token":
            return _private_error({"error": "not_found", "detail": exc.code, "message": exc.message}, status_code=404)
        if exc.code == "user_exists":
            return _private_error({"error": "conflict", "detail": exc.code, "message": exc.message}, status_code=409)
        return _private_error({"error": "bad_request", "detail": exc.code, "message": exc.message}, status_code=400)
    wiring.invalidate_directory()
    resp = _json_private({"user": serialize_user(user, private=True)}, status_code=201)
    _open_session(request, resp, user)
    return resp


@auth_router.post("/api/auth/change-password")
async def auth_change_password(request: Request, payload: ChangePasswordPayload):
    """
    Change the caller's password.

    Behavior:
        - Verifies the current password (400 `invalid_current_password`).
        - Enforces the strength rules (400 `weak_password` with messages).
        - Ends every session of the user and opens a fresh one for the caller.
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    user, error = _current_user(request)
    if error:
        return error
    if not verify_password(user.password_hash, payload.current_password):
        return _bad_request("invalid_current_password")
    problems = validate_password_strength(payload.new_password)
    if problems:
        return _private_error(
            {"error": "bad_request", "detail": "weak_password", "messages": problems}, status_code=400
        )
    repo = wiring.get_repo()
    repo.update_user(user.id, password_hash=hash_password(payload.new_password))
    ended = _main(request).SESSION_STORE.delete_for_user(user.id)
    logger.info("Password changed (user=%s, sessions_ended=%s)", user.id, ended)
    resp = _json_private({"ok": True})
    _open_session(request, resp, user)
    return resp


@auth_router.post("/api/auth/forgot-password")
async def auth_forgot_password(request: Request, payload: ForgotPasswordPayload):
    """
    Mail a password reset link.

    Behavior:
        - Always 200 with the same message, whether or not the email belongs
          to an account.
        - 429 after 10 requests per email and client IP within 15 minutes.
    Permissions:
        Public.
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    email = normalize_email(payload.email)
    limit = LOGIN_LIMITER.hit(f"forgot:{email}:{_client_ip(request) or '-'}")
    if not limit.allowed:
        resp = _private_error({"error": "rate_limited"}, status_code=429)
        resp.headers["Retry-After"] = str(LOGIN_LIMITER.retry_after(limit))
        return resp
    wiring.password_reset_service().request_reset(email)
    return _json_private({"ok": True, "message": _RESET_REQUESTED_MESSAGE})


@auth_router.get("/api/auth/reset-password")
async def auth_check_reset_token(request: Request, token: str | None = None):
    """`{valid: true}` for a usable reset token, 400 `invalid_token` otherwise. Public."""
    if not (token or "").strip():
        return _bad_request("token_required")
    limit = TOKEN_VALIDATION_LIMITER.hit(f"reset:{_client_ip(request) or '-'}")
    if not limit.allowed:
        resp = _private_error({"error": "rate_limited"}, status_code=429)
        resp.headers["Retry-After"] = str(TOKEN_VALIDATION_LIMITER.retry_after(limit))
        return resp
    try:
        wiring.password_reset_service().validate_token(token)
    except PasswordResetError as exc:
        return _bad_request(exc.code)
    return _json_private({"valid": True})


@auth_router.post("/api/auth/reset-password")
async def auth_reset_password(request: Request, payload: ResetPasswordPayload):
    """
    Set a new password with a reset token.

    Behavior:
        - 200 `{ok: true}`; the token is spent and every session of the user ends.
        - 400 `weak_password` with messages, or `invalid_token` for an unknown,
          used or expired token.
    Permissions:
        Public; the token is the credential.
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        user = wiring.password_reset_service().reset_password(
            payload.token, payload.password, context=_request_context(request)
        )
    except PasswordResetError as exc:
        if exc.errors:
            return _private_error(
                {"error": "bad_request", "detail": exc.code, "messages": exc.errors}, status_code=400
            )
        return _bad_request(exc.code)
    ended = _main(request).SESSION_STORE.delete_for_user(user.id)
    logger.info("Password reset (user=%s, sessions_ended=%s)", user.id, ended)
    return _json_private({"ok": True})
