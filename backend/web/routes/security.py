"""
Shared web security helpers for the route modules.

Contains the CSRF same-origin check, the private JSON response helpers and
the actor lookup used by every router. Keeping a single implementation avoids
security drift between routers.
"""
from __future__ import annotations

import os
from typing import Callable, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from audit.audit_log import RequestContext
from identity_access.domain import is_admin
from records.models import User

import wiring


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    Proxy awareness: Only trust X-Forwarded-* when WUHTA_TRUST_PROXY=true.
    """
    origin_val = request.headers.get("origin")
    try:
        from urllib.parse import urlparse

        def parse_origin(url: str) -> tuple[str, str, int]:
            p = urlparse(url)
            if not p.scheme or not p.hostname:
                raise ValueError("invalid_origin")
            scheme = p.scheme.lower()
            host = p.hostname.lower()
            port = p.port if p.port is not None else (443 if scheme == "https" else 80)
            return scheme, host, int(port)

        def parse_server(req: Request) -> tuple[str, str, int]:
            trust_proxy = (os.getenv("WUHTA_TRUST_PROXY", "false") or "").lower() == "true"
            if trust_proxy:
                xf_proto = (req.headers.get("x-forwarded-proto") or req.url.scheme or "").split(",")[0].strip()
                xf_host = (req.headers.get("x-forwarded-host") or req.headers.get("host") or "").split(",")[0].strip()
                scheme = (xf_proto or req.url.scheme or "http").lower()
                if ":" in xf_host:
                    host_only, port_str = xf_host.rsplit(":", 1)
                    try:
                        port = int(port_str)
                    except ValueError:
                        port = 443 if scheme == "https" else 80
                    host = host_only.lower()
                else:
                    host = (xf_host or (req.url.hostname or "")).lower()
                    port = int(req.url.port) if req.url.port else (443 if scheme == "https" else 80)
                return scheme, host, port

            scheme = (req.url.scheme or "http").lower()
            host = (req.url.hostname or "").lower()
            port = int(req.url.port) if req.url.port else (443 if scheme == "https" else 80)
            return scheme, host, port

        server = parse_server(request)
        if origin_val:
            return parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return parse_origin(referer_val) == server
        return True
    except Exception:
        return False


def _json_private(payload, *, status_code: int = 200, vary_origin: bool = False) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers.

    Rationale: nearly every endpoint exposes user- or role-scoped data. To
    avoid accidental caching in proxies or browsers, respond with
    "private, no-store".
    """
    headers = {"Cache-Control": "private, no-store"}
    if vary_origin:
        headers["Vary"] = "Origin"
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


def _private_error(payload: dict, *, status_code: int, vary_origin: bool = False) -> JSONResponse:
    return _json_private(payload, status_code=status_code, vary_origin=vary_origin)


def _bad_request(detail: str) -> JSONResponse:
    return _private_error({"error": "bad_request", "detail": detail}, status_code=400)


def _forbidden(detail: Optional[str] = None) -> JSONResponse:
    body = {"error": "forbidden"}
    if detail:
        body["detail"] = detail
    return _private_error(body, status_code=403)


def _not_found(detail: Optional[str] = None) -> JSONResponse:
    body = {"error": "not_found"}
    if detail:
        body["detail"] = detail
    return _private_error(body, status_code=404)


def _conflict(detail: str) -> JSONResponse:
    return _private_error({"error": "conflict", "detail": detail}, status_code=409)


def _csrf_guard(request: Request) -> JSONResponse | None:
    """Enforce same-origin for browser write requests.

    Behavior:
        - In production or when STRICT_CSRF=true, require that either Origin
          or Referer is present AND same-origin.
        - In non-strict modes, fall back to best-effort `_is_same_origin`,
          which permits requests without these headers (server-to-server calls).
    """
    prod_env = (os.getenv("WUHTA_ENV", "dev") or "").lower() in ("prod", "production")
    strict_toggle = (os.getenv("STRICT_CSRF", "false") or "").lower() == "true"

    if prod_env or strict_toggle:
        origin_present = request.headers.get("origin") or request.headers.get("referer")
        if not origin_present or not _is_same_origin(request):
            return _forbidden("csrf_violation")
        return None

    if not _is_same_origin(request):
        return _forbidden("csrf_violation")
    return None


def _resolve_active_main(request: Request):
    """Return the active main module whose app matches the request.app.

    Tests may import the app as either `main` or `backend.web.main`. Prefer the
    module whose `app` object is identical to the ASGI app on the request.
    """
    import sys as _sys

    candidates = [m for m in (_sys.modules.get("main"), _sys.modules.get("backend.web.main")) if m]
    for m in candidates:
        if getattr(m, "app", None) is getattr(request, "app", None):
            return m
    return candidates[0] if candidates else None


def _session_store(request: Request):
    mod = _resolve_active_main(request)
    if mod is None:  # pragma: no cover - alias fallback
        import main as mod  # type: ignore
    return mod.SESSION_STORE


def _role_in(user: dict | None, role: str) -> bool:
    if not user:
        return False
    roles = user.get("roles") or []
    if not isinstance(roles, list):
        return False
    return role in roles


def _current_sub(user: dict | None) -> str:
    if not user:
        return ""
    sub = user.get("sub")
    return str(sub) if sub else ""


def _current_user(request: Request) -> Tuple[Optional[User], Optional[JSONResponse]]:
    """Resolve the session subject to a stored user.

    A session may outlive its account (deleted user); that is treated as
    unauthenticated.
    """
    sub = _current_sub(getattr(request.state, "user", None))
    if not sub:
        return None, _private_error({"error": "unauthenticated"}, status_code=401)
    user = wiring.get_repo().get_user(sub)
    if user is None or user.is_unclaimed:
        return None, _private_error({"error": "unauthenticated"}, status_code=401)
    return user, None


def _require_admin(
    request: Request, permission: Callable[[Optional[str]], bool] = is_admin
) -> Tuple[Optional[User], Optional[JSONResponse]]:
    """Signed-in user whose role passes `permission` (see identity_access.domain)."""
    user, error = _current_user(request)
    if error:
        return None, error
    if not permission(user.role):
        return None, _forbidden()
    return user, None


def _client_ip(request: Request) -> Optional[str]:
    if (os.getenv("WUHTA_TRUST_PROXY", "false") or "").lower() == "true":
        forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return request.client.host if request.client else None


def _request_context(request: Request) -> RequestContext:
    return RequestContext(ip_address=_client_ip(request), user_agent=request.headers.get("user-agent"))


_CONFLICT_CODES = frozenset(
    {
        "email_taken",
        "course_number_taken",
        "professor_email_taken",
        "assignment_taken",
        "course_has_offerings",
        "professor_has_offerings",
        "offering_has_records",
        "last_admin",
    }
)


def _service_error(exc: Exception) -> JSONResponse:
    """Map a service exception to its JSON error response.

    PermissionError -> 403, LookupError -> 404, ValueError -> 409 for
    uniqueness and reference conflicts, 400 otherwise.
    """
    code = str(exc)
    if isinstance(exc, PermissionError):
        return _forbidden(code or None)
    if isinstance(exc, LookupError):
        return _not_found(code or None)
    errors = getattr(exc, "errors", None)
    if errors:
        return _private_error({"error": "bad_request", "detail": code, "errors": list(errors)}, status_code=400)
    if code in _CONFLICT_CODES:
        return _conflict(code)
    return _bad_request(code)
