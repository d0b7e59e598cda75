"WU Head TAs"
from __future__ import annotations

import logging
import os
import sys as _sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from identity_access.stores import SessionStore

# Ensure legacy imports consistently reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via WUHTA_ENABLE_DOTENV (default true outside
      pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("WUHTA_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


from dotenv import load_dotenv

if _should_load_dotenv():
    load_dotenv()

# Fail fast on insecure production configuration.
# Support both "flat" (container image) and package (repo test) layouts.
try:
    import config as _cfg  # type: ignore
except ImportError:  # pragma: no cover
    from backend.web import config as _cfg  # type: ignore
_cfg.ensure_secure_config_on_startup()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("wuheadtas.web")

# --- App & Settings Setup -------------------------------------------------------


class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("WUHTA_ENV", "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


SETTINGS = AuthSettings()
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "wuhta_session")

app = FastAPI(title="WU Head TAs", description="Head TA directory and administration", version="1.0.0")

from routes.admin import admin_router
from routes.auth import auth_router
from routes.catalog import catalog_router
from routes.directory import directory_router
from routes.hta_records import hta_records_router
from routes.invitations import invitations_router
from routes.operations import operations_router
from routes.users import users_router


def _under_pytest() -> bool:
    return "pytest" in _sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


if (not _under_pytest()) and os.getenv("SESSIONS_BACKEND", "memory").lower() == "db":
    try:
        from identity_access.stores_db import DBSessionStore

        SESSION_STORE = DBSessionStore()
    except (ImportError, RuntimeError) as exc:
        logger.warning("DB session store unavailable (%s); using in-memory sessions", exc.__class__.__name__)
        SESSION_STORE = SessionStore()
else:
    SESSION_STORE = SessionStore()

# --- Auth Middleware ------------------------------------------------------------

_PUBLIC_PATHS = frozenset(
    {
        "/health",
        "/api/auth/login",
        "/api/auth/signup",
        "/api/auth/logout",
        "/api/auth/forgot-password",
        "/api/auth/reset-password",
        "/api/invitations/validate",
        "/docs",
        "/openapi.json",
    }
)
_PUBLIC_PREFIXES = ("/api/directory", "/api/cron/")


def _is_public_path(path: str) -> bool:
    return path in _PUBLIC_PATHS or path.startswith(_PUBLIC_PREFIXES)


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    """Resolve the session cookie into `request.state.user`; 401 on private paths without one."""
    path = request.url.path
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)

    if rec:
        # Minimal, read-only user context for downstream handlers.
        request.state.user = {"sub": rec.sub, "name": getattr(rec, "name", ""), "roles": rec.roles}
    else:
        request.state.user = None
        if not _is_public_path(path):
            headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
            return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    if request.url.path in ("/docs", "/redoc"):
        # Swagger UI loads its assets from a CDN.
        csp = "default-src 'self'; script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; " \
              "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; img-src 'self' data: https:;"
    else:
        csp = "default-src 'none'; frame-ancestors 'none';"
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if _cfg.is_prod_like(SETTINGS.environment):
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Routers ------------------------------------------------------------------

app.include_router(auth_router)
app.include_router(invitations_router)
app.include_router(users_router)
app.include_router(catalog_router)
app.include_router(hta_records_router)
app.include_router(admin_router)
app.include_router(directory_router)
app.include_router(operations_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=not _cfg.is_prod_like(),
    )
