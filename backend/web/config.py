"""
Configuration and startup security checks for WU Head TAs.

Why: The app mails single-use tokens and exposes a cron endpoint. A deployment
that silently falls back to the in-memory store, plain-HTTP links or an
unguarded cron secret would lose data or leak access. This module holds one
guard that enforces minimal production safety without burdening development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

PLACEHOLDER_PREFIXES = ("CHANGE_ME", "DUMMY", "TEST_ONLY")
MIN_CRON_SECRET_LENGTH = 16


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def current_environment() -> str:
    return (os.getenv("WUHTA_ENV", "dev") or "dev").strip().lower()


def is_prod_like(env: str | None = None) -> bool:
    """Whether `env` (default: WUHTA_ENV) names a production or staging deployment."""
    return _is_prod_like(env if env is not None else current_environment())


def _is_placeholder(value: str) -> bool:
    upper = value.strip().upper()
    return any(upper.startswith(prefix) for prefix in PLACEHOLDER_PREFIXES)


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - DATABASE_URL must be set and must not disable TLS.
    - APP_BASE_URL must use https (links in invitation emails).
    - RESEND_API_KEY must be set so invitations are actually delivered.
    - CRON_SECRET must be set, long enough and not a placeholder.
    """
    if not is_prod_like():
        return  # dev/test remain permissive

    # 1) Postgres is mandatory; the in-memory repo loses everything on restart
    dsn = (os.getenv("DATABASE_URL") or "").strip()
    if not dsn:
        raise SystemExit("Refusing to start: DATABASE_URL is unset in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    # 2) Invitation links must not travel over plain HTTP
    base = (os.getenv("APP_BASE_URL") or "").strip().lower()
    if not base.startswith("https://"):
        raise SystemExit("Refusing to start: APP_BASE_URL must use https in production.")

    # 3) Email delivery
    api_key = (os.getenv("RESEND_API_KEY") or "").strip()
    if not api_key or _is_placeholder(api_key):
        raise SystemExit("Refusing to start: RESEND_API_KEY is unset or a placeholder in production.")

    # 4) Cron endpoint guard
    secret = (os.getenv("CRON_SECRET") or "").strip()
    if not secret or _is_placeholder(secret) or len(secret) < MIN_CRON_SECRET_LENGTH:
        raise SystemExit(
            f"Refusing to start: CRON_SECRET must be set to a non-placeholder value of at least "
            f"{MIN_CRON_SECRET_LENGTH} characters in production."
        )
