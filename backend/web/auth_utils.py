"""
Shared authentication utilities.

Why:
    The session cookie is written by login, signup and change-password and
    cleared by logout. Keeping the cookie policy in one pure helper keeps the
    flags identical on every path.
"""

from __future__ import annotations

import os

DEFAULT_SESSION_TTL_SECONDS = 7 * 24 * 3600


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"  # links from invitation emails are top-level navigations
    """
    return {"secure": True, "samesite": "lax"}


def session_ttl_seconds() -> int:
    raw = (os.getenv("SESSION_TTL_SECONDS") or "").strip()
    try:
        value = int(raw) if raw else DEFAULT_SESSION_TTL_SECONDS
    except ValueError:
        return DEFAULT_SESSION_TTL_SECONDS
    return value if value > 0 else DEFAULT_SESSION_TTL_SECONDS
