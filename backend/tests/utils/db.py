"""
Test DB utilities: reachability checks for the optional live-Postgres tests.

Rationale:
    The suite runs against the in-memory repository. A few tests exercise the
    psycopg adapters and need a real database; they read `TEST_DATABASE_URL`
    (never `DATABASE_URL`, which the app itself would pick up) and skip when
    it is unset or unreachable.
"""
from __future__ import annotations

import os
import pytest


def require_db_or_skip() -> str:
    """Return a reachable DSN or skip the calling test."""
    try:
        import psycopg  # type: ignore
    except Exception:
        pytest.skip("psycopg not available")

    dsn = (os.getenv("TEST_DATABASE_URL") or "").strip()
    if not dsn:
        pytest.skip("TEST_DATABASE_URL not set")
    try:
        with psycopg.connect(dsn, connect_timeout=1):
            return dsn
    except Exception:
        pytest.skip("Database not reachable; start Postgres or fix TEST_DATABASE_URL")
