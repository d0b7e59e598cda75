"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors).
"""
import os
import importlib
import random
import sys
from pathlib import Path
import pytest

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

# Tests always run against the in-memory repository and session store unless
# a test opts into the database explicitly.
os.environ.pop("DATABASE_URL", None)
os.environ["SESSIONS_BACKEND"] = "memory"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles so one test's setup never leaks into the next.

    Behavior:
        - Default dev environment unless a test opts into prod explicitly.
        - No cron secret, strict CSRF, proxy trust or mail provider key.
    """
    for var in (
        "WUHTA_ENV",
        "STRICT_CSRF",
        "WUHTA_TRUST_PROXY",
        "CRON_SECRET",
        "RESEND_API_KEY",
        "DATABASE_URL",
        "APP_BASE_URL",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_records_wiring():
    """Give every test a fresh in-memory repository, outbox mailer and a seeded RNG.

    Why:
        Routes share module-level singletons in `wiring`; without a reset,
        users and invitations created by one test leak into the next.
    """
    import wiring  # type: ignore
    from notifications.email import OutboxMailer  # type: ignore
    from records.repo_memory import InMemoryRecordsRepo  # type: ignore

    wiring.set_repo(InMemoryRecordsRepo())
    wiring.set_mailer(OutboxMailer())
    wiring.set_rng(random.Random(1234))
    yield


@pytest.fixture(autouse=True)
def _reset_shared_limiters_and_cache():
    """Rate-limit windows and cached directory pages are process-wide."""
    from directory.cache import DIRECTORY_CACHE  # type: ignore
    from identity_access.rate_limit import LOGIN_LIMITER, TOKEN_VALIDATION_LIMITER  # type: ignore

    LOGIN_LIMITER.reset()
    TOKEN_VALIDATION_LIMITER.reset()
    DIRECTORY_CACHE.clear()
    yield


@pytest.fixture(autouse=True)
def _reset_session_store(monkeypatch: pytest.MonkeyPatch):
    """Reset SESSION_STORE and the environment override per test.

    Why:
        Some tests create sessions or force `prod` semantics through
        `main.SETTINGS.override_environment("prod")`. Both must not survive
        into unrelated tests. The store is shared between the `main` and
        `backend.web.main` aliases to avoid drift.
    """
    try:
        import main  # type: ignore
        from identity_access.stores import SessionStore  # type: ignore
    except Exception:
        yield
        return

    shared_session = SessionStore()
    monkeypatch.setattr(main, "SESSION_STORE", shared_session, raising=False)
    alias = sys.modules.get("backend.web.main")
    if alias is not None and alias is not main:
        monkeypatch.setattr(alias, "SESSION_STORE", shared_session, raising=False)
    main.SETTINGS.override_environment(None)
    yield
    main.SETTINGS.override_environment(None)


@pytest.fixture
def repo():
    """The in-memory repository the app is wired to for this test."""
    import wiring  # type: ignore

    return wiring.get_repo()


@pytest.fixture
def outbox():
    import wiring  # type: ignore

    return wiring.get_mailer().outbox
