"""
Process-wide wiring of the records repository, mailer and service objects.

Why:
    Routes need one shared repository and mailer, but tests must be able to
    swap both without touching the environment. Selection happens lazily on
    first use so importing the app never opens a database connection.

Behavior:
    - DATABASE_URL set -> DBRecordsRepo (psycopg3).
    - Otherwise -> InMemoryRecordsRepo, which loses its data on restart.
    - RESEND_API_KEY set -> ResendMailer, otherwise the logging OutboxMailer.
"""
from __future__ import annotations

import logging
import os
import random

from admin.accounts import AccountsService
from audit.audit_log import AuditLogger
from directory.profiles import ProfilesService
from directory.public import PublicDirectory
from identity_access.password_reset import PasswordResetService
from notifications.email import Mailer, build_default_mailer
from onboarding.claims import ClaimsService
from onboarding.invitations import InvitationsService
from records.repo import RecordsRepo
from records.repo_memory import InMemoryRecordsRepo
from teaching.catalog import CatalogService
from teaching.hta_records import HTARecordsService

logger = logging.getLogger("wuheadtas.web")

_REPO: RecordsRepo | None = None
_MAILER: Mailer | None = None
_RNG: random.Random = random.Random()


def _build_default_repo() -> RecordsRepo:
    """Postgres when configured, in-memory otherwise."""
    if not (os.getenv("DATABASE_URL") or "").strip():
        logger.warning("DATABASE_URL not set; records are kept in memory")
        return InMemoryRecordsRepo()
    from records.repo_db import DBRecordsRepo

    return DBRecordsRepo()


def get_repo() -> RecordsRepo:
    global _REPO
    if _REPO is None:
        _REPO = _build_default_repo()
    return _REPO


def set_repo(repo: RecordsRepo) -> None:
    """Allow tests to swap the records repository implementation."""
    global _REPO
    _REPO = repo


def get_mailer() -> Mailer:
    global _MAILER
    if _MAILER is None:
        _MAILER = build_default_mailer()
    return _MAILER


def set_mailer(mailer: Mailer) -> None:
    global _MAILER
    _MAILER = mailer


def set_rng(rng: random.Random) -> None:
    """Seed source for suggestion jitter (tests pass a seeded Random)."""
    global _RNG
    _RNG = rng


# --- Service factories ----------------------------------------------------------

def audit_logger() -> AuditLogger:
    return AuditLogger(get_repo())


def invitations_service() -> InvitationsService:
    return InvitationsService(repo=get_repo(), mailer=get_mailer(), audit_logger=audit_logger())


def password_reset_service() -> PasswordResetService:
    return PasswordResetService(repo=get_repo(), mailer=get_mailer(), audit_logger=audit_logger())


def claims_service() -> ClaimsService:
    return ClaimsService(repo=get_repo(), audit_logger=audit_logger())


def accounts_service(sessions) -> AccountsService:
    return AccountsService(repo=get_repo(), sessions=sessions, audit_logger=audit_logger())


def catalog_service() -> CatalogService:
    return CatalogService(repo=get_repo(), audit_logger=audit_logger())


def hta_records_service() -> HTARecordsService:
    return HTARecordsService(repo=get_repo(), audit_logger=audit_logger(), rng=_RNG)


def profiles_service() -> ProfilesService:
    return ProfilesService(repo=get_repo(), audit_logger=audit_logger())


def public_directory() -> PublicDirectory:
    return PublicDirectory(repo=get_repo())


def invalidate_directory() -> None:
    public_directory().invalidate()


__all__ = [
    "get_repo",
    "set_repo",
    "get_mailer",
    "set_mailer",
    "set_rng",
    "audit_logger",
    "invitations_service",
    "password_reset_service",
    "claims_service",
    "accounts_service",
    "catalog_service",
    "hta_records_service",
    "profiles_service",
    "public_directory",
    "invalidate_directory",
]
