"""Delete expired, unused invitations.

Usage:

    python -m backend.tools.cleanup_invitations --dsn postgresql://... [--dry-run]

Without `--dsn` the DATABASE_URL environment variable is used. The same job
runs from the scheduler via `/api/cron/cleanup-invitations`; this CLI is for
operators and one-off maintenance.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

_BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from audit.audit_log import AuditLogger  # noqa: E402
from notifications.email import OutboxMailer  # noqa: E402
from onboarding.invitations import InvitationsService  # noqa: E402
from records.repo import RecordsRepo  # noqa: E402

logger = logging.getLogger("wuheadtas.tools.cleanup_invitations")


def count_expired(repo: RecordsRepo, now: datetime) -> int:
    return sum(1 for inv in repo.list_invitations() if inv.used_at is None and inv.expires_at <= now)


def run(repo: RecordsRepo, *, dry_run: bool = False, now: Optional[datetime] = None) -> int:
    """Return the number of expired invitations deleted (or that would be)."""
    now = now or datetime.now(timezone.utc)
    if dry_run:
        expired = count_expired(repo, now)
        logger.info("[dry-run] %d expired invitations would be deleted", expired)
        return expired
    service = InvitationsService(repo=repo, mailer=OutboxMailer(), audit_logger=AuditLogger(repo))
    return service.cleanup_expired_invitations(now)


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete expired, unused invitations")
    parser.add_argument("--dsn", default=os.getenv("DATABASE_URL"), help="Postgres DSN (default: DATABASE_URL)")
    parser.add_argument("--dry-run", action="store_true", help="Only count expired invitations")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")
    args = _parse_args(argv)
    if not args.dsn:
        raise SystemExit("--dsn or DATABASE_URL must be provided")

    from records.repo_db import DBRecordsRepo

    count = run(DBRecordsRepo(args.dsn), dry_run=args.dry_run)
    label = "would delete" if args.dry_run else "deleted"
    print(f"{label} {count} expired invitation(s)")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual entry point
    sys.exit(main())
