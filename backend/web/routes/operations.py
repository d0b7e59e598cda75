"""Operations endpoints called by the scheduler, not by browsers."""

from __future__ import annotations

import hmac
import logging
import os

from fastapi import APIRouter, Request

import wiring

from .security import _json_private, _private_error

operations_router = APIRouter(tags=["Operations"])
logger = logging.getLogger("wuheadtas.web")


def _cron_authorized(request: Request) -> bool:
    """`Authorization: Bearer <CRON_SECRET>`.

    Without a configured secret only dev-like environments are allowed; the
    startup guard refuses prod-like ones anyway.
    """
    try:
        from ..config import is_prod_like  # type: ignore
    except ImportError:  # pragma: no cover - flat layout
        from config import is_prod_like  # type: ignore
    secret = (os.getenv("CRON_SECRET") or "").strip()
    if not secret:
        return not is_prod_like()
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value:
        return False
    return hmac.compare_digest(value.strip().encode("utf-8"), secret.encode("utf-8"))


@operations_router.api_route("/api/cron/cleanup-invitations", methods=["GET", "POST"])
async def cron_cleanup_invitations(request: Request):
    """
    Delete expired, unused invitations.

    Behavior:
        - 401 without the cron bearer secret.
        - 200 `{deleted}` otherwise.
    """
    if not _cron_authorized(request):
        return _private_error({"error": "unauthenticated"}, status_code=401)
    deleted = wiring.invitations_service().cleanup_expired_invitations()
    logger.info("Cron cleanup removed %s expired invitations", deleted)
    return _json_private({"ok": True, "deleted": deleted})
