"""
Admin API routes: system statistics, user growth, the invitation tree,
deletion checks, role changes, the audit log and data exports.

Permissions:
    Admin only. Every handler starts with `_require_admin`, passing the
    role predicate from `identity_access.domain` that guards the feature.
"""
from __future__ import annotations

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, Field

from admin.invitation_tree import DEFAULT_MAX_DEPTH, build_invitation_forest, build_invitation_tree
from admin.reports import generate_report, report_filename, report_format, to_csv
from admin.stats import system_stats, user_growth
from audit import audit_log
from identity_access.domain import can_change_roles, can_export_data, can_view_system_stats

import wiring
from serializers import serialize, serialize_user

from .security import (
    _bad_request,
    _csrf_guard,
    _json_private,
    _not_found,
    _request_context,
    _require_admin,
    _service_error,
    _session_store,
)

admin_router = APIRouter(tags=["Admin"])
logger = logging.getLogger("wuheadtas.web")


class RoleChange(BaseModel):
    role: str = Field(..., min_length=1, max_length=20)


def _parse_ts(value: str | None) -> datetime | None:
    """ISO 8601 timestamp; a value without an offset is taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@admin_router.get("/api/admin/stats")
async def admin_stats(request: Request):
    _, error = _require_admin(request, can_view_system_stats)
    if error:
        return error
    return _json_private(system_stats(wiring.get_repo(), _session_store(request)))


@admin_router.get("/api/admin/analytics/user-growth")
async def admin_user_growth(request: Request):
    """New users per month over the last six months, as chart labels and one dataset."""
    _, error = _require_admin(request, can_view_system_stats)
    if error:
        return error
    return _json_private(user_growth(wiring.get_repo()))


@admin_router.get("/api/admin/reports/{report_id}")
async def admin_report(request: Request, report_id: str, format: str | None = None):
    """
    Download a report as an attachment.

    Behavior:
        - `format` is `csv` (default) or `json`; `audit-log` is always JSON.
        - 400 `invalid_report` / `invalid_format`.
        - Filename `{report_id}-{YYYY-MM-DD}.{format}`; every download is audited.
    """
    user, error = _require_admin(request, can_export_data)
    if error:
        return error
    try:
        fmt = report_format(report_id, format)
        rows = generate_report(wiring.get_repo(), report_id)
    except ValueError as exc:
        return _bad_request(str(exc))
    wiring.audit_logger().log(
        audit_log.REPORT_GENERATED,
        audit_log.ENTITY_SYSTEM,
        user_id=user.id,
        metadata={"report_id": report_id, "format": fmt, "rows": len(rows)},
        context=_request_context(request),
    )
    logger.info("Report generated (report=%s, format=%s, rows=%s)", report_id, fmt, len(rows))
    headers = {
        "Cache-Control": "private, no-store",
        "Content-Disposition": f'attachment; filename="{report_filename(report_id, fmt)}"',
    }
    if fmt == "csv":
        return Response(content=to_csv(rows), media_type="text/csv; charset=utf-8", headers=headers)
    resp = _json_private(rows)
    resp.headers["Content-Disposition"] = headers["Content-Disposition"]
    return resp


@admin_router.get("/api/admin/invitation-tree")
async def admin_invitation_tree(request: Request, user_id: str | None = None, max_depth: int = DEFAULT_MAX_DEPTH):
    """
    Who invited whom.

    Behavior:
        - With `user_id`: the tree rooted at that user, 404 when missing.
        - Without: one tree per root user.
        - `max_depth` is clamped to 0..10.
    """
    _, error = _require_admin(request)
    if error:
        return error
    max_depth = max(0, min(10, int(max_depth)))
    repo = wiring.get_repo()
    if user_id:
        tree = build_invitation_tree(repo, user_id, max_depth)
        if tree is None:
            return _not_found("user_not_found")
        return _json_private(tree.to_dict())
    forest = build_invitation_forest(repo, max_depth)
    return _json_private({"roots": [t.to_dict() for t in forest], "total_users": sum(t.size() for t in forest)})


@admin_router.get("/api/admin/users/{user_id}/deletion-check")
async def admin_deletion_check(request: Request, user_id: str):
    """`{can_delete, reasons, counts}`; a missing user is a 404."""
    _, error = _require_admin(request)
    if error:
        return error
    check = wiring.accounts_service(_session_store(request)).can_delete_user(user_id)
    if check.reasons == ["User not found"]:
        return _not_found("user_not_found")
    return _json_private(serialize(check))


@admin_router.put("/api/admin/users/{user_id}/role")
async def admin_change_role(request: Request, user_id: str, payload: RoleChange):
    """Change a user's role; demoting the last admin is a 409 `last_admin`."""
    user, error = _require_admin(request, can_change_roles)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    service = wiring.accounts_service(_session_store(request))
    try:
        updated = service.change_role(user, user_id, payload.role.strip(), context=_request_context(request))
    except (PermissionError, LookupError, ValueError) as exc:
        return _service_error(exc)
    wiring.invalidate_directory()
    return _json_private(serialize_user(updated, private=True))


@admin_router.get("/api/admin/audit-logs")
async def admin_audit_logs(
    request: Request,
    user_id: str | None = None,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    since: str | None = None,
    until: str | None = None,
    limit: int = 100,
    offset: int = 0,
):
    """Audit events, newest first, filtered by actor, action, entity and time window."""
    _, error = _require_admin(request)
    if error:
        return error
    try:
        since_dt = _parse_ts(since)
        until_dt = _parse_ts(until)
    except ValueError:
        return _bad_request("invalid_timestamp")
    limit = max(1, min(500, int(limit or 100)))
    offset = max(0, int(offset or 0))
    try:
        events = wiring.audit_logger().list_events(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            since=since_dt,
            until=until_dt,
            limit=limit,
            offset=offset,
        )
    except ValueError as exc:
        return _bad_request(str(exc))
    return _json_private([serialize(ev) for ev in events])


@admin_router.get("/api/admin/activity")
async def admin_activity(request: Request, limit: int = 20):
    """Recent audit events as human-readable lines for the dashboard."""
    _, error = _require_admin(request, can_view_system_stats)
    if error:
        return error
    limit = max(1, min(100, int(limit or 20)))
    return _json_private(wiring.audit_logger().activity_feed(limit))
