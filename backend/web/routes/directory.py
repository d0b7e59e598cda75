"""
Public directory and search routes.

`/api/directory*` is public (no session); results pass through each owner's
privacy settings and are cached. `/api/search` requires a session; admins
also see email addresses in user results.
"""
from __future__ import annotations

from fastapi import APIRouter, Request

from directory.search import SEARCH_KINDS, search, search_suggestions
from identity_access.domain import is_admin

import wiring

from .security import _bad_request, _current_user, _json_private, _not_found

directory_router = APIRouter(tags=["Directory"])


@directory_router.get("/api/directory")
async def directory_list(
    request: Request,
    q: str | None = None,
    grad_year: int | None = None,
    location: str | None = None,
    limit: int = 50,
    offset: int = 0,
):
    """Head TAs who appear in the directory, ordered by last then first name."""
    profiles = wiring.public_directory().list_profiles(
        query=(q or "").strip() or None,
        grad_year=grad_year,
        location=(location or "").strip() or None,
        limit=limit,
        offset=offset,
    )
    return _json_private({"items": profiles, "count": len(profiles)})


@directory_router.get("/api/directory/stats")
async def directory_stats(request: Request):
    """Filter values for the directory page: distinct locations and grad years."""
    return _json_private(wiring.public_directory().directory_stats())


@directory_router.get("/api/directory/{user_id}")
async def directory_profile(request: Request, user_id: str):
    profile = wiring.public_directory().get_profile(user_id)
    if profile is None:
        return _not_found()
    return _json_private(profile)


@directory_router.get("/api/search")
async def search_all(request: Request, q: str = "", kind: str | None = None, limit: int = 20):
    """
    Search users, courses and professors.

    `kind` narrows to one of `user`, `course`, `professor`; results are
    ordered by relevance score.
    """
    user, error = _current_user(request)
    if error:
        return error
    if kind is not None and kind not in SEARCH_KINDS:
        return _bad_request("invalid_kind")
    limit = max(1, min(100, int(limit or 20)))
    results = search(
        wiring.get_repo(),
        q,
        kinds=[kind] if kind else None,
        limit=limit,
        include_private=is_admin(user.role),
    )
    return _json_private({"query": q, "results": [r.to_dict() for r in results]})


@directory_router.get("/api/search/suggestions")
async def search_complete(request: Request, q: str = "", kind: str | None = None, limit: int = 5):
    """Prefix completions for the search box."""
    _, error = _current_user(request)
    if error:
        return error
    if kind is not None and kind not in SEARCH_KINDS:
        return _bad_request("invalid_kind")
    limit = max(1, min(20, int(limit or 5)))
    return _json_private(search_suggestions(wiring.get_repo(), q, kind, limit))
