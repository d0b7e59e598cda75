"""JSON shapes for records returned by the API."""
from __future__ import annotations

from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Dict

from fastapi.encoders import jsonable_encoder

from records.models import Invitation, User

# Never leave the server.
_USER_SECRET_FIELDS = ("password_hash",)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def serialize(obj: Any) -> Any:
    """Generic dataclass to JSON-ready dict."""
    if is_dataclass(obj):
        return jsonable_encoder(asdict(obj))
    return jsonable_encoder(obj)


def serialize_user(user: User, *, private: bool = False) -> Dict[str, Any]:
    data = asdict(user)
    for key in _USER_SECRET_FIELDS:
        data.pop(key, None)
    data["full_name"] = user.full_name
    if not private:
        for key in ("email", "invitation_sent_at", "recorded_by", "recorded_at"):
            data.pop(key, None)
    return jsonable_encoder(data)


def serialize_invitation(invitation: Invitation, *, status: str | None = None) -> Dict[str, Any]:
    """Invitation without its token; the token only travels by email."""
    return {
        "id": invitation.id,
        "email": invitation.email,
        "invited_by": invitation.invited_by,
        "role": invitation.role,
        "expires_at": _iso(invitation.expires_at),
        "used_at": _iso(invitation.used_at),
        "claim_profile_id": invitation.claim_profile_id,
        "offering_id": invitation.offering_id,
        "created_at": _iso(invitation.created_at),
        "status": status,
    }
