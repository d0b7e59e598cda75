"""
Profile and privacy edits made by a user (or an admin on their behalf).

Every successful write drops the cached directory pages so the next public
read reflects it.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from typing import Any, Dict, Optional

from audit import audit_log
from audit.audit_log import AuditLogger, RequestContext
from identity_access.domain import can_edit_user, can_view_private_info
from records.models import PrivacySettings, User
from records.repo import RecordsRepo
from records.validation import normalize_name, normalize_optional_text

from .cache import DIRECTORY_CACHE, TTLCache
from .public import CACHE_PREFIX

logger = logging.getLogger("wuheadtas.directory")

MIN_GRAD_YEAR = 1900
MAX_GRAD_YEAR = 2100

PRIVACY_FLAGS = (
    "show_email",
    "show_grad_year",
    "show_location",
    "show_linkedin",
    "show_personal_site",
    "show_courses",
    "appear_in_directory",
    "allow_contact",
)

_TEXT_LIMITS = {
    "degree_program": 200,
    "current_role": 200,
    "location": 200,
    "linkedin_url": 500,
    "personal_site": 500,
}


def _normalize_url(value: Optional[str], *, code: str) -> Optional[str]:
    cleaned = normalize_optional_text(value, code=code, max_length=_TEXT_LIMITS["linkedin_url"])
    if cleaned is not None and not cleaned.lower().startswith(("http://", "https://")):
        raise ValueError(code)
    return cleaned


def _normalize_grad_year(value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("invalid_grad_year")
    if value < MIN_GRAD_YEAR or value > MAX_GRAD_YEAR:
        raise ValueError("invalid_grad_year")
    return value


@dataclass
class ProfilesService:
    repo: RecordsRepo
    audit_logger: Optional[AuditLogger] = None
    cache: TTLCache = field(default_factory=lambda: DIRECTORY_CACHE)

    def _target(self, actor: User, user_id: str, *, for_write: bool) -> User:
        allowed = can_edit_user(actor.id, actor.role, user_id) if for_write else can_view_private_info(
            actor.id, actor.role, user_id
        )
        if not allowed:
            raise PermissionError("forbidden")
        target = self.repo.get_user(user_id)
        if target is None:
            raise LookupError("user_not_found")
        return target

    def update_profile(
        self,
        actor: User,
        user_id: str,
        changes: Dict[str, Any],
        *,
        context: Optional[RequestContext] = None,
    ) -> User:
        """Apply the given profile fields; keys absent from `changes` stay as they are.

        Raises:
            PermissionError("forbidden"): neither the owner nor an admin.
            LookupError("user_not_found")
            ValueError(code): a field failed validation.
        """
        self._target(actor, user_id, for_write=True)
        fields: Dict[str, Any] = {}
        for key, value in changes.items():
            if key == "first_name":
                fields[key] = normalize_name(value, code="invalid_first_name")
            elif key == "last_name":
                fields[key] = normalize_name(value, code="invalid_last_name")
            elif key == "grad_year":
                fields[key] = _normalize_grad_year(value)
            elif key in ("linkedin_url", "personal_site"):
                fields[key] = _normalize_url(value, code=f"invalid_{key}")
            elif key in _TEXT_LIMITS:
                fields[key] = normalize_optional_text(value, code=f"invalid_{key}", max_length=_TEXT_LIMITS[key])
            else:
                raise ValueError("unknown_field")
        if not fields:
            raise ValueError("no_changes")
        updated = self.repo.update_user(user_id, **fields)
        if updated is None:
            raise LookupError("user_not_found")
        self.cache.clear_prefix(CACHE_PREFIX)
        logger.info("Profile updated (id=%s, by=%s)", user_id, actor.id)
        if self.audit_logger is not None:
            self.audit_logger.log(
                audit_log.USER_UPDATED,
                audit_log.ENTITY_USER,
                user_id=actor.id,
                entity_id=user_id,
                metadata={"fields": sorted(fields)},
                context=context,
            )
        return updated

    def get_privacy(self, actor: User, user_id: str) -> PrivacySettings:
        self._target(actor, user_id, for_write=False)
        return self.repo.get_privacy_settings(user_id) or PrivacySettings(user_id=user_id)

    def update_privacy(self, actor: User, user_id: str, flags: Dict[str, bool]) -> PrivacySettings:
        self._target(actor, user_id, for_write=True)
        unknown = set(flags) - set(PRIVACY_FLAGS)
        if unknown:
            raise ValueError("unknown_field")
        current = self.repo.get_privacy_settings(user_id) or PrivacySettings(user_id=user_id)
        saved = self.repo.save_privacy_settings(replace(current, **flags))
        self.cache.clear_prefix(CACHE_PREFIX)
        logger.info("Privacy settings saved (id=%s)", user_id)
        return saved


__all__ = ["ProfilesService", "PRIVACY_FLAGS"]
