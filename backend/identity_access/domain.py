"""
Identity domain constants and role-based permission rules.

Why:
- Centralize allowed roles to avoid drift between tools and web layer.
- Keep the admin vs head_ta decisions in one pure module so services and
  routes ask the same questions.
"""

from __future__ import annotations

from typing import Optional

ROLE_ADMIN = "admin"
ROLE_HEAD_TA = "head_ta"

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({ROLE_ADMIN, ROLE_HEAD_TA})

_INVITABLE_ROLES = {
    ROLE_ADMIN: frozenset({ROLE_ADMIN, ROLE_HEAD_TA}),
    ROLE_HEAD_TA: frozenset({ROLE_HEAD_TA}),
}


def is_admin(role: Optional[str]) -> bool:
    return role == ROLE_ADMIN


def can_manage_courses(role: Optional[str]) -> bool:
    """Courses, professors and offerings are admin-managed."""
    return is_admin(role)


def can_manage_hta_records(role: Optional[str]) -> bool:
    return role in ALLOWED_ROLES


def invitable_roles(role: Optional[str]) -> frozenset:
    return _INVITABLE_ROLES.get(role or "", frozenset())


def can_invite(inviter_role: Optional[str], target_role: str) -> bool:
    return target_role in invitable_roles(inviter_role)


def can_view_private_info(viewer_id: str, viewer_role: Optional[str], target_id: str) -> bool:
    return viewer_id == target_id or is_admin(viewer_role)


def can_edit_user(editor_id: str, editor_role: Optional[str], target_id: str) -> bool:
    return editor_id == target_id or is_admin(editor_role)


def can_delete_user_account(deleter_id: str, deleter_role: Optional[str], target_id: str) -> bool:
    """Admins may delete accounts, but never their own."""
    return is_admin(deleter_role) and deleter_id != target_id


def can_view_system_stats(role: Optional[str]) -> bool:
    return is_admin(role)


def can_export_data(role: Optional[str]) -> bool:
    return is_admin(role)


def can_change_roles(role: Optional[str]) -> bool:
    return is_admin(role)


__all__ = [
    "ROLE_ADMIN",
    "ROLE_HEAD_TA",
    "ALLOWED_ROLES",
    "is_admin",
    "can_manage_courses",
    "can_manage_hta_records",
    "invitable_roles",
    "can_invite",
    "can_view_private_info",
    "can_edit_user",
    "can_delete_user_account",
    "can_view_system_stats",
    "can_export_data",
    "can_change_roles",
]
