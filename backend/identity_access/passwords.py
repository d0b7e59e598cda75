"""
Password hashing and strength rules.

Hashing delegates to werkzeug.security (salted PBKDF2/scrypt depending on the
installed version); hashes are self-describing so upgrades stay verifiable.
"""
from __future__ import annotations

import re
from typing import List

from werkzeug.security import check_password_hash, generate_password_hash

from records.models import UNCLAIMED_PASSWORD_HASH

MIN_PASSWORD_LENGTH = 8

_SPECIAL_RE = re.compile(r"[^A-Za-z0-9]")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    """Return True when `password` matches; unclaimed profiles never log in."""
    if not password_hash or password_hash == UNCLAIMED_PASSWORD_HASH:
        return False
    try:
        return check_password_hash(password_hash, password)
    except ValueError:
        # Unknown hash format (e.g. imported legacy rows).
        return False


def validate_password_strength(password: str) -> List[str]:
    errors: List[str] = []
    pw = password or ""
    if len(pw) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Z]", pw):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", pw):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", pw):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_RE.search(pw):
        errors.append("Password must contain at least one special character")
    return errors


__all__ = ["MIN_PASSWORD_LENGTH", "hash_password", "verify_password", "validate_password_strength"]
