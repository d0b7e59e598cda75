"""
Password reset by email: a single-use token valid for two hours.

Intent:
    `request_reset` never reveals whether an email belongs to an account. The
    caller always answers the same way; a token is created and mailed only for
    registered users (unclaimed profiles have no password to reset).

Token validity:
    valid iff `used_at is None` AND `expires_at > now` AND the user still exists.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets
from typing import Callable, List, Optional

from audit import audit_log
from audit.audit_log import AuditLogger, RequestContext
from notifications.email import EmailDeliveryError, Mailer, build_password_reset_email
from records.models import PasswordResetToken, User, utcnow
from records.repo import RecordsRepo
from records.validation import normalize_email

from .passwords import hash_password, validate_password_strength

logger = logging.getLogger("wuheadtas.identity")

RESET_TOKEN_BYTES = 32
RESET_EXPIRATION_HOURS = 2


class PasswordResetError(ValueError):
    """`invalid_token` or `weak_password` (with the failing rules in `errors`)."""

    def __init__(self, code: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(code)
        self.code = code
        self.errors = list(errors or [])


@dataclass
class PasswordResetService:
    repo: RecordsRepo
    mailer: Mailer
    audit_logger: Optional[AuditLogger] = None
    clock: Callable[[], datetime] = utcnow

    def request_reset(self, email: str) -> Optional[PasswordResetToken]:
        """Create and mail a reset token; None when no registered user has `email`."""
        user = self.repo.get_user_by_email(normalize_email(email))
        if user is None or user.is_unclaimed:
            logger.info("Password reset requested for unknown email")
            return None
        reset = self.repo.create_password_reset(
            user_id=user.id,
            token=secrets.token_hex(RESET_TOKEN_BYTES),
            expires_at=self.clock() + timedelta(hours=RESET_EXPIRATION_HOURS),
        )
        message = build_password_reset_email(
            to=user.email, user_name=user.full_name, token=reset.token, expiration_hours=RESET_EXPIRATION_HOURS
        )
        try:
            self.mailer.send(message)
        except EmailDeliveryError as exc:
            # The token stays valid; the user can ask again.
            logger.warning("Password reset email not delivered (user=%s): %s", user.id, exc)
        return reset

    def validate_token(self, token: str) -> PasswordResetToken:
        reset = self.repo.get_password_reset_by_token((token or "").strip())
        if reset is None or not reset.is_active(self.clock()):
            raise PasswordResetError("invalid_token")
        if self.repo.get_user(reset.user_id) is None:
            raise PasswordResetError("invalid_token")
        return reset

    def reset_password(self, token: str, new_password: str, *, context: Optional[RequestContext] = None) -> User:
        problems = validate_password_strength(new_password)
        if problems:
            raise PasswordResetError("weak_password", problems)
        reset = self.validate_token(token)
        if not self.repo.mark_password_reset_used(reset.id, self.clock()):
            raise PasswordResetError("invalid_token")
        user = self.repo.update_user(reset.user_id, password_hash=hash_password(new_password))
        if user is None:
            raise PasswordResetError("invalid_token")
        logger.info("Password reset completed (user=%s)", user.id)
        if self.audit_logger is not None:
            self.audit_logger.log(
                audit_log.PASSWORD_RESET,
                audit_log.ENTITY_USER,
                user_id=user.id,
                entity_id=user.id,
                context=context,
            )
        return user


__all__ = ["PasswordResetError", "PasswordResetService", "RESET_EXPIRATION_HOURS"]
