"""
Outbound email: message builders and mailer adapters.

Design:
- `ResendMailer` talks to the Resend HTTP API using requests; callers handle
  `EmailDeliveryError`.
- `OutboxMailer` keeps messages in memory and logs them. It is the default
  when RESEND_API_KEY is unset (local dev, tests).
- Builders return plain-text `EmailMessage`s; links point at APP_BASE_URL.

Security:
- Do not log API keys, invitation tokens or password reset tokens.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol
import logging
import os

import requests

logger = logging.getLogger("wuheadtas.email")

DEFAULT_FROM = "WU Head TAs <noreply@wuheadtas.com>"
RESEND_API_URL = "https://api.resend.com/emails"


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects or cannot receive a message."""


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    reply_to: Optional[str] = None


class Mailer(Protocol):
    def send(self, message: EmailMessage) -> str: ...


def app_base_url() -> str:
    return (os.getenv("APP_BASE_URL") or "http://localhost:8100").rstrip("/")


class ResendMailer:
    def __init__(self, api_key: str, *, sender: Optional[str] = None, timeout: float = 10.0) -> None:
        if not api_key:
            raise ValueError("missing_api_key")
        self._api_key = api_key
        self._sender = sender or os.getenv("EMAIL_FROM") or DEFAULT_FROM
        self._timeout = timeout

    def send(self, message: EmailMessage) -> str:
        payload = {
            "from": self._sender,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
        }
        if message.reply_to:
            payload["reply_to"] = message.reply_to
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        try:
            r = requests.post(RESEND_API_URL, json=payload, headers=headers, timeout=self._timeout)
        except requests.RequestException as exc:
            logger.warning("Email transport failed: %s", exc.__class__.__name__)
            raise EmailDeliveryError("transport_failed") from exc
        if r.status_code not in (200, 201, 202):
            logger.warning("Email provider rejected message (status=%s)", r.status_code)
            raise EmailDeliveryError(f"provider_status_{r.status_code}")
        try:
            return str((r.json() or {}).get("id") or "")
        except ValueError:
            return ""


class OutboxMailer:
    """Collects messages instead of sending them."""

    def __init__(self) -> None:
        self.outbox: List[EmailMessage] = []

    def send(self, message: EmailMessage) -> str:
        self.outbox.append(message)
        logger.info("Email queued in outbox (to=%s, subject=%s)", message.to, message.subject)
        return f"outbox-{len(self.outbox)}"


def build_default_mailer() -> Mailer:
    key = (os.getenv("RESEND_API_KEY") or "").strip()
    if key:
        return ResendMailer(key)
    return OutboxMailer()


# --- Message builders -------------------------------------------------------------


def invitation_url(token: str) -> str:
    return f"{app_base_url()}/auth/accept-invitation?token={token}"


def claim_url(token: str, profile_id: str) -> str:
    return f"{app_base_url()}/auth/claim-profile?token={token}&profile={profile_id}"


def build_invitation_email(*, to: str, inviter_name: str, token: str, role: str, expiration_days: int) -> EmailMessage:
    subject = "You're invited to join WU Head TAs" + (" as an administrator" if role == "admin" else "")
    role_label = "an administrator" if role == "admin" else "a Head TA"
    text = (
        f"{inviter_name} has invited you to join WU Head TAs as {role_label}.\n\n"
        f"Accept the invitation: {invitation_url(token)}\n\n"
        f"This invitation expires in {expiration_days} days."
    )
    return EmailMessage(to=to, subject=subject, text=text)


def build_targeted_invitation_email(
    *,
    to: str,
    inviter_name: str,
    token: str,
    course_number: str,
    course_name: str,
    semester: str,
    recipient_name: Optional[str] = None,
    message: Optional[str] = None,
    expiration_days: int = 14,
) -> EmailMessage:
    greeting = f"Hi {recipient_name},\n\n" if recipient_name else ""
    personal = f"\n\nMessage from {inviter_name}:\n{message}" if message else ""
    text = (
        f"{greeting}{inviter_name} recorded you as Head TA for {course_number} - {course_name} "
        f"({semester}) and invited you to join WU Head TAs.{personal}\n\n"
        f"Create your account: {invitation_url(token)}\n\n"
        f"This invitation expires in {expiration_days} days."
    )
    return EmailMessage(to=to, subject=f"Claim Your Head TA Profile for {course_number} - {course_name}", text=text)


def build_claim_profile_email(
    *,
    to: str,
    recipient_name: str,
    inviter_name: str,
    token: str,
    profile_id: str,
    message: Optional[str] = None,
    expiration_days: int = 14,
) -> EmailMessage:
    personal = f"\n\nMessage from {inviter_name}:\n{message}" if message else ""
    text = (
        f"Hi {recipient_name},\n\n"
        f"{inviter_name} has recorded your past work as a Head TA. Claim your profile to keep it up to date."
        f"{personal}\n\n"
        f"Claim your profile: {claim_url(token, profile_id)}\n\n"
        f"This link expires in {expiration_days} days."
    )
    return EmailMessage(to=to, subject="Claim Your WU Head TAs Profile", text=text)


def build_password_reset_email(*, to: str, user_name: str, token: str, expiration_hours: int) -> EmailMessage:
    text = (
        f"Hi {user_name},\n\n"
        "Someone asked to reset the password of your WU Head TAs account. "
        "If that was not you, ignore this email; your password stays the same.\n\n"
        f"Reset your password: {app_base_url()}/auth/reset-password?token={token}\n\n"
        f"This link expires in {expiration_hours} hours."
    )
    return EmailMessage(to=to, subject="Reset your WU Head TAs password", text=text)


def build_welcome_email(*, to: str, first_name: str) -> EmailMessage:
    text = (
        f"Welcome, {first_name}!\n\n"
        "Your WU Head TAs account is ready. Complete your profile so other Head TAs can find you.\n\n"
        f"Sign in: {app_base_url()}/auth/login"
    )
    return EmailMessage(to=to, subject="Welcome to WU Head TAs!", text=text)


__all__ = [
    "DEFAULT_FROM",
    "EmailDeliveryError",
    "EmailMessage",
    "Mailer",
    "ResendMailer",
    "OutboxMailer",
    "build_default_mailer",
    "build_invitation_email",
    "build_targeted_invitation_email",
    "build_claim_profile_email",
    "build_password_reset_email",
    "build_welcome_email",
]
