"""
Unclaimed profiles: historical Head TAs recorded by administrators before they
registered, and the claim step that merges such a profile into a real account.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import re
import time
from typing import Callable, List, Optional

from audit import audit_log
from audit.audit_log import AuditLogger, RequestContext
from records.models import PLACEHOLDER_EMAIL_DOMAIN, ROLE_HEAD_TA, UNCLAIMED_PASSWORD_HASH, User, utcnow
from records.repo import RecordsRepo
from records.validation import is_valid_email, normalize_email, normalize_name

logger = logging.getLogger("wuheadtas.onboarding")


def placeholder_email(first_name: str, last_name: str, ts_ms: Optional[int] = None) -> str:
    """Unique stand-in address for a profile without known contact details."""
    stamp = ts_ms if ts_ms is not None else int(time.time() * 1000)

    def slug(value: str) -> str:
        return re.sub(r"[^a-z0-9]+", "", value.lower()) or "x"

    return f"unclaimed.{slug(first_name)}.{slug(last_name)}.{stamp}{PLACEHOLDER_EMAIL_DOMAIN}"


_NICKNAMES = {
    "william": ("will", "bill", "billy"),
    "benjamin": ("ben", "benny"),
    "michael": ("mike", "mikey"),
    "christopher": ("chris",),
    "jonathan": ("jon", "john"),
    "joseph": ("joe", "joey"),
    "matthew": ("matt",),
    "nicholas": ("nick", "nicky"),
    "robert": ("rob", "bob", "robbie", "bobby"),
    "richard": ("rick", "ricky"),
    "daniel": ("dan", "danny"),
    "thomas": ("tom", "tommy"),
    "james": ("jim", "jimmy", "jamie"),
    "andrew": ("andy", "drew"),
    "alexander": ("alex",),
    "elizabeth": ("liz", "beth", "lizzie", "betty"),
    "katherine": ("kate", "katie", "kathy"),
    "jennifer": ("jen", "jenny"),
    "jessica": ("jess", "jessie"),
    "stephanie": ("steph",),
    "samantha": ("sam", "sammy"),
    "rebecca": ("becca", "becky"),
    "alexandra": ("alex", "lexi"),
    "victoria": ("vicky", "tori"),
}


def _name_variants(first: str) -> set:
    variants = set(_NICKNAMES.get(first, ()))
    for full, nicks in _NICKNAMES.items():
        if first in nicks:
            variants.add(full)
            variants.update(n for n in nicks if n != first)
    return variants


def names_match(claimer_first: str, claimer_last: str, profile_first: str, profile_last: str) -> bool:
    """Whether a user may claim a profile by name.

    Last names must be equal (case-insensitive). First names may be equal,
    one a prefix of the other ("Will" / "William"), or a known nickname.
    """
    cf, cl = claimer_first.strip().lower(), claimer_last.strip().lower()
    pf, pl = profile_first.strip().lower(), profile_last.strip().lower()
    if cl != pl:
        return False
    if cf == pf or cf.startswith(pf) or pf.startswith(cf):
        return True
    return pf in _name_variants(cf)


@dataclass
class ClaimsService:
    repo: RecordsRepo
    audit_logger: Optional[AuditLogger] = None
    clock: Callable[[], datetime] = utcnow

    def create_unclaimed_profile(
        self,
        *,
        first_name: str,
        last_name: str,
        recorded_by: Optional[str],
        email: Optional[str] = None,
        grad_year: Optional[int] = None,
        degree_program: Optional[str] = None,
        location: Optional[str] = None,
    ) -> User:
        first = normalize_name(first_name, code="invalid_first_name")
        last = normalize_name(last_name, code="invalid_last_name")
        if email is not None and email.strip():
            if not is_valid_email(email):
                raise ValueError("invalid_email")
            address = normalize_email(email)
        else:
            address = placeholder_email(first, last)
        user = self.repo.create_user(
            email=address,
            password_hash=UNCLAIMED_PASSWORD_HASH,
            first_name=first,
            last_name=last,
            role=ROLE_HEAD_TA,
            is_unclaimed=True,
            recorded_by=recorded_by,
            recorded_at=self.clock(),
            grad_year=grad_year,
            degree_program=degree_program,
            location=location,
        )
        logger.info("Unclaimed profile created (id=%s)", user.id)
        return user

    def find_unclaimed_by_name(self, first_name: str, last_name: str) -> Optional[User]:
        first = (first_name or "").strip().lower()
        last = (last_name or "").strip().lower()
        for user in self.repo.list_users(is_unclaimed=True):
            if user.claimed_by:
                continue
            if user.first_name.lower() == first and user.last_name.lower() == last:
                return user
        return None

    def list_unclaimed(self, query: Optional[str] = None, *, without_invitation: bool = False) -> List[User]:
        profiles = [u for u in self.repo.list_users(is_unclaimed=True, query=query) if not u.claimed_by]
        if without_invitation:
            profiles = [u for u in profiles if u.invitation_sent_at is None]
        return profiles

    def find_claimable_profiles(self, user_id: str) -> List[User]:
        """Unclaimed profiles that plausibly belong to `user_id`.

        A profile matches on the same full name, the same last name, or a
        first name containing the first three letters of the user's first name.
        """
        user = self.repo.get_user(user_id)
        if user is None:
            raise LookupError("user_not_found")
        first = user.first_name.lower()
        last = user.last_name.lower()
        prefix = first[:3]
        matches = []
        for profile in self.list_unclaimed():
            if profile.id == user.id:
                continue
            p_first = profile.first_name.lower()
            p_last = profile.last_name.lower()
            if (p_first == first and p_last == last) or p_last == last or (prefix and prefix in p_first):
                matches.append(profile)
        # Exact full-name matches first.
        matches.sort(key=lambda p: (not (p.first_name.lower() == first and p.last_name.lower() == last), p.last_name))
        return matches

    def claim_profile(
        self,
        unclaimed_id: str,
        claiming_user_id: str,
        *,
        require_name_match: bool = False,
        context: Optional[RequestContext] = None,
    ) -> int:
        """Move the profile's HTA records to the claimer; return how many moved."""
        profile = self.repo.get_user(unclaimed_id)
        if profile is None or not profile.is_unclaimed or profile.claimed_by:
            raise LookupError("Unclaimed profile not found or already claimed")
        claimer = self.repo.get_user(claiming_user_id)
        if claimer is None or claimer.is_unclaimed:
            raise LookupError("user_not_found")
        if require_name_match and not names_match(
            claimer.first_name, claimer.last_name, profile.first_name, profile.last_name
        ):
            raise PermissionError("name_mismatch")
        moved = self.repo.reassign_assignments(profile.id, claimer.id)
        self.repo.update_user(profile.id, claimed_by=claimer.id, claimed_at=self.clock())
        if claimer.grad_year is None and profile.grad_year is not None:
            self.repo.update_user(claimer.id, grad_year=profile.grad_year)
        logger.info("Profile %s claimed by %s (records moved=%s)", profile.id, claimer.id, moved)
        if self.audit_logger is not None:
            self.audit_logger.log(
                audit_log.PROFILE_CLAIMED,
                audit_log.ENTITY_USER,
                user_id=claimer.id,
                entity_id=profile.id,
                metadata={"profile_name": profile.full_name, "records_moved": moved},
                context=context,
            )
        return moved

    def mark_invitation_sent(self, unclaimed_id: str) -> User:
        profile = self.repo.get_user(unclaimed_id)
        if profile is None or not profile.is_unclaimed or profile.claimed_by:
            raise LookupError("profile_not_found")
        updated = self.repo.update_user(profile.id, invitation_sent_at=self.clock())
        assert updated is not None
        return updated
