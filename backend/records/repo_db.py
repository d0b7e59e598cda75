"""
Postgres-backed records repository (psycopg3).

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Rows are fetched with `dict_row` and mapped onto the dataclasses in
  `records.models`, so services never see driver types.
- Column names for partial updates are whitelisted per table and composed
  with `psycopg.sql.Identifier`.
- Row ids are validated as UUIDs before querying; a malformed id behaves like
  a missing row (None, False or an empty list), as in the in-memory repo.

The schema lives in `records/schema.sql` (idempotent, applied by deploy
tooling or `apply_schema()`).
"""
from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar
from uuid import UUID

try:
    import psycopg
    from psycopg import sql
    from psycopg.rows import dict_row
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    sql = None  # type: ignore
    HAVE_PSYCOPG = False
else:  # pragma: no cover - import errors handled above
    try:
        from psycopg.errors import UniqueViolation  # type: ignore
    except Exception:  # pragma: no cover
        UniqueViolation = None  # type: ignore

from .models import (
    AuditEvent,
    Course,
    CourseOffering,
    Invitation,
    PasswordResetToken,
    PrivacySettings,
    Professor,
    TAAssignment,
    User,
)

T = TypeVar("T")

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_USER_COLUMNS = (
    "email", "password_hash", "first_name", "last_name", "grad_year", "degree_program",
    "current_role", "linkedin_url", "personal_site", "location", "role", "invited_by",
    "is_unclaimed", "claimed_by", "claimed_at", "recorded_by", "recorded_at",
    "invitation_sent_at",
)
_USER_SELECT = """
    id::text as id, email, password_hash, first_name, last_name, grad_year, degree_program,
    "current_role", linkedin_url, personal_site, location, role, invited_by::text as invited_by,
    is_unclaimed, claimed_by::text as claimed_by, claimed_at, recorded_by::text as recorded_by,
    recorded_at, invitation_sent_at, created_at, updated_at
"""
_COURSE_SELECT = "id::text as id, course_number, course_name, created_at, updated_at"
_PROFESSOR_SELECT = "id::text as id, first_name, last_name, email, created_at, updated_at"
_OFFERING_SELECT = """
    id::text as id, course_id::text as course_id, professor_id::text as professor_id,
    semester, year, season, updated_by::text as updated_by, created_at, updated_at
"""
_ASSIGNMENT_SELECT = """
    id::text as id, user_id::text as user_id, course_offering_id::text as course_offering_id,
    hours_per_week, responsibilities, created_at
"""
_INVITATION_SELECT = """
    id::text as id, email, invited_by::text as invited_by, token, role,
    claim_profile_id::text as claim_profile_id, offering_id::text as offering_id,
    expires_at, used_at, created_at
"""
_RESET_SELECT = "id::text as id, user_id::text as user_id, token, expires_at, used_at, created_at"
_AUDIT_SELECT = """
    id::text as id, user_id::text as user_id, action, entity_type, entity_id, metadata,
    ip_address, user_agent, created_at
"""
_PRIVACY_COLUMNS = (
    "show_email", "show_grad_year", "show_location", "show_linkedin",
    "show_personal_site", "show_courses", "appear_in_directory", "allow_contact",
)

_UPDATABLE = {
    "users": set(_USER_COLUMNS),
    "courses": {"course_number", "course_name"},
    "professors": {"first_name", "last_name", "email"},
    "course_offerings": {"course_id", "professor_id", "semester", "year", "season", "updated_by"},
    "ta_assignments": {"user_id", "course_offering_id", "hours_per_week", "responsibilities"},
    "invitations": {"email", "token", "role", "expires_at", "used_at", "claim_profile_id", "offering_id"},
}
_HAS_UPDATED_AT = {"users", "courses", "professors", "course_offerings"}

_SEASON_ORDER_SQL = "case season when 'spring' then 1 when 'summer' then 2 else 3 end"


def _dsn() -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("WUHTA_DATABASE_URL")
    if not dsn:
        raise RuntimeError("Database DSN unavailable for DBRecordsRepo")
    return dsn


def _to_model(cls: Type[T], row: Optional[Dict[str, Any]]) -> Optional[T]:
    if row is None:
        return None
    return cls(**row)


def _uuid_or_none(value: Any) -> Optional[str]:
    """Canonical UUID text, or None when `value` cannot be a row id.

    Ids arrive from URL paths; Postgres rejects malformed uuid literals with
    an error, while a missing row is simply "not found" for callers.
    """
    try:
        return str(UUID(str(value)))
    except (ValueError, TypeError):
        return None


class DBRecordsRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBRecordsRepo")
        self._dsn = dsn or _dsn()

    # --- Connection helpers ----------------------------------------------------

    def _fetch_one(self, query, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()

    def _fetch_all(self, query, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return list(cur.fetchall())

    def _write_one(self, query, params: Sequence[Any], *, conflict: str) -> Optional[Dict[str, Any]]:
        try:
            return self._fetch_one(query, params)
        except Exception as exc:
            if UniqueViolation is not None and isinstance(exc, UniqueViolation):
                raise ValueError(conflict) from exc
            raise

    def _execute(self, query, params: Sequence[Any] = ()) -> int:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.rowcount or 0

    def _get_by_id(self, table: str, select: str, row_id: str) -> Optional[Dict[str, Any]]:
        uid = _uuid_or_none(row_id)
        if uid is None:
            return None
        return self._fetch_one(
            sql.SQL("select " + select + " from {} where id = %s::uuid").format(sql.Identifier(table)), (uid,)
        )

    def _delete_by_id(self, table: str, row_id: str) -> bool:
        uid = _uuid_or_none(row_id)
        if uid is None:
            return False
        return self._execute(sql.SQL("delete from {} where id = %s::uuid").format(sql.Identifier(table)), (uid,)) > 0

    def _update(self, table: str, select: str, row_id: str, fields: Dict[str, Any], *, conflict: str):
        allowed = _UPDATABLE[table]
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"invalid_field:{sorted(unknown)[0]}")
        row_id = _uuid_or_none(row_id)
        if row_id is None:
            return None
        if not fields:
            return self._get_by_id(table, select, row_id)
        assignments = [sql.SQL("{} = %s").format(sql.Identifier(col)) for col in fields]
        if table in _HAS_UPDATED_AT:
            assignments.append(sql.SQL("updated_at = now()"))
        stmt = sql.SQL("update {} set {} where id = %s returning " + select).format(
            sql.Identifier(table), sql.SQL(", ").join(assignments)
        )
        return self._write_one(stmt, (*fields.values(), row_id), conflict=conflict)

    def apply_schema(self) -> None:
        ddl = SCHEMA_PATH.read_text(encoding="utf-8")
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            conn.execute(ddl)

    # --- Users -----------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        return _to_model(User, self._get_by_id("users", _USER_SELECT, user_id))

    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self._fetch_one(
            f"select {_USER_SELECT} from users where lower(email) = lower(%s)", ((email or "").strip(),)
        )
        return _to_model(User, row)

    def list_users(
        self,
        *,
        role: Optional[str] = None,
        is_unclaimed: Optional[bool] = None,
        query: Optional[str] = None,
    ) -> List[User]:
        clauses: List[str] = []
        params: List[Any] = []
        if role is not None:
            clauses.append("role = %s")
            params.append(role)
        if is_unclaimed is not None:
            clauses.append("is_unclaimed = %s")
            params.append(is_unclaimed)
        if query:
            clauses.append(
                "(first_name ilike %s or last_name ilike %s or email ilike %s or coalesce(location, '') ilike %s)"
            )
            like = f"%{query.strip()}%"
            params.extend([like, like, like, like])
        where = (" where " + " and ".join(clauses)) if clauses else ""
        rows = self._fetch_all(
            f"select {_USER_SELECT} from users{where} order by lower(last_name), lower(first_name)", params
        )
        return [User(**r) for r in rows]

    def create_user(self, *, email: str, password_hash: str, first_name: str, last_name: str, **fields: Any) -> User:
        values: Dict[str, Any] = {
            "email": email.strip(),
            "password_hash": password_hash,
            "first_name": first_name,
            "last_name": last_name,
        }
        for key, value in fields.items():
            if key not in _UPDATABLE["users"]:
                raise ValueError(f"invalid_field:{key}")
            values[key] = value
        stmt = sql.SQL("insert into users ({}) values ({}) returning " + _USER_SELECT).format(
            sql.SQL(", ").join(sql.Identifier(k) for k in values),
            sql.SQL(", ").join(sql.Placeholder() for _ in values),
        )
        row = self._write_one(stmt, tuple(values.values()), conflict="email_taken")
        return User(**row)

    def update_user(self, user_id: str, **fields: Any) -> Optional[User]:
        return _to_model(User, self._update("users", _USER_SELECT, user_id, fields, conflict="email_taken"))

    def delete_user(self, user_id: str) -> bool:
        return self._delete_by_id("users", user_id)

    def list_invitees(self, inviter_id: str) -> List[User]:
        uid = _uuid_or_none(inviter_id)
        if uid is None:
            return []
        rows = self._fetch_all(f"select {_USER_SELECT} from users where invited_by = %s::uuid order by created_at", (uid,))
        return [User(**r) for r in rows]

    # --- Courses ---------------------------------------------------------------

    def create_course(self, *, course_number: str, course_name: str) -> Course:
        row = self._write_one(
            f"insert into courses (course_number, course_name) values (%s, %s) returning {_COURSE_SELECT}",
            (course_number, course_name),
            conflict="course_number_taken",
        )
        return Course(**row)

    def get_course(self, course_id: str) -> Optional[Course]:
        return _to_model(Course, self._get_by_id("courses", _COURSE_SELECT, course_id))

    def get_course_by_number(self, course_number: str) -> Optional[Course]:
        return _to_model(
            Course, self._fetch_one(f"select {_COURSE_SELECT} from courses where course_number = %s", (course_number,))
        )

    def list_courses(self) -> List[Course]:
        return [Course(**r) for r in self._fetch_all(f"select {_COURSE_SELECT} from courses order by course_number")]

    def update_course(self, course_id: str, **fields: Any) -> Optional[Course]:
        return _to_model(Course, self._update("courses", _COURSE_SELECT, course_id, fields, conflict="course_number_taken"))

    def delete_course(self, course_id: str) -> bool:
        return self._delete_by_id("courses", course_id)

    # --- Professors ------------------------------------------------------------

    def create_professor(self, *, first_name: str, last_name: str, email: str) -> Professor:
        row = self._write_one(
            f"insert into professors (first_name, last_name, email) values (%s, %s, %s) returning {_PROFESSOR_SELECT}",
            (first_name, last_name, email.strip()),
            conflict="professor_email_taken",
        )
        return Professor(**row)

    def get_professor(self, professor_id: str) -> Optional[Professor]:
        return _to_model(Professor, self._get_by_id("professors", _PROFESSOR_SELECT, professor_id))

    def get_professor_by_email(self, email: str) -> Optional[Professor]:
        return _to_model(
            Professor,
            self._fetch_one(f"select {_PROFESSOR_SELECT} from professors where lower(email) = lower(%s)", (email.strip(),)),
        )

    def list_professors(self) -> List[Professor]:
        rows = self._fetch_all(f"select {_PROFESSOR_SELECT} from professors order by lower(last_name), lower(first_name)")
        return [Professor(**r) for r in rows]

    def update_professor(self, professor_id: str, **fields: Any) -> Optional[Professor]:
        return _to_model(
            Professor, self._update("professors", _PROFESSOR_SELECT, professor_id, fields, conflict="professor_email_taken")
        )

    def delete_professor(self, professor_id: str) -> bool:
        return self._delete_by_id("professors", professor_id)

    # --- Course offerings ------------------------------------------------------

    def create_offering(
        self,
        *,
        course_id: str,
        professor_id: str,
        year: int,
        season: str,
        semester: str,
        updated_by: Optional[str] = None,
    ) -> CourseOffering:
        row = self._fetch_one(
            "insert into course_offerings (course_id, professor_id, year, season, semester, updated_by) "
            f"values (%s::uuid, %s::uuid, %s, %s, %s, %s::uuid) returning {_OFFERING_SELECT}",
            (course_id, professor_id, int(year), season, semester, updated_by),
        )
        return CourseOffering(**row)

    def get_offering(self, offering_id: str) -> Optional[CourseOffering]:
        return _to_model(CourseOffering, self._get_by_id("course_offerings", _OFFERING_SELECT, offering_id))

    def list_offerings(
        self,
        *,
        course_id: Optional[str] = None,
        professor_id: Optional[str] = None,
        year: Optional[int] = None,
        season: Optional[str] = None,
    ) -> List[CourseOffering]:
        clauses: List[str] = []
        params: List[Any] = []
        for column, value in (("course_id", course_id), ("professor_id", professor_id)):
            if value is None:
                continue
            uid = _uuid_or_none(value)
            if uid is None:
                return []
            clauses.append(f"{column} = %s::uuid")
            params.append(uid)
        if year is not None:
            clauses.append("year = %s")
            params.append(int(year))
        if season is not None:
            clauses.append("season = %s")
            params.append(season)
        where = (" where " + " and ".join(clauses)) if clauses else ""
        rows = self._fetch_all(
            f"select {_OFFERING_SELECT} from course_offerings{where} order by year, {_SEASON_ORDER_SQL}, created_at",
            params,
        )
        return [CourseOffering(**r) for r in rows]

    def update_offering(self, offering_id: str, **fields: Any) -> Optional[CourseOffering]:
        return _to_model(
            CourseOffering,
            self._update("course_offerings", _OFFERING_SELECT, offering_id, fields, conflict="offering_taken"),
        )

    def delete_offering(self, offering_id: str) -> bool:
        return self._delete_by_id("course_offerings", offering_id)

    # --- TA assignments --------------------------------------------------------

    def create_assignment(
        self,
        *,
        user_id: str,
        course_offering_id: str,
        hours_per_week: Optional[int] = None,
        responsibilities: Optional[str] = None,
    ) -> TAAssignment:
        row = self._write_one(
            "insert into ta_assignments (user_id, course_offering_id, hours_per_week, responsibilities) "
            f"values (%s::uuid, %s::uuid, %s, %s) returning {_ASSIGNMENT_SELECT}",
            (user_id, course_offering_id, hours_per_week, responsibilities),
            conflict="assignment_taken",
        )
        return TAAssignment(**row)

    def get_assignment(self, assignment_id: str) -> Optional[TAAssignment]:
        return _to_model(TAAssignment, self._get_by_id("ta_assignments", _ASSIGNMENT_SELECT, assignment_id))

    def list_assignments(self, *, user_id: Optional[str] = None, offering_id: Optional[str] = None) -> List[TAAssignment]:
        clauses: List[str] = []
        params: List[Any] = []
        for column, value in (("user_id", user_id), ("course_offering_id", offering_id)):
            if value is None:
                continue
            uid = _uuid_or_none(value)
            if uid is None:
                return []
            clauses.append(f"{column} = %s::uuid")
            params.append(uid)
        where = (" where " + " and ".join(clauses)) if clauses else ""
        rows = self._fetch_all(f"select {_ASSIGNMENT_SELECT} from ta_assignments{where} order by created_at", params)
        return [TAAssignment(**r) for r in rows]

    def update_assignment(self, assignment_id: str, **fields: Any) -> Optional[TAAssignment]:
        return _to_model(
            TAAssignment,
            self._update("ta_assignments", _ASSIGNMENT_SELECT, assignment_id, fields, conflict="assignment_taken"),
        )

    def delete_assignment(self, assignment_id: str) -> bool:
        return self._delete_by_id("ta_assignments", assignment_id)

    def reassign_assignments(self, from_user_id: str, to_user_id: str) -> int:
        source, target = _uuid_or_none(from_user_id), _uuid_or_none(to_user_id)
        if source is None or target is None:
            return 0
        return self._execute("update ta_assignments set user_id = %s::uuid where user_id = %s::uuid", (target, source))

    # --- Invitations -----------------------------------------------------------

    def create_invitation(
        self,
        *,
        email: str,
        invited_by: str,
        token: str,
        expires_at: datetime,
        role: str,
        claim_profile_id: Optional[str] = None,
        offering_id: Optional[str] = None,
    ) -> Invitation:
        row = self._write_one(
            "insert into invitations (email, invited_by, token, expires_at, role, claim_profile_id, offering_id) "
            f"values (%s, %s::uuid, %s, %s, %s, %s::uuid, %s::uuid) returning {_INVITATION_SELECT}",
            (email, invited_by, token, expires_at, role, claim_profile_id, offering_id),
            conflict="token_taken",
        )
        return Invitation(**row)

    def get_invitation(self, invitation_id: str) -> Optional[Invitation]:
        return _to_model(Invitation, self._get_by_id("invitations", _INVITATION_SELECT, invitation_id))

    def get_invitation_by_token(self, token: str) -> Optional[Invitation]:
        return _to_model(
            Invitation, self._fetch_one(f"select {_INVITATION_SELECT} from invitations where token = %s", (token,))
        )

    def list_invitations(self, *, invited_by: Optional[str] = None, email: Optional[str] = None) -> List[Invitation]:
        clauses: List[str] = []
        params: List[Any] = []
        if invited_by is not None:
            inviter = _uuid_or_none(invited_by)
            if inviter is None:
                return []
            clauses.append("invited_by = %s::uuid")
            params.append(inviter)
        if email is not None:
            clauses.append("lower(email) = lower(%s)")
            params.append(email.strip())
        where = (" where " + " and ".join(clauses)) if clauses else ""
        rows = self._fetch_all(f"select {_INVITATION_SELECT} from invitations{where} order by created_at desc", params)
        return [Invitation(**r) for r in rows]

    def mark_invitation_used(self, invitation_id: str, used_at: datetime) -> bool:
        # Single use: only the first writer flips used_at.
        uid = _uuid_or_none(invitation_id)
        if uid is None:
            return False
        return (
            self._execute("update invitations set used_at = %s where id = %s::uuid and used_at is null", (used_at, uid))
            > 0
        )

    def update_invitation(self, invitation_id: str, **fields: Any) -> Optional[Invitation]:
        return _to_model(
            Invitation, self._update("invitations", _INVITATION_SELECT, invitation_id, fields, conflict="token_taken")
        )

    def delete_invitation(self, invitation_id: str) -> bool:
        return self._delete_by_id("invitations", invitation_id)

    def delete_expired_invitations(self, now: datetime) -> int:
        return self._execute("delete from invitations where used_at is null and expires_at <= %s", (now,))

    # --- Password reset tokens -------------------------------------------------

    def create_password_reset(self, *, user_id: str, token: str, expires_at: datetime) -> PasswordResetToken:
        row = self._write_one(
            f"insert into password_reset_tokens (user_id, token, expires_at) values (%s::uuid, %s, %s) "
            f"returning {_RESET_SELECT}",
            (user_id, token, expires_at),
            conflict="token_taken",
        )
        return PasswordResetToken(**row)

    def get_password_reset_by_token(self, token: str) -> Optional[PasswordResetToken]:
        return _to_model(
            PasswordResetToken,
            self._fetch_one(f"select {_RESET_SELECT} from password_reset_tokens where token = %s", (token,)),
        )

    def mark_password_reset_used(self, reset_id: str, used_at: datetime) -> bool:
        uid = _uuid_or_none(reset_id)
        if uid is None:
            return False
        return (
            self._execute(
                "update password_reset_tokens set used_at = %s where id = %s::uuid and used_at is null", (used_at, uid)
            )
            > 0
        )

    # --- Audit events ----------------------------------------------------------

    def add_audit_event(
        self,
        *,
        action: str,
        entity_type: str,
        user_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditEvent:
        row = self._fetch_one(
            "insert into audit_logs (user_id, action, entity_type, entity_id, metadata, ip_address, user_agent) "
            f"values (%s::uuid, %s, %s, %s, %s, %s, %s) returning {_AUDIT_SELECT}",
            (user_id, action, entity_type, entity_id, Json(dict(metadata or {})), ip_address, user_agent),
        )
        return _audit_from_row(row)

    def list_audit_events(
        self,
        *,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AuditEvent]:
        clauses: List[str] = []
        params: List[Any] = []
        if user_id is not None:
            user_id = _uuid_or_none(user_id)
            if user_id is None:
                return []
        for column, value, cast in (
            ("user_id", user_id, "::uuid"),
            ("action", action, ""),
            ("entity_type", entity_type, ""),
            ("entity_id", entity_id, ""),
        ):
            if value is not None:
                clauses.append(f"{column} = %s{cast}")
                params.append(value)
        if since is not None:
            clauses.append("created_at >= %s")
            params.append(since)
        if until is not None:
            clauses.append("created_at <= %s")
            params.append(until)
        where = (" where " + " and ".join(clauses)) if clauses else ""
        params.extend([int(limit), int(offset)])
        rows = self._fetch_all(
            f"select {_AUDIT_SELECT} from audit_logs{where} order by created_at desc limit %s offset %s", params
        )
        return [_audit_from_row(r) for r in rows]

    # --- Privacy settings ------------------------------------------------------

    def get_privacy_settings(self, user_id: str) -> Optional[PrivacySettings]:
        uid = _uuid_or_none(user_id)
        if uid is None:
            return None
        cols = ", ".join(_PRIVACY_COLUMNS)
        row = self._fetch_one(
            f"select user_id::text as user_id, {cols}, updated_at from user_privacy_settings where user_id = %s::uuid",
            (uid,),
        )
        return _to_model(PrivacySettings, row)

    def save_privacy_settings(self, settings: PrivacySettings) -> PrivacySettings:
        cols = ", ".join(_PRIVACY_COLUMNS)
        placeholders = ", ".join(["%s"] * len(_PRIVACY_COLUMNS))
        updates = ", ".join(f"{c} = excluded.{c}" for c in _PRIVACY_COLUMNS)
        row = self._fetch_one(
            f"insert into user_privacy_settings (user_id, {cols}) values (%s::uuid, {placeholders}) "
            f"on conflict (user_id) do update set {updates}, updated_at = now() "
            f"returning user_id::text as user_id, {cols}, updated_at",
            (settings.user_id, *(getattr(settings, c) for c in _PRIVACY_COLUMNS)),
        )
        return PrivacySettings(**row)

    def delete_privacy_settings(self, user_id: str) -> None:
        uid = _uuid_or_none(user_id)
        if uid is not None:
            self._execute("delete from user_privacy_settings where user_id = %s::uuid", (uid,))


def _audit_from_row(row: Dict[str, Any]) -> AuditEvent:
    meta = row.get("metadata")
    if isinstance(meta, str):
        meta = json.loads(meta or "{}")
    return AuditEvent(**{**row, "metadata": dict(meta or {})})


__all__ = ["DBRecordsRepo", "HAVE_PSYCOPG", "SCHEMA_PATH"]
