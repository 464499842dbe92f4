"""
Administration datastore contract and in-memory implementation.

Why:
    Admin actions talk to a handful of tables (`user_details`, `classes`,
    `subjects`, `announcements`, `audit_logs`). The contract below is what the
    actions need; `repo_supabase.SupabaseAdminRepo` implements it over
    PostgREST and `InMemoryAdminRepo` implements it for dev and tests.

Errors:
    Implementations raise `RepoError` carrying the Postgres/PostgREST code so
    the actions can map it onto an ErrorKind:
      - 23505 unique violation
      - 23503 foreign-key violation
      - PGRST116 no row matched
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Protocol, Tuple
import itertools
import uuid

from identity_access.domain import Role


UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_FOUND = "PGRST116"


class RepoError(Exception):
    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
        self.message = message or code


@dataclass(frozen=True)
class ProfileQuery:
    search: str | None = None
    role: Role | None = None
    verified: bool | None = None
    offset: int = 0
    limit: int = 10


@dataclass(frozen=True)
class AuditQuery:
    action: str | None = None
    search: str | None = None
    offset: int = 0
    limit: int = 15


Row = Dict[str, Any]


class AdminRepo(Protocol):
    # user_details
    def insert_profile(self, *, user_id: str, email: str, full_name: str, role: Role, is_verified: bool) -> Row:
        ...

    def set_profile_verified(self, user_id: str, verified: bool = True) -> Row:
        ...

    def delete_profile(self, user_id: str) -> None:
        ...

    def list_profiles(self, query: ProfileQuery) -> Tuple[List[Row], int]:
        ...

    def list_unverified_profiles(self) -> List[Row]:
        ...

    # classes
    def list_classes(self) -> List[Row]:
        ...

    def insert_class(self, values: Mapping[str, Any]) -> Row:
        ...

    def update_class(self, class_id: str, values: Mapping[str, Any]) -> Row:
        ...

    def delete_class(self, class_id: str) -> None:
        ...

    # subjects
    def list_subjects(self) -> List[Row]:
        ...

    def insert_subject(self, values: Mapping[str, Any]) -> Row:
        ...

    def update_subject(self, subject_id: str, values: Mapping[str, Any]) -> Row:
        ...

    def delete_subject(self, subject_id: str) -> None:
        ...

    # announcements
    def insert_announcement(self, values: Mapping[str, Any]) -> Row:
        ...

    def update_announcement(self, announcement_id: str, values: Mapping[str, Any]) -> Row:
        ...

    def delete_announcement(self, announcement_id: str) -> None:
        ...

    def list_announcements(self, role: Role | None) -> List[Row]:
        """Pinned first, newest first. `role=None` returns every announcement."""
        ...

    # audit_logs
    def insert_audit(self, values: Mapping[str, Any]) -> Row:
        ...

    def list_audit(self, query: AuditQuery) -> Tuple[List[Row], int]:
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _contains(haystack: Any, needle: str) -> bool:
    return isinstance(haystack, str) and needle in haystack.lower()


class InMemoryAdminRepo:
    """Dict-backed AdminRepo enforcing the same constraints as the database.

    Constraints mirrored: unique `classes.name`, unique `subjects.subject_code`,
    `classes.homeroom_teacher_id` references `user_details.id` (set to null when
    the profile is deleted).
    """

    def __init__(self) -> None:
        self.profiles: Dict[str, Row] = {}
        self.classes: Dict[str, Row] = {}
        self.subjects: Dict[str, Row] = {}
        self.announcements: Dict[str, Row] = {}
        self.audit_logs: List[Row] = []
        self._seq = itertools.count(1)

    def _stamp(self, row: Row) -> Row:
        row.setdefault("created_at", _now_iso())
        row["_seq"] = next(self._seq)
        return row

    @staticmethod
    def _public(row: Row) -> Row:
        return {k: v for k, v in row.items() if not k.startswith("_")}

    @staticmethod
    def _require(table: Dict[str, Row], row_id: str) -> Row:
        row = table.get(row_id)
        if row is None:
            raise RepoError(NOT_FOUND, "The result contains 0 rows")
        return row

    # --- user_details ------------------------------------------------------------

    def insert_profile(self, *, user_id: str, email: str, full_name: str, role: Role, is_verified: bool) -> Row:
        if user_id in self.profiles:
            raise RepoError(UNIQUE_VIOLATION, "duplicate key value violates unique constraint \"user_details_pkey\"")
        row = self._stamp(
            {
                "id": user_id,
                "email": email,
                "full_name": full_name,
                "role": role.value,
                "is_verified": is_verified,
            }
        )
        self.profiles[user_id] = row
        return self._public(row)

    def set_profile_verified(self, user_id: str, verified: bool = True) -> Row:
        row = self._require(self.profiles, user_id)
        row["is_verified"] = verified
        row["updated_at"] = _now_iso()
        return self._public(row)

    def delete_profile(self, user_id: str) -> None:
        self.profiles.pop(user_id, None)
        for cls in self.classes.values():
            if cls.get("homeroom_teacher_id") == user_id:
                cls["homeroom_teacher_id"] = None

    def list_profiles(self, query: ProfileQuery) -> Tuple[List[Row], int]:
        rows = list(self.profiles.values())
        if query.search:
            needle = query.search.lower()
            rows = [r for r in rows if _contains(r.get("email"), needle) or _contains(r.get("full_name"), needle)]
        if query.role is not None:
            rows = [r for r in rows if r.get("role") == query.role.value]
        if query.verified is not None:
            rows = [r for r in rows if bool(r.get("is_verified")) is query.verified]
        rows.sort(key=lambda r: (r["created_at"], r["_seq"]), reverse=True)
        total = len(rows)
        page = rows[query.offset : query.offset + query.limit]
        return [self._public(r) for r in page], total

    def list_unverified_profiles(self) -> List[Row]:
        rows = [r for r in self.profiles.values() if not r.get("is_verified")]
        rows.sort(key=lambda r: (r["created_at"], r["_seq"]))
        return [self._public(r) for r in rows]

    # --- classes -----------------------------------------------------------------

    def _check_class(self, values: Mapping[str, Any], *, exclude: str | None = None) -> None:
        name = values.get("name")
        for cid, row in self.classes.items():
            if cid != exclude and row.get("name") == name:
                raise RepoError(UNIQUE_VIOLATION, "duplicate key value violates unique constraint \"classes_name_key\"")
        teacher = values.get("homeroom_teacher_id")
        if teacher is not None and teacher not in self.profiles:
            raise RepoError(FOREIGN_KEY_VIOLATION, "insert or update on table \"classes\" violates foreign key constraint")

    def list_classes(self) -> List[Row]:
        return [self._public(r) for r in sorted(self.classes.values(), key=lambda r: r.get("name") or "")]

    def insert_class(self, values: Mapping[str, Any]) -> Row:
        self._check_class(values)
        row = self._stamp({"id": str(uuid.uuid4()), "name": values.get("name"), "homeroom_teacher_id": values.get("homeroom_teacher_id")})
        self.classes[row["id"]] = row
        return self._public(row)

    def update_class(self, class_id: str, values: Mapping[str, Any]) -> Row:
        row = self._require(self.classes, class_id)
        self._check_class(values, exclude=class_id)
        row.update({"name": values.get("name"), "homeroom_teacher_id": values.get("homeroom_teacher_id"), "updated_at": _now_iso()})
        return self._public(row)

    def delete_class(self, class_id: str) -> None:
        self._require(self.classes, class_id)
        del self.classes[class_id]

    # --- subjects ----------------------------------------------------------------

    def _check_subject(self, values: Mapping[str, Any], *, exclude: str | None = None) -> None:
        code = values.get("subject_code")
        for sid, row in self.subjects.items():
            if sid != exclude and row.get("subject_code") == code:
                raise RepoError(UNIQUE_VIOLATION, "duplicate key value violates unique constraint \"subjects_subject_code_key\"")

    def list_subjects(self) -> List[Row]:
        return [self._public(r) for r in sorted(self.subjects.values(), key=lambda r: r.get("subject_name") or "")]

    def insert_subject(self, values: Mapping[str, Any]) -> Row:
        self._check_subject(values)
        row = self._stamp({"id": str(uuid.uuid4()), **dict(values)})
        self.subjects[row["id"]] = row
        return self._public(row)

    def update_subject(self, subject_id: str, values: Mapping[str, Any]) -> Row:
        row = self._require(self.subjects, subject_id)
        self._check_subject(values, exclude=subject_id)
        row.update(dict(values))
        row["updated_at"] = _now_iso()
        return self._public(row)

    def delete_subject(self, subject_id: str) -> None:
        self._require(self.subjects, subject_id)
        del self.subjects[subject_id]

    # --- announcements -----------------------------------------------------------

    def insert_announcement(self, values: Mapping[str, Any]) -> Row:
        row = self._stamp({"id": str(uuid.uuid4()), "is_pinned": False, **dict(values)})
        self.announcements[row["id"]] = row
        return self._public(row)

    def update_announcement(self, announcement_id: str, values: Mapping[str, Any]) -> Row:
        row = self._require(self.announcements, announcement_id)
        row.update(dict(values))
        row["updated_at"] = _now_iso()
        return self._public(row)

    def delete_announcement(self, announcement_id: str) -> None:
        self._require(self.announcements, announcement_id)
        del self.announcements[announcement_id]

    def list_announcements(self, role: Role | None) -> List[Row]:
        rows = list(self.announcements.values())
        if role is not None:
            rows = [r for r in rows if r.get("target_role") in (None, role.value)]
        rows.sort(key=lambda r: (bool(r.get("is_pinned")), r["created_at"], r["_seq"]), reverse=True)
        return [self._public(r) for r in rows]

    # --- audit_logs --------------------------------------------------------------

    def insert_audit(self, values: Mapping[str, Any]) -> Row:
        row = {"id": str(uuid.uuid4()), "timestamp": _now_iso(), **dict(values)}
        row["_seq"] = next(self._seq)
        self.audit_logs.append(row)
        return self._public(row)

    def list_audit(self, query: AuditQuery) -> Tuple[List[Row], int]:
        rows = list(self.audit_logs)
        if query.action:
            rows = [r for r in rows if r.get("action") == query.action]
        if query.search:
            needle = query.search.lower()
            rows = [r for r in rows if _audit_matches(r, needle)]
        rows.sort(key=lambda r: (r["timestamp"], r["_seq"]), reverse=True)
        total = len(rows)
        page = rows[query.offset : query.offset + query.limit]
        return [self._public(r) for r in page], total


def _audit_matches(row: Row, needle: str) -> bool:
    details = row.get("details") or {}
    candidates = (
        row.get("action"),
        row.get("target_type"),
        row.get("target_id"),
        details.get("actor_email"),
        details.get("message"),
    )
    return any(_contains(c, needle) for c in candidates)


__all__ = [
    "AdminRepo",
    "AuditQuery",
    "FOREIGN_KEY_VIOLATION",
    "InMemoryAdminRepo",
    "NOT_FOUND",
    "ProfileQuery",
    "RepoError",
    "UNIQUE_VIOLATION",
]
