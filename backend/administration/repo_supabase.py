"""
PostgREST-backed AdminRepo using a supabase-py client.

Security:
- The client must be created with the Service Role key; it bypasses RLS, so
  every caller has already passed the admin guard.
- Free-text search terms are reduced to a safe character set before they are
  spliced into PostgREST `or=(...)` filters.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Tuple, TypeVar

from supabase import Client, PostgrestAPIError

from identity_access.domain import Role

from .repo import AuditQuery, NOT_FOUND, ProfileQuery, RepoError, Row


T = TypeVar("T")

_UNSAFE_SEARCH = re.compile(r"[^\w@.\- ]+", re.UNICODE)


def sanitize_search(term: str | None) -> str:
    """Keep letters, digits, `@ . - _` and spaces; collapse whitespace."""
    cleaned = _UNSAFE_SEARCH.sub(" ", term or "")
    return " ".join(cleaned.split())[:100]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseAdminRepo:
    """AdminRepo over the `user_details`, `classes`, `subjects`,
    `announcements` and `audit_logs` tables."""

    def __init__(self, client: Client):
        self._client = client

    # --- Helpers -----------------------------------------------------------------

    def _table(self, name: str):
        return self._client.table(name)

    @staticmethod
    def _run(call: Callable[[], T]) -> T:
        try:
            return call()
        except PostgrestAPIError as exc:
            raise RepoError(str(getattr(exc, "code", "") or "unknown"), str(getattr(exc, "message", "") or exc)) from exc

    def _single(self, call: Callable[[], Any]) -> Row:
        res = self._run(call)
        rows = list(getattr(res, "data", None) or [])
        if not rows:
            raise RepoError(NOT_FOUND, "The result contains 0 rows")
        return dict(rows[0])

    # --- user_details ------------------------------------------------------------

    def insert_profile(self, *, user_id: str, email: str, full_name: str, role: Role, is_verified: bool) -> Row:
        values = {"id": user_id, "email": email, "full_name": full_name, "role": role.value, "is_verified": is_verified}
        return self._single(lambda: self._table("user_details").insert(values).execute())

    def set_profile_verified(self, user_id: str, verified: bool = True) -> Row:
        values = {"is_verified": verified, "updated_at": _now_iso()}
        return self._single(lambda: self._table("user_details").update(values).eq("id", user_id).execute())

    def delete_profile(self, user_id: str) -> None:
        self._run(lambda: self._table("user_details").delete().eq("id", user_id).execute())

    def list_profiles(self, query: ProfileQuery) -> Tuple[List[Row], int]:
        q = self._table("user_details").select("*", count="exact")
        term = sanitize_search(query.search)
        if term:
            q = q.or_(f"email.ilike.%{term}%,full_name.ilike.%{term}%")
        if query.role is not None:
            q = q.eq("role", query.role.value)
        if query.verified is not None:
            q = q.eq("is_verified", query.verified)
        q = q.order("created_at", desc=True).range(query.offset, query.offset + query.limit - 1)
        res = self._run(q.execute)
        return [dict(r) for r in (res.data or [])], int(res.count or 0)

    def list_unverified_profiles(self) -> List[Row]:
        q = self._table("user_details").select("*").eq("is_verified", False).order("created_at", desc=False)
        res = self._run(q.execute)
        return [dict(r) for r in (res.data or [])]

    # --- classes -----------------------------------------------------------------

    def list_classes(self) -> List[Row]:
        res = self._run(self._table("classes").select("*").order("name").execute)
        return [dict(r) for r in (res.data or [])]

    def insert_class(self, values: Mapping[str, Any]) -> Row:
        return self._single(lambda: self._table("classes").insert(dict(values)).execute())

    def update_class(self, class_id: str, values: Mapping[str, Any]) -> Row:
        return self._single(lambda: self._table("classes").update(dict(values)).eq("id", class_id).execute())

    def delete_class(self, class_id: str) -> None:
        self._single(lambda: self._table("classes").delete().eq("id", class_id).execute())

    # --- subjects ----------------------------------------------------------------

    def list_subjects(self) -> List[Row]:
        res = self._run(self._table("subjects").select("*").order("subject_name").execute)
        return [dict(r) for r in (res.data or [])]

    def insert_subject(self, values: Mapping[str, Any]) -> Row:
        return self._single(lambda: self._table("subjects").insert(dict(values)).execute())

    def update_subject(self, subject_id: str, values: Mapping[str, Any]) -> Row:
        payload = {**dict(values), "updated_at": _now_iso()}
        return self._single(lambda: self._table("subjects").update(payload).eq("id", subject_id).execute())

    def delete_subject(self, subject_id: str) -> None:
        self._single(lambda: self._table("subjects").delete().eq("id", subject_id).execute())

    # --- announcements -----------------------------------------------------------

    def insert_announcement(self, values: Mapping[str, Any]) -> Row:
        return self._single(lambda: self._table("announcements").insert(dict(values)).execute())

    def update_announcement(self, announcement_id: str, values: Mapping[str, Any]) -> Row:
        return self._single(
            lambda: self._table("announcements").update(dict(values)).eq("id", announcement_id).execute()
        )

    def delete_announcement(self, announcement_id: str) -> None:
        self._single(lambda: self._table("announcements").delete().eq("id", announcement_id).execute())

    def list_announcements(self, role: Role | None) -> List[Row]:
        q = self._table("announcements").select("*")
        if role is not None:
            q = q.or_(f'target_role.is.null,target_role.eq."{role.value}"')
        q = q.order("is_pinned", desc=True).order("created_at", desc=True)
        res = self._run(q.execute)
        return [dict(r) for r in (res.data or [])]

    # --- audit_logs --------------------------------------------------------------

    def insert_audit(self, values: Mapping[str, Any]) -> Row:
        return self._single(lambda: self._table("audit_logs").insert(dict(values)).execute())

    def list_audit(self, query: AuditQuery) -> Tuple[List[Row], int]:
        q = self._table("audit_logs").select("*", count="exact")
        if query.action:
            q = q.eq("action", query.action)
        term = sanitize_search(query.search)
        if term:
            q = q.or_(
                f"action.ilike.%{term}%,target_type.ilike.%{term}%,target_id.ilike.%{term}%,"
                f"details->>actor_email.ilike.%{term}%,details->>message.ilike.%{term}%"
            )
        q = q.order("timestamp", desc=True).range(query.offset, query.offset + query.limit - 1)
        res = self._run(q.execute)
        return [dict(r) for r in (res.data or [])], int(res.count or 0)


__all__ = ["SupabaseAdminRepo", "sanitize_search"]
