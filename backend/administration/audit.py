"""
Append-only audit trail of admin mutations.

Behavior:
- `record()` writes one entry after a successful mutation. A failing write is
  logged and swallowed: the mutation already happened and the caller must
  still get its success result.
- `list_audit_logs()` filters by action and free text (actor email, action,
  target type, target id, details message), newest first, 15 per page.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from identity_access.domain import Identity

from .repo import AdminRepo, AuditQuery


logger = logging.getLogger("eduportal.admin.audit")

AUDIT_PAGE_SIZE = 15
SYSTEM_ACTOR_LABEL = "Sistem"


class AuditAction(str, Enum):
    CREATE_USER = "CREATE_USER"
    DELETE_USER = "DELETE_USER"
    VERIFY_USER = "VERIFY_USER"
    CREATE_CLASS = "CREATE_CLASS"
    UPDATE_CLASS = "UPDATE_CLASS"
    DELETE_CLASS = "DELETE_CLASS"
    CREATE_SUBJECT = "CREATE_SUBJECT"
    UPDATE_SUBJECT = "UPDATE_SUBJECT"
    DELETE_SUBJECT = "DELETE_SUBJECT"
    CREATE_ANNOUNCEMENT = "CREATE_ANNOUNCEMENT"
    UPDATE_ANNOUNCEMENT = "UPDATE_ANNOUNCEMENT"
    DELETE_ANNOUNCEMENT = "DELETE_ANNOUNCEMENT"
    PIN_ANNOUNCEMENT = "PIN_ANNOUNCEMENT"


def action_label(action: str) -> str:
    """`CREATE_CLASS` -> `Create Class`."""
    return " ".join(part.capitalize() for part in str(action).split("_") if part)


@dataclass(frozen=True)
class AuditEntry:
    id: str
    timestamp: str
    actor_id: Optional[str]
    actor_email: Optional[str]
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def actor_label(self) -> str:
        if self.actor_id is None:
            return SYSTEM_ACTOR_LABEL
        return self.actor_email or self.actor_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "actor_id": self.actor_id,
            "actor_email": self.actor_email,
            "actor_label": self.actor_label,
            "action": self.action,
            "action_label": action_label(self.action),
            "target_type": self.target_type,
            "target_id": self.target_id,
            "details": dict(self.details),
        }


def _entry_from_row(row: Dict[str, Any]) -> AuditEntry:
    details = row.get("details") or {}
    return AuditEntry(
        id=str(row.get("id")),
        timestamp=str(row.get("timestamp") or ""),
        actor_id=row.get("user_id"),
        actor_email=details.get("actor_email"),
        action=str(row.get("action") or ""),
        target_type=row.get("target_type"),
        target_id=row.get("target_id"),
        details=dict(details),
    )


def record(
    repo: AdminRepo,
    actor: Identity | None,
    action: AuditAction,
    *,
    target_type: str,
    target_id: str | None,
    message: str,
    **extra: Any,
) -> None:
    details: Dict[str, Any] = {"message": message, **extra}
    if actor is not None:
        details["actor_email"] = actor.email
    try:
        repo.insert_audit(
            {
                "user_id": actor.id if actor is not None else None,
                "action": action.value,
                "target_type": target_type,
                "target_id": target_id,
                "details": details,
            }
        )
    except Exception as exc:
        logger.error("Audit write failed for %s: %s", action.value, exc.__class__.__name__)


@dataclass(frozen=True)
class Page:
    rows: List[Dict[str, Any]]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total_count / self.page_size)) if self.page_size else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": list(self.rows),
            "total_count": self.total_count,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


def list_audit_logs(
    repo: AdminRepo,
    *,
    action: str | None = None,
    search: str | None = None,
    page: int = 1,
) -> Page:
    page = max(1, int(page or 1))
    if action in (None, "", "all"):
        action = None
    query = AuditQuery(
        action=action,
        search=(search or "").strip() or None,
        offset=(page - 1) * AUDIT_PAGE_SIZE,
        limit=AUDIT_PAGE_SIZE,
    )
    rows, total = repo.list_audit(query)
    return Page(
        rows=[_entry_from_row(r).to_dict() for r in rows],
        total_count=total,
        page=page,
        page_size=AUDIT_PAGE_SIZE,
    )


__all__ = [
    "AUDIT_PAGE_SIZE",
    "AuditAction",
    "AuditEntry",
    "Page",
    "SYSTEM_ACTOR_LABEL",
    "action_label",
    "list_audit_logs",
    "record",
]
