"""
Result type returned by every guarded admin action.

Why:
    Callers (HTTP routes, a future CLI) must never see an exception from a
    privileged mutation. Every outcome, including denial and backend failure,
    is reported as data with a stable shape:

        {"success": bool, "message": str, "error"?: str,
         "field_errors"?: {field: [messages]}, ...entity fields}

    `invalidate` lists the listing paths whose cached views became stale; the
    HTTP layer turns it into an HX-Trigger header. It is not part of the
    serialized payload.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class ErrorKind(str, Enum):
    AUTHORIZATION_DENIED = "authorization_denied"
    VALIDATION_FAILED = "validation_failed"
    CONSTRAINT_VIOLATION = "constraint_violation"
    NOT_FOUND = "not_found"
    BACKEND_FAILURE = "backend_failure"


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str
    error: Optional[ErrorKind] = None
    field_errors: Dict[str, List[str]] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)
    invalidate: Tuple[str, ...] = ()

    @classmethod
    def ok(cls, message: str, *, invalidate: Iterable[str] = (), **data: Any) -> "ActionResult":
        return cls(success=True, message=message, data=dict(data), invalidate=tuple(invalidate))

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        field_errors: Optional[Dict[str, List[str]]] = None,
    ) -> "ActionResult":
        return cls(success=False, message=message, error=kind, field_errors=dict(field_errors or {}))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error is not None:
            out["error"] = self.error.value
        if self.field_errors:
            out["field_errors"] = {k: list(v) for k, v in self.field_errors.items()}
        for key, value in self.data.items():
            out.setdefault(key, value)
        return out


__all__ = ["ActionResult", "ErrorKind"]
