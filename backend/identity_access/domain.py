"""
Identity domain types: roles, identities and sessions.

Why:
- Centralize the closed set of roles so the policy, the action guard and the
  registration forms cannot drift apart.
- Deserialize backend user payloads at one boundary. An unknown or missing role
  is rejected here instead of leaking `None` into authorization checks.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class Role(str, Enum):
    """Permission classes of the portal. Values match `user_metadata.role`."""

    ADMIN = "Admin"
    TEACHER = "Guru"
    STUDENT = "Siswa"
    STAFF = "Tata Usaha"
    PRINCIPAL = "Kepala Sekolah"


# English spellings seen in older metadata rows map onto the same members.
_ROLE_ALIASES = {
    "admin": Role.ADMIN,
    "guru": Role.TEACHER,
    "teacher": Role.TEACHER,
    "siswa": Role.STUDENT,
    "student": Role.STUDENT,
    "tata usaha": Role.STAFF,
    "staff": Role.STAFF,
    "kepala sekolah": Role.PRINCIPAL,
    "principal": Role.PRINCIPAL,
}

# Admin accounts are provisioned by other admins only.
SELF_REGISTRATION_ROLES = (Role.TEACHER, Role.STUDENT, Role.STAFF, Role.PRINCIPAL)


class InvalidIdentityError(ValueError):
    """Raised when a backend user payload cannot be turned into an Identity."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


def parse_role(value: object) -> Role:
    """Return the Role for `value` or raise InvalidIdentityError("invalid_role")."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        raise InvalidIdentityError("invalid_role")
    role = _ROLE_ALIASES.get(" ".join(value.split()).lower())
    if role is None:
        raise InvalidIdentityError("invalid_role")
    return role


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    role: Role
    is_verified: bool = False
    full_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def as_request_user(self) -> dict:
        """Minimal read-only view exposed to route handlers via request.state."""
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "is_verified": self.is_verified,
            "full_name": self.full_name,
        }


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str
    identity: Identity
    expires_at: Optional[int] = None


def _field(obj: Any, key: str, default: Any = None) -> Any:
    # supabase-py returns pydantic models; fakes and raw JSON return dicts.
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def identity_from_user(user: Any) -> Identity:
    """Build an Identity from a backend user object (model or mapping).

    Raises:
        InvalidIdentityError: missing id, or missing/unrecognized role.
    """
    if user is None:
        raise InvalidIdentityError("missing_user")
    user_id = _field(user, "id")
    if not user_id:
        raise InvalidIdentityError("missing_id")
    metadata = _field(user, "user_metadata") or {}
    if not isinstance(metadata, Mapping):
        raise InvalidIdentityError("invalid_metadata")
    role = parse_role(metadata.get("role"))
    return Identity(
        id=str(user_id),
        email=str(_field(user, "email") or ""),
        role=role,
        is_verified=metadata.get("is_verified") is True,
        full_name=str(metadata.get("full_name") or ""),
    )


__all__ = [
    "Identity",
    "InvalidIdentityError",
    "Role",
    "SELF_REGISTRATION_ROLES",
    "Session",
    "identity_from_user",
    "parse_role",
]
