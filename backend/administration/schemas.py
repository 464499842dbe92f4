"""
Input schemas for admin actions and self-registration.

Messages are in Indonesian, the portal's UI language. Each rule raises a
plain ValueError so `field_errors_from` can surface the message verbatim,
without pydantic's "Value error, " prefix. Email syntax is checked by
`EmailStr` (email-validator); its English reasons are replaced per field.
"""
from __future__ import annotations

import re
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, ValidationError
from pydantic.functional_validators import field_validator

from identity_access.domain import InvalidIdentityError, Role, SELF_REGISTRATION_ROLES, parse_role


_SUBJECT_CODE_RE = re.compile(r"^[A-Z0-9-]+$")

_MISSING_MESSAGES = {
    "role": "Peran harus dipilih.",
}

# Library messages (pydantic, email-validator) replaced with the portal's wording.
_FORMAT_MESSAGES = {
    "email": "Format email tidak valid.",
}

M = TypeVar("M", bound=BaseModel)


def _min_length(value: Any, size: int, message: str) -> str:
    if not isinstance(value, str) or len(value.strip()) < size:
        raise ValueError(message)
    return value.strip()


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _Input(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CreateUserInput(_Input):
    full_name: str
    email: EmailStr
    password: str
    role: Role

    @field_validator("full_name", mode="before")
    @classmethod
    def _full_name(cls, v):
        return _min_length(v, 3, "Nama lengkap minimal 3 karakter.")

    @field_validator("email", mode="before")
    @classmethod
    def _email_strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def _email_lower(cls, v: str) -> str:
        return v.lower()

    @field_validator("password", mode="before")
    @classmethod
    def _password(cls, v):
        if not isinstance(v, str) or len(v) < 6:
            raise ValueError("Password minimal 6 karakter.")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("Peran harus dipilih.")
        try:
            return parse_role(v)
        except InvalidIdentityError:
            raise ValueError("Peran tidak valid.")


class RegistrationInput(CreateUserInput):
    """Self-registration: same rules, but the Admin role cannot be chosen."""

    @field_validator("role")
    @classmethod
    def _not_admin(cls, v: Role) -> Role:
        if v not in SELF_REGISTRATION_ROLES:
            raise ValueError("Peran ini tidak dapat dipilih saat mendaftar.")
        return v


class ClassInput(_Input):
    name: str
    homeroom_teacher_id: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return _min_length(v, 3, "Nama kelas minimal 3 karakter.")

    @field_validator("homeroom_teacher_id", mode="before")
    @classmethod
    def _homeroom(cls, v):
        v = _blank_to_none(v)
        if v is None:
            return None
        try:
            return str(uuid.UUID(str(v)))
        except ValueError:
            raise ValueError("ID Wali Kelas tidak valid.")


class SubjectInput(_Input):
    subject_name: str
    subject_code: str
    description: Optional[str] = None

    @field_validator("subject_name", mode="before")
    @classmethod
    def _name(cls, v):
        return _min_length(v, 3, "Nama mata pelajaran minimal 3 karakter.")

    @field_validator("subject_code", mode="before")
    @classmethod
    def _code(cls, v):
        code = _min_length(v, 2, "Kode mata pelajaran minimal 2 karakter.")
        if not _SUBJECT_CODE_RE.match(code):
            raise ValueError("Kode hanya boleh berisi huruf kapital, angka, dan tanda hubung.")
        return code

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v):
        v = _blank_to_none(v)
        return v.strip() if isinstance(v, str) else v


class AnnouncementInput(_Input):
    title: str
    content: str
    target_role: Optional[Role] = None
    is_pinned: bool = False

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, v):
        return _min_length(v, 3, "Judul minimal 3 karakter.")

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, v):
        return _min_length(v, 10, "Isi pengumuman minimal 10 karakter.")

    @field_validator("target_role", mode="before")
    @classmethod
    def _target_role(cls, v):
        v = _blank_to_none(v)
        if v is None:
            return None
        try:
            return parse_role(v)
        except InvalidIdentityError:
            raise ValueError("Target peran tidak valid.")


def field_errors_from(exc: ValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        loc = err.get("loc") or ()
        name = str(loc[0]) if loc else "__root__"
        kind = err.get("type")
        if kind == "missing":
            message = _MISSING_MESSAGES.get(name, "Wajib diisi.")
        elif name in _FORMAT_MESSAGES:
            message = _FORMAT_MESSAGES[name]
        elif kind == "value_error":
            message = str((err.get("ctx") or {}).get("error") or err.get("msg"))
        else:
            message = "Format tidak valid."
        errors.setdefault(name, []).append(message)
    return errors


def parse_input(model: Type[M], payload: Mapping[str, Any] | None) -> Tuple[Optional[M], Dict[str, List[str]]]:
    """Validate `payload`; return (model, {}) or (None, field_errors)."""
    try:
        return model.model_validate(dict(payload or {})), {}
    except ValidationError as exc:
        return None, field_errors_from(exc)


def validation_message(field_errors: Mapping[str, List[str]]) -> str:
    joined = "; ".join(f"{name}: {', '.join(msgs)}" for name, msgs in field_errors.items())
    return f"Validasi gagal: {joined}"


__all__ = [
    "AnnouncementInput",
    "ClassInput",
    "CreateUserInput",
    "RegistrationInput",
    "SubjectInput",
    "field_errors_from",
    "parse_input",
    "validation_message",
]
