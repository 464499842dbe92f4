"""
Configuration and startup security checks for EduPortal.

Why: A school portal holds personal data of minors. A deployment that runs
with the in-memory auth backend, a leaked anon key in place of the service
key, or a plain-http Supabase URL must not come up at all. This module
provides a single guard that enforces those constraints in production-like
environments without burdening local development.

Permissions: The caller needs no special privileges. The functions read
environment variables and raise `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os
from dataclasses import dataclass


_PLACEHOLDER_PREFIXES = ("DUMMY", "CHANGE_ME", "YOUR_", "TEST_ONLY")


def environment() -> str:
    return (os.getenv("EDUPORTAL_ENV", "dev") or "dev").strip().lower()


def is_prod_like(env: str | None = None) -> bool:
    env_l = (environment() if env is None else env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


@dataclass(frozen=True)
class SupabaseSettings:
    url: str
    anon_key: str
    service_role_key: str

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key and self.service_role_key)


def load_supabase_settings() -> SupabaseSettings:
    return SupabaseSettings(
        url=(os.getenv("SUPABASE_URL") or "").strip(),
        anon_key=(os.getenv("SUPABASE_ANON_KEY") or "").strip(),
        service_role_key=(os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip(),
    )


def auth_backend_name() -> str:
    """`supabase` or `memory`.

    Defaults to `supabase` when all three Supabase variables are set and to
    `memory` otherwise, so a fresh checkout runs without a Supabase project.
    """
    explicit = (os.getenv("EDUPORTAL_AUTH_BACKEND") or "").strip().lower()
    if explicit:
        return explicit
    return "supabase" if load_supabase_settings().configured else "memory"


def _is_placeholder(value: str) -> bool:
    return value.upper().startswith(_PLACEHOLDER_PREFIXES)


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod/stage only):
    - EDUPORTAL_AUTH_BACKEND must not be `memory`.
    - SUPABASE_URL must be set and use https.
    - SUPABASE_ANON_KEY must be set.
    - SUPABASE_SERVICE_ROLE_KEY must be set, not a placeholder, and differ
      from the anon key.
    """
    if not is_prod_like():
        return  # dev/test remain permissive

    if (os.getenv("EDUPORTAL_AUTH_BACKEND") or "").strip().lower() == "memory":
        raise SystemExit(
            "Refusing to start: EDUPORTAL_AUTH_BACKEND=memory is not allowed in production/staging."
        )

    settings = load_supabase_settings()
    if not settings.url:
        raise SystemExit("Refusing to start: SUPABASE_URL is unset in production.")
    if not settings.url.lower().startswith("https://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production.")
    if not settings.anon_key:
        raise SystemExit("Refusing to start: SUPABASE_ANON_KEY is unset in production.")
    srole = settings.service_role_key
    if not srole or _is_placeholder(srole):
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a placeholder in production."
        )
    if srole == settings.anon_key:
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY must not equal SUPABASE_ANON_KEY."
        )
