"""
Process-wide wiring of the auth backend and the admin repository.

Why:
    The middleware gate, the auth routes and the admin routes must share one
    auth backend and one repository. This module owns both singletons and
    builds them lazily from the environment, so tests can swap them with
    `set_auth_backend()` / `set_repo()` before the first request.

Behavior:
    - `EDUPORTAL_AUTH_BACKEND=supabase`: SupabaseAuthBackend plus a
      SupabaseAdminRepo over the same service-role client.
    - `EDUPORTAL_AUTH_BACKEND=memory`: MemoryAuthBackend plus an
      InMemoryAdminRepo. When EDUPORTAL_DEV_ADMIN_EMAIL and
      EDUPORTAL_DEV_ADMIN_PASSWORD are set, one admin account is seeded.

Security:
    The service-role key is only handed to server-side clients; it is never
    exposed to templates or responses.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from administration.actions import AdminService
from administration.repo import AdminRepo, InMemoryAdminRepo
from identity_access.auth_backend import AuthBackend
from identity_access.domain import Role
from identity_access.stores import MemoryAuthBackend

import config as _cfg


logger = logging.getLogger("eduportal.web.wiring")

_AUTH_BACKEND: Optional[AuthBackend] = None
_REPO: Optional[AdminRepo] = None


def _seed_dev_admin(backend: MemoryAuthBackend, repo: AdminRepo) -> None:
    email = (os.getenv("EDUPORTAL_DEV_ADMIN_EMAIL") or "").strip()
    password = os.getenv("EDUPORTAL_DEV_ADMIN_PASSWORD") or ""
    if not email or not password:
        return
    user_id = backend.add_user(email=email, password=password, role=Role.ADMIN, full_name="Admin Dev")
    repo.insert_profile(user_id=user_id, email=email.lower(), full_name="Admin Dev", role=Role.ADMIN, is_verified=True)
    logger.info("Seeded dev admin account")


def _build_default() -> None:
    global _AUTH_BACKEND, _REPO
    name = _cfg.auth_backend_name()
    if name == "supabase":
        from administration.repo_supabase import SupabaseAdminRepo
        from identity_access.supabase_auth import SupabaseAuthBackend

        settings = _cfg.load_supabase_settings()
        backend = SupabaseAuthBackend(settings.url, settings.anon_key, settings.service_role_key)
        _AUTH_BACKEND = backend
        _REPO = SupabaseAdminRepo(backend.admin_client())
        logger.info("Wired Supabase auth backend and admin repo")
        return
    if name != "memory":
        raise SystemExit(f"Refusing to start: unknown EDUPORTAL_AUTH_BACKEND {name!r}.")
    memory = MemoryAuthBackend()
    repo = InMemoryAdminRepo()
    _seed_dev_admin(memory, repo)
    _AUTH_BACKEND = memory
    _REPO = repo
    logger.info("Wired in-memory auth backend and admin repo")


def get_auth_backend() -> AuthBackend:
    if _AUTH_BACKEND is None:
        _build_default()
    return _AUTH_BACKEND  # type: ignore[return-value]


def get_repo() -> AdminRepo:
    if _REPO is None:
        _build_default()
    return _REPO  # type: ignore[return-value]


def get_admin_service() -> AdminService:
    return AdminService(get_auth_backend(), get_repo())


def set_auth_backend(backend: Optional[AuthBackend]) -> None:
    """Allow tests to swap the auth backend (None rebuilds from env on next use)."""
    global _AUTH_BACKEND
    _AUTH_BACKEND = backend


def set_repo(repo: Optional[AdminRepo]) -> None:
    """Allow tests to swap the admin repository."""
    global _REPO
    _REPO = repo
