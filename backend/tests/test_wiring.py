"""Lazy construction of the auth backend and repository from the environment."""
from __future__ import annotations

import pytest

import wiring  # type: ignore
from administration.repo import InMemoryAdminRepo
from identity_access.domain import Role
from identity_access.stores import MemoryAuthBackend


def test_memory_backend_is_built_on_first_use():
    wiring.set_auth_backend(None)
    wiring.set_repo(None)
    backend = wiring.get_auth_backend()
    assert isinstance(backend, MemoryAuthBackend)
    assert isinstance(wiring.get_repo(), InMemoryAdminRepo)
    assert wiring.get_auth_backend() is backend


def test_dev_admin_is_seeded_when_configured(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EDUPORTAL_DEV_ADMIN_EMAIL", "Admin@Sekolah.sch.id")
    monkeypatch.setenv("EDUPORTAL_DEV_ADMIN_PASSWORD", "rahasia-dev")
    wiring.set_auth_backend(None)
    wiring.set_repo(None)

    session = wiring.get_auth_backend().sign_in_with_password("admin@sekolah.sch.id", "rahasia-dev")

    assert session.identity.role is Role.ADMIN
    assert session.identity.id in wiring.get_repo().profiles


def test_unknown_backend_name_refuses_to_start(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EDUPORTAL_AUTH_BACKEND", "ldap")
    wiring.set_auth_backend(None)
    wiring.set_repo(None)
    with pytest.raises(SystemExit):
        wiring.get_auth_backend()


def test_admin_service_shares_wired_instances():
    service = wiring.get_admin_service()
    assert service.backend is wiring.get_auth_backend()
    assert service.repo is wiring.get_repo()
