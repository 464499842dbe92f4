"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test a fresh in-memory auth backend and admin repository.
"""
import os
import sys
from pathlib import Path

import pytest

# Never start the app against a real Supabase project or prod guards from tests.
for _var in ("EDUPORTAL_ENV", "SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_SERVICE_ROLE_KEY"):
    os.environ.pop(_var, None)
os.environ["EDUPORTAL_AUTH_BACKEND"] = "memory"

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_wiring_between_tests(monkeypatch: pytest.MonkeyPatch):
    """Install a fresh in-memory auth backend and repo for each test.

    Why:
        Routes resolve the backend through `wiring`; without a reset, users and
        tokens created by one test leak into the next.
    Behavior:
        - Clears EduPortal toggles so each test starts from dev defaults.
        - Restores lazy wiring after the test.
    """
    import wiring  # type: ignore
    from administration.repo import InMemoryAdminRepo
    from identity_access.stores import MemoryAuthBackend

    for var in ("EDUPORTAL_ENV", "EDUPORTAL_TRUST_PROXY", "EDUPORTAL_DEV_ADMIN_EMAIL", "EDUPORTAL_DEV_ADMIN_PASSWORD"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("EDUPORTAL_AUTH_BACKEND", "memory")

    wiring.set_auth_backend(MemoryAuthBackend())
    wiring.set_repo(InMemoryAdminRepo())
    yield
    wiring.set_auth_backend(None)
    wiring.set_repo(None)


@pytest.fixture
def auth_backend():
    import wiring  # type: ignore

    return wiring.get_auth_backend()


@pytest.fixture
def repo():
    import wiring  # type: ignore

    return wiring.get_repo()


@pytest.fixture
def seed_account(auth_backend, repo):
    """Factory: create an account with a profile row and return (user_id, session)."""
    from identity_access.domain import Role

    counter = {"n": 0}

    def _seed(role=Role.TEACHER, *, email=None, password="rahasia123", full_name=None, is_verified=True):
        counter["n"] += 1
        email = email or f"user{counter['n']}@sekolah.sch.id"
        full_name = full_name or f"Pengguna {counter['n']}"
        user_id = auth_backend.add_user(email=email, password=password, role=role, full_name=full_name, is_verified=is_verified)
        repo.insert_profile(user_id=user_id, email=email, full_name=full_name, role=role, is_verified=is_verified)
        return user_id, auth_backend.issue_session(user_id)

    return _seed
