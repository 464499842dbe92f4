"""
Tests for the access-gate middleware.

Requirements:
- Anonymous HTML requests → 302 to /login (or /admin/login for /admin/*)
- Signed-in non-admins are kept out of /admin/* → /dashboard
- Admins are kept inside /admin/* → /admin/dashboard
- HTMX requests get HX-Redirect instead of a 302
- Redirects are never cacheable
- Expired access tokens are refreshed and the new cookies written back
- Backend outage → treated as anonymous
- Allowlist: /health, /static/*, /favicon.ico are not gated
"""
from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

import main  # type: ignore
from auth_utils import ACCESS_COOKIE_NAME, REFRESH_COOKIE_NAME  # type: ignore
from identity_access.domain import Role


pytestmark = pytest.mark.anyio("asyncio")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _with_session(client: httpx.AsyncClient, session) -> None:
    client.cookies.set(ACCESS_COOKIE_NAME, session.access_token)
    client.cookies.set(REFRESH_COOKIE_NAME, session.refresh_token)


def _set_cookie_headers(response: httpx.Response) -> list[str]:
    return response.headers.get_list("set-cookie")


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/dashboard", "/announcements"])
async def test_anonymous_protected_page_redirects_to_login(path):
    async with _client() as client:
        r = await client.get(path, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/login"
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_anonymous_admin_page_redirects_to_admin_login():
    async with _client() as client:
        r = await client.get("/admin/manage-users", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/admin/login"


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/", "/login", "/register", "/admin/login"])
async def test_anonymous_public_pages_render(path):
    async with _client() as client:
        r = await client.get(path, follow_redirects=False)
    assert r.status_code == 200
    assert "text/html" in r.headers.get("content-type", "")


@pytest.mark.anyio
async def test_teacher_on_admin_page_redirects_to_dashboard(seed_account):
    _, session = seed_account(Role.TEACHER)
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/admin/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/dashboard"


@pytest.mark.anyio
async def test_student_on_login_redirects_to_dashboard(seed_account):
    _, session = seed_account(Role.STUDENT)
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/login", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/dashboard"


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/", "/dashboard", "/login", "/admin/login"])
async def test_admin_outside_admin_area_redirects_to_admin_dashboard(seed_account, path):
    _, session = seed_account(Role.ADMIN)
    async with _client() as client:
        _with_session(client, session)
        r = await client.get(path, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/admin/dashboard"


@pytest.mark.anyio
async def test_admin_dashboard_renders_for_admin(seed_account):
    _, session = seed_account(Role.ADMIN)
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/admin/dashboard", follow_redirects=False)
    assert r.status_code == 200
    assert "Dasbor Admin" in r.text


@pytest.mark.anyio
async def test_teacher_dashboard_renders(seed_account):
    _, session = seed_account(Role.TEACHER, full_name="Bu Sari", is_verified=False)
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 200
    assert "Bu Sari" in r.text
    assert "belum diverifikasi" in r.text


@pytest.mark.anyio
async def test_htmx_anonymous_gets_401_with_hx_redirect():
    async with _client() as client:
        r = await client.get("/dashboard", headers={"HX-Request": "true"}, follow_redirects=False)
    assert r.status_code == 401
    assert r.headers.get("HX-Redirect") == "/login"
    assert r.headers.get("Cache-Control") == "private, no-store"
    assert "HX-Request" in (r.headers.get("Vary") or "")


@pytest.mark.anyio
async def test_htmx_signed_in_redirect_uses_hx_redirect(seed_account):
    _, session = seed_account(Role.TEACHER)
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/admin/manage-classes", headers={"HX-Request": "true"}, follow_redirects=False)
    assert r.status_code == 200
    assert r.headers.get("HX-Redirect") == "/dashboard"


@pytest.mark.anyio
async def test_expired_access_token_is_refreshed_and_written_back(seed_account, auth_backend):
    _, session = seed_account(Role.TEACHER)
    auth_backend.expire_access_token(session.access_token)
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 200
    cookies = _set_cookie_headers(r)
    access = [c for c in cookies if c.startswith(f"{ACCESS_COOKIE_NAME}=")]
    refresh = [c for c in cookies if c.startswith(f"{REFRESH_COOKIE_NAME}=")]
    assert access and refresh
    assert session.access_token not in access[0]
    assert "httponly" in access[0].lower()
    assert "samesite=lax" in access[0].lower()


@pytest.mark.anyio
async def test_stale_tokens_are_cleared_and_redirected():
    async with _client() as client:
        client.cookies.set(ACCESS_COOKIE_NAME, "forged")
        client.cookies.set(REFRESH_COOKIE_NAME, "forged")
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/login"
    cleared = [c for c in _set_cookie_headers(r) if c.startswith(f"{ACCESS_COOKIE_NAME}=")]
    assert cleared and "max-age=0" in cleared[0].lower()


@pytest.mark.anyio
async def test_forged_role_cookie_grants_nothing(seed_account):
    """Only the backend decides the role; client-controlled cookies are ignored."""
    _, session = seed_account(Role.STUDENT)
    async with _client() as client:
        _with_session(client, session)
        client.cookies.set("role", "Admin")
        r = await client.get("/admin/dashboard", follow_redirects=False)
    assert r.headers.get("location") == "/dashboard"


@pytest.mark.anyio
async def test_backend_outage_treats_admin_as_anonymous(seed_account, auth_backend):
    _, session = seed_account(Role.ADMIN)
    auth_backend.available = False
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/admin/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/admin/login"
    # Cookies stay: the tokens may be valid once the backend is back.
    assert not [c for c in _set_cookie_headers(r) if c.startswith(f"{ACCESS_COOKIE_NAME}=")]


@pytest.mark.anyio
async def test_demoted_admin_loses_access_on_next_request(seed_account, auth_backend):
    user_id, session = seed_account(Role.ADMIN)
    async with _client() as client:
        _with_session(client, session)
        first = await client.get("/admin/dashboard", follow_redirects=False)
        auth_backend.admin_update_metadata(user_id, {"role": "Guru"})
        second = await client.get("/admin/dashboard", follow_redirects=False)
    assert first.status_code == 200
    assert second.status_code == 302
    assert second.headers.get("location") == "/dashboard"


@pytest.mark.anyio
async def test_unknown_role_in_metadata_is_anonymous(seed_account, auth_backend):
    user_id, session = seed_account(Role.TEACHER)
    auth_backend.admin_update_metadata(user_id, {"role": "Hacker"})
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.headers.get("location") == "/login"


@pytest.mark.anyio
async def test_allowlist_paths_not_redirected(auth_backend):
    auth_backend.available = False
    async with _client() as client:
        r_health = await client.get("/health")
        r_static = await client.get("/static/does-not-exist.css", follow_redirects=False)
        r_favicon = await client.get("/favicon.ico", follow_redirects=False)
    assert r_health.status_code == 200
    assert r_health.json() == {"status": "healthy"}
    assert r_static.status_code != 302
    assert r_favicon.status_code != 302


@pytest.mark.anyio
async def test_anonymous_admin_listing_redirects_before_any_query(repo, monkeypatch):
    calls = []
    monkeypatch.setattr(repo, "list_profiles", lambda query: calls.append(query) or ([], 0))
    async with _client() as client:
        r = await client.get("/admin/manage-users", follow_redirects=False)
    assert r.headers.get("location") == "/admin/login"
    assert calls == []


@pytest.mark.anyio
async def test_teacher_never_sees_admin_content(seed_account):
    _, session = seed_account(Role.TEACHER)
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/admin/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert "Dasbor Admin" not in r.text


@pytest.mark.anyio
async def test_admin_nav_only_links_inside_admin_area(seed_account):
    _, session = seed_account(Role.ADMIN)
    async with _client() as client:
        _with_session(client, session)
        r = await client.get("/admin/dashboard", follow_redirects=False)
    nav = r.text.split("<main>")[0]
    assert 'href="/announcements"' not in nav
    assert 'href="/admin/dashboard"' in nav
    assert 'action="/logout"' in nav
