"""
Admin HTTP API: status mapping, revalidation trigger and CSRF.

Requirements:
- Successful mutations return the ActionResult JSON plus an HX-Trigger header
  naming the listing paths to refresh
- Error kinds map to 400/403/404/409/503
- A non-admin never reaches the API through the gate
- Cross-origin writes → 403 before the action runs
- Listing endpoints are private, no-store
"""
from __future__ import annotations

import json

import httpx
import pytest
from httpx import ASGITransport

import main  # type: ignore
from auth_utils import ACCESS_COOKIE_NAME, REFRESH_COOKIE_NAME  # type: ignore
from routes.admin import REVALIDATE_EVENT  # type: ignore
from identity_access.domain import Role


pytestmark = pytest.mark.anyio("asyncio")


def _client(session=None) -> httpx.AsyncClient:
    client = httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")
    if session is not None:
        client.cookies.set(ACCESS_COOKIE_NAME, session.access_token)
        client.cookies.set(REFRESH_COOKIE_NAME, session.refresh_token)
    return client


@pytest.fixture
def admin_session(seed_account):
    _, session = seed_account(Role.ADMIN, email="admin@sekolah.sch.id")
    return session


@pytest.mark.anyio
async def test_create_subject_returns_201_with_revalidate_trigger(admin_session, repo):
    async with _client(admin_session) as client:
        r = await client.post("/admin/api/subjects", json={"subject_name": "Matematika", "subject_code": "MTK"})
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    assert body["message"] == "Mata pelajaran berhasil ditambahkan."
    assert body["subject_id"] in repo.subjects
    trigger = json.loads(r.headers["HX-Trigger"])
    assert trigger == {REVALIDATE_EVENT: {"paths": ["/admin/manage-subjects"]}}
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_form_encoded_payload_is_accepted(admin_session, repo):
    async with _client(admin_session) as client:
        r = await client.post("/admin/api/classes", data={"name": "XI IPS 2"})
    assert r.status_code == 201
    assert [c["name"] for c in repo.classes.values()] == ["XI IPS 2"]


@pytest.mark.anyio
async def test_duplicate_subject_code_is_409_without_trigger(admin_session):
    async with _client(admin_session) as client:
        await client.post("/admin/api/subjects", json={"subject_name": "Matematika", "subject_code": "MTK"})
        r = await client.post("/admin/api/subjects", json={"subject_name": "Matematika 2", "subject_code": "MTK"})
    assert r.status_code == 409
    assert r.json()["error"] == "constraint_violation"
    assert "HX-Trigger" not in r.headers


@pytest.mark.anyio
async def test_validation_error_is_400_with_field_errors(admin_session):
    async with _client(admin_session) as client:
        r = await client.post("/admin/api/users", json={"full_name": "Budi Santoso", "email": "x", "password": "rahasia123", "role": "Guru"})
    assert r.status_code == 400
    assert r.json()["field_errors"] == {"email": ["Format email tidak valid."]}


@pytest.mark.anyio
async def test_delete_missing_class_is_404(admin_session):
    async with _client(admin_session) as client:
        r = await client.delete("/admin/api/classes/00000000-0000-0000-0000-000000000000")
    assert r.status_code == 404
    assert r.json()["message"] == "Kelas tidak ditemukan."


@pytest.mark.anyio
async def test_self_delete_is_403(seed_account):
    admin_id, session = seed_account(Role.ADMIN)
    async with _client(session) as client:
        r = await client.delete(f"/admin/api/users/{admin_id}")
    assert r.status_code == 403
    assert r.json()["error"] == "authorization_denied"


@pytest.mark.anyio
async def test_verify_user_round_trip(admin_session, seed_account, auth_backend, repo):
    user_id, user_session = seed_account(Role.STUDENT, is_verified=False)
    async with _client(admin_session) as client:
        pending = await client.get("/admin/api/users/unverified")
        assert [row["id"] for row in pending.json()["rows"]] == [user_id]
        r = await client.post(f"/admin/api/users/{user_id}/verify")
        after = await client.get("/admin/api/users/unverified")
    assert r.status_code == 200
    assert after.json()["rows"] == []
    assert auth_backend.get_user(user_session.access_token).is_verified is True


@pytest.mark.anyio
async def test_pin_announcement_accepts_form_flag(admin_session, repo):
    async with _client(admin_session) as client:
        created = await client.post(
            "/admin/api/announcements", json={"title": "Upacara", "content": "Upacara bendera hari Senin pagi."}
        )
        ann_id = created.json()["announcement_id"]
        r = await client.post(f"/admin/api/announcements/{ann_id}/pin", data={"pinned": "true"})
        feed = await client.get("/admin/api/announcements")
    assert r.status_code == 200
    assert repo.announcements[ann_id]["is_pinned"] is True
    assert feed.json()["rows"][0]["id"] == ann_id
    trigger = json.loads(r.headers["HX-Trigger"])
    assert set(trigger[REVALIDATE_EVENT]["paths"]) == {"/announcements", "/admin/dashboard"}


@pytest.mark.anyio
async def test_backend_outage_during_action_is_503(admin_session, auth_backend):
    import wiring  # type: ignore
    from identity_access.auth_backend import AuthBackendError

    # The gate has already let the request through; the outage hits the action's own check.
    real_backend = auth_backend

    class FlakyBackend:
        def __init__(self):
            self.calls = 0

        def __getattr__(self, name):
            return getattr(real_backend, name)

        def get_user(self, token):
            self.calls += 1
            if self.calls > 1:
                raise AuthBackendError("unavailable", "timeout")
            return real_backend.get_user(token)

    flaky = FlakyBackend()
    wiring.set_auth_backend(flaky)
    async with _client(admin_session) as client:
        r = await client.post("/admin/api/classes", json={"name": "X IPA 1"})
    assert r.status_code == 503
    assert r.json()["error"] == "backend_failure"


@pytest.mark.anyio
async def test_non_admin_is_redirected_away_from_api(seed_account, repo):
    _, session = seed_account(Role.TEACHER)
    async with _client(session) as client:
        r = await client.post("/admin/api/subjects", json={"subject_name": "Matematika", "subject_code": "MTK"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/dashboard"
    assert repo.subjects == {}


@pytest.mark.anyio
async def test_cross_origin_write_is_403_and_nothing_changes(admin_session, repo):
    async with _client(admin_session) as client:
        r = await client.post(
            "/admin/api/classes", json={"name": "X IPA 1"}, headers={"Origin": "https://evil.example"}
        )
    assert r.status_code == 403
    assert r.json()["detail"] == "csrf_violation"
    assert repo.classes == {}


@pytest.mark.anyio
async def test_same_origin_write_is_allowed(admin_session):
    async with _client(admin_session) as client:
        r = await client.post("/admin/api/classes", json={"name": "X IPA 1"}, headers={"Origin": "http://test"})
    assert r.status_code == 201


@pytest.mark.anyio
async def test_user_listing_api_filters_and_paginates(admin_session, seed_account):
    for _ in range(3):
        seed_account(Role.STUDENT)
    seed_account(Role.TEACHER, is_verified=False)
    async with _client(admin_session) as client:
        everyone = await client.get("/admin/api/users")
        students = await client.get("/admin/api/users", params={"role": "Siswa"})
        pending = await client.get("/admin/api/users", params={"status": "unverified"})
    assert everyone.json()["total_count"] == 5
    assert students.json()["total_count"] == 3
    assert pending.json()["total_count"] == 1
    assert everyone.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_audit_log_api_lists_actions(admin_session):
    async with _client(admin_session) as client:
        await client.post("/admin/api/classes", json={"name": "X IPA 1"})
        await client.post("/admin/api/subjects", json={"subject_name": "Biologi", "subject_code": "BIO"})
        r = await client.get("/admin/api/audit-logs", params={"action": "CREATE_CLASS"})
    body = r.json()
    assert body["total_count"] == 1
    assert body["rows"][0]["action_label"] == "Create Class"
    assert body["rows"][0]["actor_email"] == "admin@sekolah.sch.id"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "path,marker",
    [
        ("/admin/manage-users", "Kelola Pengguna"),
        ("/admin/verify-users", "Verifikasi Pengguna"),
        ("/admin/manage-classes", "Kelola Kelas"),
        ("/admin/manage-subjects", "Kelola Mata Pelajaran"),
        ("/admin/audit-logs", "Log Aktivitas"),
    ],
)
async def test_admin_pages_render(admin_session, path, marker):
    async with _client(admin_session) as client:
        r = await client.get(path)
    assert r.status_code == 200
    assert marker in r.text


@pytest.mark.anyio
async def test_admin_root_redirects_to_dashboard(admin_session):
    async with _client(admin_session) as client:
        r = await client.get("/admin", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/admin/dashboard"
