"""
Signed-in portal pages and the announcements feed.

Requirements:
- Landing page renders for everyone
- /announcements shows untargeted items plus those for the viewer's role
- JSON is returned when the client asks for it
"""
from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

import main  # type: ignore
from auth_utils import ACCESS_COOKIE_NAME, REFRESH_COOKIE_NAME  # type: ignore
from identity_access.domain import Role


pytestmark = pytest.mark.anyio("asyncio")


def _client(session=None) -> httpx.AsyncClient:
    client = httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")
    if session is not None:
        client.cookies.set(ACCESS_COOKIE_NAME, session.access_token)
        client.cookies.set(REFRESH_COOKIE_NAME, session.refresh_token)
    return client


@pytest.fixture
def announcements(repo):
    repo.insert_announcement({"title": "Upacara", "content": "Upacara bendera Senin pagi.", "target_role": None})
    repo.insert_announcement({"title": "Ujian Siswa", "content": "Ujian tengah semester dimulai.", "target_role": "Siswa"})
    repo.insert_announcement({"title": "Rapat Guru", "content": "Rapat guru hari Jumat siang.", "target_role": "Guru"})


@pytest.mark.anyio
async def test_landing_page_renders_for_anonymous():
    async with _client() as client:
        r = await client.get("/")
    assert r.status_code == 200
    assert 'href="/login"' in r.text


@pytest.mark.anyio
async def test_student_sees_general_and_student_announcements(seed_account, announcements):
    _, session = seed_account(Role.STUDENT)
    async with _client(session) as client:
        r = await client.get("/announcements")
    assert r.status_code == 200
    assert "Upacara" in r.text
    assert "Ujian Siswa" in r.text
    assert "Rapat Guru" not in r.text
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_announcements_json_for_teacher(seed_account, announcements):
    _, session = seed_account(Role.TEACHER)
    async with _client(session) as client:
        r = await client.get("/announcements", headers={"Accept": "application/json"})
    titles = {row["title"] for row in r.json()["rows"]}
    assert titles == {"Upacara", "Rapat Guru"}


@pytest.mark.anyio
async def test_announcement_content_is_escaped(seed_account, repo):
    repo.insert_announcement({"title": "<script>alert(1)</script>", "content": "Isi pengumuman biasa.", "target_role": None})
    _, session = seed_account(Role.STAFF)
    async with _client(session) as client:
        r = await client.get("/announcements")
    assert "<script>alert(1)</script>" not in r.text
    assert "&lt;script&gt;" in r.text
