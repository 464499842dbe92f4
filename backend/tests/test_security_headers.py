"""
Security headers and same-origin checks.

Requirements:
- Every response carries CSP, X-Frame-Options, nosniff, Referrer-Policy and HSTS
- Production CSP forbids inline scripts
- Same-origin validation prefers Origin, falls back to Referer and honors
  X-Forwarded-* only when EDUPORTAL_TRUST_PROXY=true
"""
from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport
from starlette.requests import Request

import main  # type: ignore
from routes.security import is_same_origin  # type: ignore


pytestmark = pytest.mark.anyio("asyncio")


def _request(headers: dict, *, scheme: str = "http", server=("portal.sekolah.sch.id", 80)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "scheme": scheme,
        "server": server,
        "path": "/admin/api/classes",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
    }
    return Request(scope)


@pytest.mark.anyio
async def test_security_headers_present_on_pages_and_redirects():
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as client:
        page = await client.get("/login")
        redirect = await client.get("/dashboard", follow_redirects=False)
    for r in (page, redirect):
        assert "default-src 'self'" in r.headers.get("Content-Security-Policy", "")
        assert r.headers.get("X-Frame-Options") == "SAMEORIGIN"
        assert r.headers.get("X-Content-Type-Options") == "nosniff"
        assert r.headers.get("Referrer-Policy") == "strict-origin-when-cross-origin"
        assert "max-age=" in r.headers.get("Strict-Transport-Security", "")


@pytest.mark.anyio
async def test_prod_csp_disallows_inline_scripts(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EDUPORTAL_ENV", "prod")
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as client:
        r = await client.get("/health")
    assert "'unsafe-inline'" not in r.headers["Content-Security-Policy"]


@pytest.mark.anyio
async def test_health_is_not_cacheable():
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as client:
        r = await client.get("/health")
    assert r.headers.get("Cache-Control") == "private, no-store"


def test_same_origin_accepts_matching_origin():
    assert is_same_origin(_request({"host": "portal.sekolah.sch.id", "origin": "http://portal.sekolah.sch.id"}))


def test_same_origin_rejects_foreign_origin():
    assert not is_same_origin(_request({"origin": "http://evil.example"}))


def test_same_origin_falls_back_to_referer():
    assert is_same_origin(_request({"referer": "http://portal.sekolah.sch.id/admin/manage-classes"}))
    assert not is_same_origin(_request({"referer": "http://evil.example/page"}))


def test_same_origin_rejects_malformed_origin():
    assert not is_same_origin(_request({"origin": "null"}))


def test_same_origin_without_headers_is_allowed():
    assert is_same_origin(_request({}))


def test_forwarded_headers_ignored_without_trust(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("EDUPORTAL_TRUST_PROXY", raising=False)
    req = _request(
        {"origin": "https://portal.sekolah.sch.id", "x-forwarded-proto": "https", "x-forwarded-host": "portal.sekolah.sch.id"},
        server=("127.0.0.1", 8000),
    )
    assert not is_same_origin(req)


def test_forwarded_headers_honored_with_trust(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EDUPORTAL_TRUST_PROXY", "true")
    req = _request(
        {"origin": "https://portal.sekolah.sch.id", "x-forwarded-proto": "https", "x-forwarded-host": "portal.sekolah.sch.id"},
        server=("127.0.0.1", 8000),
    )
    assert is_same_origin(req)
