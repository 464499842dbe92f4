"""
Portal pages for signed-in users: landing, dashboard, announcements feed.

The gate has already decided who may see each page; handlers only read
`request.state.user` / `request.state.identity` for rendering.
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from administration.listings import announcements_feed

import wiring
from pages import NO_STORE, announcement_list, esc, render_page


portal_router = APIRouter(tags=["Portal"])


@portal_router.get("/")
async def landing(request: Request):
    user = getattr(request.state, "user", None)
    if user:
        body = f'<p>Selamat datang kembali, {esc(user.get("full_name") or user.get("email"))}.</p><p><a href="/dashboard">Ke dasbor</a></p>'
    else:
        body = '<p>Portal sekolah untuk guru, siswa dan staf.</p><p><a href="/login">Masuk</a> atau <a href="/register">daftar</a>.</p>'
    return render_page("EduPortal", body, user=user)


@portal_router.get("/dashboard")
async def dashboard(request: Request):
    user = getattr(request.state, "user", None) or {}
    notice = ""
    if not user.get("is_verified"):
        notice = '<div class="alert alert-info" role="status">Akun Anda belum diverifikasi admin.</div>'
    body = f'{notice}<p>Peran: {esc(user.get("role"))}</p><p><a href="/announcements">Pengumuman</a></p>'
    return render_page("Dasbor", body, user=user)


@portal_router.get("/announcements")
async def announcements(request: Request):
    identity = getattr(request.state, "identity", None)
    rows = await asyncio.to_thread(announcements_feed, wiring.get_repo(), identity)
    if "application/json" in (request.headers.get("accept") or ""):
        return JSONResponse({"rows": rows}, headers=dict(NO_STORE))
    return render_page("Pengumuman", announcement_list(rows), user=getattr(request.state, "user", None))
