"""
Minimal server-rendered pages.

The portal's real screens live elsewhere; these pages exist so every redirect
target of the access policy renders something, and so the sign-in forms work
without JavaScript. All dynamic text goes through `esc`.
"""
from __future__ import annotations

from html import escape
from typing import Any, Dict, Iterable, List, Mapping, Optional

from fastapi import Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response


NO_STORE = {"Cache-Control": "private, no-store"}


def esc(value: Any) -> str:
    return escape("" if value is None else str(value), quote=True)


def _nav(user: Optional[Mapping[str, Any]]) -> str:
    if not user:
        return '<nav><a href="/login">Masuk</a> <a href="/register">Daftar</a></nav>'
    if user.get("role") == "Admin":
        # Admins stay inside /admin; the portal feed is not reachable for them.
        links = '<a href="/admin/dashboard">Beranda</a>'
    else:
        links = '<a href="/dashboard">Beranda</a> <a href="/announcements">Pengumuman</a>'
    return (
        f"<nav>{links} "
        f'<span class="user">{esc(user.get("full_name") or user.get("email"))} ({esc(user.get("role"))})</span> '
        '<form method="post" action="/logout" class="inline"><button type="submit">Keluar</button></form></nav>'
    )


def render_page(
    title: str,
    body: str,
    *,
    user: Optional[Mapping[str, Any]] = None,
    status_code: int = 200,
) -> HTMLResponse:
    html = (
        "<!doctype html><html lang=\"id\"><head><meta charset=\"utf-8\">"
        f"<title>{esc(title)} | EduPortal</title></head>"
        f"<body>{_nav(user)}<main><h1>{esc(title)}</h1>{body}</main></body></html>"
    )
    return HTMLResponse(content=html, status_code=status_code, headers=dict(NO_STORE))


def alert(message: Optional[str], kind: str = "error") -> str:
    if not message:
        return ""
    return f'<div class="alert alert-{esc(kind)}" role="alert">{esc(message)}</div>'


def field_error_list(field_errors: Mapping[str, List[str]]) -> str:
    if not field_errors:
        return ""
    items = "".join(f"<li>{esc(name)}: {esc(', '.join(msgs))}</li>" for name, msgs in field_errors.items())
    return f'<ul class="field-errors">{items}</ul>'


def sign_in_form(action: str, *, email: str = "", error: Optional[str] = None, notice: Optional[str] = None) -> str:
    return (
        f"{alert(notice, 'info')}{alert(error)}"
        f'<form method="post" action="{esc(action)}">'
        f'<label>Email <input type="email" name="email" value="{esc(email)}" required></label>'
        '<label>Password <input type="password" name="password" required></label>'
        '<button type="submit">Masuk</button></form>'
    )


def register_form(
    roles: Iterable[str],
    *,
    values: Optional[Dict[str, str]] = None,
    error: Optional[str] = None,
    field_errors: Optional[Mapping[str, List[str]]] = None,
) -> str:
    values = values or {}
    options = "".join(
        f'<option value="{esc(r)}"{" selected" if values.get("role") == r else ""}>{esc(r)}</option>' for r in roles
    )
    return (
        f"{alert(error)}{field_error_list(field_errors or {})}"
        '<form method="post" action="/register">'
        f'<label>Nama lengkap <input name="full_name" value="{esc(values.get("full_name"))}" required></label>'
        f'<label>Email <input type="email" name="email" value="{esc(values.get("email"))}" required></label>'
        '<label>Password <input type="password" name="password" required></label>'
        f'<label>Peran <select name="role"><option value="">Pilih peran</option>{options}</select></label>'
        '<button type="submit">Daftar</button></form>'
    )


def announcement_list(rows: Iterable[Mapping[str, Any]]) -> str:
    items = []
    for row in rows:
        pin = '<span class="pin">Disematkan</span> ' if row.get("is_pinned") else ""
        target = esc(row.get("target_role") or "Semua")
        items.append(
            f'<article class="announcement" id="announcement-{esc(row.get("id"))}">'
            f"<h2>{pin}{esc(row.get('title'))}</h2><p>{esc(row.get('content'))}</p>"
            f'<small>Untuk: {target}</small></article>'
        )
    if not items:
        return "<p>Belum ada pengumuman.</p>"
    return "".join(items)


def navigate(request: Request, location: str, *, status_code: int = 303) -> Response:
    """Redirect after a form post; HTMX callers get an HX-Redirect header instead."""
    if "HX-Request" in request.headers:
        return Response(status_code=204, headers={"HX-Redirect": location, **NO_STORE})
    return RedirectResponse(url=location, status_code=status_code, headers=dict(NO_STORE))
