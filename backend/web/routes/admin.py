"""
Admin routes: overview pages, listings and the guarded mutation API.

Why:
    The middleware gate keeps non-admins off `/admin/*` pages, but mutation
    endpoints must not rely on that alone. Every write goes through
    `AdminService`, whose methods re-check the caller's role with the auth
    backend before touching data.

Responses:
    Mutations return the ActionResult as JSON with a status derived from the
    error kind. On success, stale listing paths are announced to HTMX views via
    `HX-Trigger: {"eduportal:revalidate": {"paths": [...]}}`.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from administration import listings
from administration.audit import AuditAction, action_label, list_audit_logs
from administration.results import ActionResult, ErrorKind

import wiring
from pages import NO_STORE, esc, render_page
from routes.security import csrf_violation


admin_router = APIRouter(tags=["Admin"])
logger = logging.getLogger("eduportal.web.admin")

REVALIDATE_EVENT = "eduportal:revalidate"

_STATUS_BY_ERROR = {
    ErrorKind.AUTHORIZATION_DENIED: 403,
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.CONSTRAINT_VIOLATION: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.BACKEND_FAILURE: 503,
}


def _user(request: Request) -> Dict[str, Any] | None:
    return getattr(request.state, "user", None)


def _is_admin(request: Request) -> bool:
    user = _user(request)
    return bool(user) and user.get("role") == "Admin"


def _forbidden() -> JSONResponse:
    return JSONResponse({"error": "forbidden"}, status_code=403, headers=dict(NO_STORE))


def _access_token(request: Request) -> str | None:
    return getattr(request.state, "access_token", None)


async def _payload(request: Request) -> Dict[str, Any]:
    content_type = (request.headers.get("content-type") or "").lower()
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


def action_response(result: ActionResult, *, success_status: int = 200) -> JSONResponse:
    status = success_status if result.success else _STATUS_BY_ERROR.get(result.error, 500)
    headers = dict(NO_STORE)
    if result.success and result.invalidate:
        headers["HX-Trigger"] = json.dumps({REVALIDATE_EVENT: {"paths": list(result.invalidate)}})
    return JSONResponse(result.to_dict(), status_code=status, headers=headers)


async def _run(request: Request, method_name: str, *args: Any, success_status: int = 200) -> JSONResponse:
    if (blocked := csrf_violation(request)) is not None:
        return blocked
    service = wiring.get_admin_service()
    method = getattr(service, method_name)
    result = await asyncio.to_thread(method, _access_token(request), *args)
    return action_response(result, success_status=success_status)


def _table(rows: Iterable[Mapping[str, Any]], columns: Sequence[tuple[str, str]]) -> str:
    head = "".join(f"<th>{esc(label)}</th>" for _, label in columns)
    body = "".join(
        "<tr>" + "".join(f"<td>{esc(row.get(key))}</td>" for key, _ in columns) + "</tr>" for row in rows
    )
    return f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"


def _int_param(request: Request, name: str, default: int = 1) -> int:
    raw = request.query_params.get(name)
    try:
        return max(1, int(raw)) if raw else default
    except ValueError:
        return default


# --- Pages ---------------------------------------------------------------------


@admin_router.get("/admin")
async def admin_root(request: Request):
    return RedirectResponse(url="/admin/dashboard", status_code=302, headers=dict(NO_STORE))


@admin_router.get("/admin/dashboard")
async def admin_dashboard(request: Request):
    repo = wiring.get_repo()
    pending = await asyncio.to_thread(listings.list_unverified_users, repo)
    recent = await asyncio.to_thread(list_audit_logs, repo)
    links = "".join(
        f'<li><a href="{href}">{esc(label)}</a></li>'
        for href, label in (
            ("/admin/manage-users", "Kelola Pengguna"),
            ("/admin/verify-users", f"Verifikasi Pengguna ({len(pending)})"),
            ("/admin/manage-classes", "Kelola Kelas"),
            ("/admin/manage-subjects", "Kelola Mata Pelajaran"),
            ("/admin/audit-logs", "Log Aktivitas"),
        )
    )
    activity = _table(recent.rows[:5], (("timestamp", "Waktu"), ("actor_label", "Pengguna"), ("action_label", "Aksi")))
    return render_page("Dasbor Admin", f"<ul>{links}</ul><h2>Aktivitas terbaru</h2>{activity}", user=_user(request))


@admin_router.get("/admin/manage-users")
async def manage_users_page(request: Request):
    q = request.query_params
    page = await asyncio.to_thread(
        listings.list_users,
        wiring.get_repo(),
        search=q.get("search"),
        role=q.get("role"),
        status=q.get("status"),
        page=_int_param(request, "page"),
    )
    table = _table(page.rows, (("full_name", "Nama"), ("email", "Email"), ("role", "Peran"), ("is_verified", "Terverifikasi")))
    summary = f"<p>Halaman {page.page} dari {page.total_pages} ({page.total_count} pengguna)</p>"
    return render_page("Kelola Pengguna", table + summary, user=_user(request))


@admin_router.get("/admin/verify-users")
async def verify_users_page(request: Request):
    rows = await asyncio.to_thread(listings.list_unverified_users, wiring.get_repo())
    table = _table(rows, (("full_name", "Nama"), ("email", "Email"), ("role", "Peran"), ("created_at", "Terdaftar")))
    return render_page("Verifikasi Pengguna", table, user=_user(request))


@admin_router.get("/admin/manage-classes")
async def manage_classes_page(request: Request):
    rows = await asyncio.to_thread(listings.list_classes, wiring.get_repo())
    return render_page("Kelola Kelas", _table(rows, (("name", "Nama Kelas"), ("homeroom_teacher_id", "Wali Kelas"))), user=_user(request))


@admin_router.get("/admin/manage-subjects")
async def manage_subjects_page(request: Request):
    rows = await asyncio.to_thread(listings.list_subjects, wiring.get_repo())
    table = _table(rows, (("subject_code", "Kode"), ("subject_name", "Nama"), ("description", "Deskripsi")))
    return render_page("Kelola Mata Pelajaran", table, user=_user(request))


@admin_router.get("/admin/audit-logs")
async def audit_logs_page(request: Request):
    q = request.query_params
    page = await asyncio.to_thread(
        list_audit_logs,
        wiring.get_repo(),
        action=q.get("action"),
        search=q.get("search"),
        page=_int_param(request, "page"),
    )
    options = "".join(f'<option value="{a.value}">{esc(action_label(a.value))}</option>' for a in AuditAction)
    filters = f'<form method="get"><select name="action"><option value="all">Semua Aksi</option>{options}</select><input name="search"><button>Cari</button></form>'
    columns = (("timestamp", "Waktu"), ("actor_label", "Pengguna"), ("action_label", "Aksi"), ("target_type", "Target"), ("target_id", "ID Target"))
    summary = f"<p>Halaman {page.page} dari {page.total_pages}</p>"
    return render_page("Log Aktivitas", filters + _table(page.rows, columns) + summary, user=_user(request))


# --- Listing API ---------------------------------------------------------------


@admin_router.get("/admin/api/users")
async def api_list_users(request: Request):
    if not _is_admin(request):
        return _forbidden()
    q = request.query_params
    page = await asyncio.to_thread(
        listings.list_users,
        wiring.get_repo(),
        search=q.get("search"),
        role=q.get("role"),
        status=q.get("status"),
        page=_int_param(request, "page"),
    )
    return JSONResponse(page.to_dict(), headers=dict(NO_STORE))


@admin_router.get("/admin/api/users/unverified")
async def api_list_unverified(request: Request):
    if not _is_admin(request):
        return _forbidden()
    rows: List[Dict[str, Any]] = await asyncio.to_thread(listings.list_unverified_users, wiring.get_repo())
    return JSONResponse({"rows": rows, "total_count": len(rows)}, headers=dict(NO_STORE))


@admin_router.get("/admin/api/audit-logs")
async def api_list_audit_logs(request: Request):
    if not _is_admin(request):
        return _forbidden()
    q = request.query_params
    page = await asyncio.to_thread(
        list_audit_logs,
        wiring.get_repo(),
        action=q.get("action"),
        search=q.get("search"),
        page=_int_param(request, "page"),
    )
    return JSONResponse(page.to_dict(), headers=dict(NO_STORE))


@admin_router.get("/admin/api/announcements")
async def api_list_announcements(request: Request):
    identity = getattr(request.state, "identity", None)
    if identity is None or not identity.is_admin:
        return _forbidden()
    rows = await asyncio.to_thread(listings.announcements_feed, wiring.get_repo(), identity)
    return JSONResponse({"rows": rows, "total_count": len(rows)}, headers=dict(NO_STORE))


# --- Mutation API --------------------------------------------------------------


@admin_router.post("/admin/api/users")
async def api_create_user(request: Request):
    return await _run(request, "create_user", await _payload(request), success_status=201)


@admin_router.delete("/admin/api/users/{user_id}")
async def api_delete_user(request: Request, user_id: str):
    return await _run(request, "delete_user", user_id)


@admin_router.post("/admin/api/users/{user_id}/verify")
async def api_verify_user(request: Request, user_id: str):
    return await _run(request, "verify_user", user_id)


@admin_router.post("/admin/api/classes")
async def api_create_class(request: Request):
    return await _run(request, "create_class", await _payload(request), success_status=201)


@admin_router.patch("/admin/api/classes/{class_id}")
async def api_update_class(request: Request, class_id: str):
    return await _run(request, "update_class", class_id, await _payload(request))


@admin_router.delete("/admin/api/classes/{class_id}")
async def api_delete_class(request: Request, class_id: str):
    return await _run(request, "delete_class", class_id)


@admin_router.post("/admin/api/subjects")
async def api_create_subject(request: Request):
    return await _run(request, "create_subject", await _payload(request), success_status=201)


@admin_router.patch("/admin/api/subjects/{subject_id}")
async def api_update_subject(request: Request, subject_id: str):
    return await _run(request, "update_subject", subject_id, await _payload(request))


@admin_router.delete("/admin/api/subjects/{subject_id}")
async def api_delete_subject(request: Request, subject_id: str):
    return await _run(request, "delete_subject", subject_id)


@admin_router.post("/admin/api/announcements")
async def api_create_announcement(request: Request):
    return await _run(request, "create_announcement", await _payload(request), success_status=201)


@admin_router.patch("/admin/api/announcements/{announcement_id}")
async def api_update_announcement(request: Request, announcement_id: str):
    return await _run(request, "update_announcement", announcement_id, await _payload(request))


@admin_router.delete("/admin/api/announcements/{announcement_id}")
async def api_delete_announcement(request: Request, announcement_id: str):
    return await _run(request, "delete_announcement", announcement_id)


@admin_router.post("/admin/api/announcements/{announcement_id}/pin")
async def api_pin_announcement(request: Request, announcement_id: str):
    payload = await _payload(request)
    raw = payload.get("pinned", True)
    pinned = raw if isinstance(raw, bool) else str(raw).strip().lower() in ("1", "true", "yes", "on")
    return await _run(request, "pin_announcement", announcement_id, pinned)
