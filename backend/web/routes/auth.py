"""
Authentication routes: sign-in, self-registration, admin sign-in, sign-out.

Why:
    Session cookies are HttpOnly, so the browser cannot hold Supabase tokens
    itself. These form endpoints talk to the auth backend on the server and
    translate the result into cookies plus a redirect.

Notes:
    - The middleware gate runs before every handler here. A signed-in user
      posting to /login never reaches `login_submit`; the gate has already
      redirected them.
    - The post-sign-in destination is computed with the same `decide()` the
      gate uses, so the browser lands on a page the gate will render.
    - Passwords and tokens are never logged.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response

from administration.guard import id_tail
from administration.repo import RepoError
from administration.schemas import RegistrationInput, parse_input, validation_message
from identity_access.auth_backend import AuthBackendError
from identity_access.domain import InvalidIdentityError, SELF_REGISTRATION_ROLES
from identity_access.policy import ADMIN_DASHBOARD_PATH, DASHBOARD_PATH, LOGIN_PATH, decide

import wiring
from auth_utils import clear_session_cookies, set_session_cookies
from pages import navigate, register_form, render_page, sign_in_form
from routes.security import csrf_violation


auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("eduportal.web.auth")

INVALID_CREDENTIALS = "Email atau password salah."
AUTH_UNAVAILABLE = "Layanan autentikasi sedang tidak tersedia. Silakan coba lagi."
NOT_AN_ADMIN = "Akses ditolak: Akun ini bukan akun admin."
REGISTERED_NOTICE = "Pendaftaran berhasil. Silakan masuk setelah akun Anda diverifikasi admin."

_REGISTRATION_ROLE_VALUES = [r.value for r in SELF_REGISTRATION_ROLES]


async def _form_fields(request: Request) -> dict:
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


async def _sign_in(email: str, password: str):
    """Return (session, error_message, status_code)."""
    backend = wiring.get_auth_backend()
    try:
        session = await asyncio.to_thread(backend.sign_in_with_password, email, password)
    except AuthBackendError as exc:
        if exc.code == "invalid_credentials":
            return None, INVALID_CREDENTIALS, 400
        logger.warning("Sign-in failed: %s", exc.code)
        return None, AUTH_UNAVAILABLE, 503
    except InvalidIdentityError as exc:
        # Account exists but carries no usable role; treat like bad credentials.
        logger.warning("Sign-in rejected, malformed identity: %s", exc.code)
        return None, INVALID_CREDENTIALS, 400
    return session, None, 200


# --- Pages ---------------------------------------------------------------------


@auth_router.get("/login")
async def login_page(request: Request):
    notice = REGISTERED_NOTICE if request.query_params.get("registered") else None
    return render_page("Masuk", sign_in_form("/login", notice=notice))


@auth_router.get("/register")
async def register_page(request: Request):
    return render_page("Daftar", register_form(_REGISTRATION_ROLE_VALUES))


@auth_router.get("/admin/login")
async def admin_login_page(request: Request):
    return render_page("Masuk Admin", sign_in_form("/admin/login"))


# --- Form handlers -------------------------------------------------------------


@auth_router.post("/login")
async def login_submit(request: Request):
    if (blocked := csrf_violation(request)) is not None:
        return blocked
    fields = await _form_fields(request)
    email = (fields.get("email") or "").strip()
    session, error, status = await _sign_in(email, fields.get("password") or "")
    if session is None:
        return render_page("Masuk", sign_in_form("/login", email=email, error=error), status_code=status)
    target = decide(True, session.identity.role, LOGIN_PATH)
    response = navigate(request, target.location if target else DASHBOARD_PATH)
    set_session_cookies(response, session)
    logger.info("User %s signed in", id_tail(session.identity.id))
    return response


@auth_router.post("/admin/login")
async def admin_login_submit(request: Request):
    if (blocked := csrf_violation(request)) is not None:
        return blocked
    fields = await _form_fields(request)
    email = (fields.get("email") or "").strip()
    session, error, status = await _sign_in(email, fields.get("password") or "")
    if session is None:
        return render_page("Masuk Admin", sign_in_form("/admin/login", email=email, error=error), status_code=status)
    if not session.identity.is_admin:
        # Do not leave a non-admin session behind from the admin form.
        try:
            await asyncio.to_thread(wiring.get_auth_backend().sign_out, session.access_token)
        except AuthBackendError as exc:
            logger.warning("Sign-out after refused admin login failed: %s", exc.code)
        logger.warning("Non-admin %s refused at admin login", id_tail(session.identity.id))
        return render_page("Masuk Admin", sign_in_form("/admin/login", email=email, error=NOT_AN_ADMIN), status_code=403)
    response = navigate(request, ADMIN_DASHBOARD_PATH)
    set_session_cookies(response, session)
    logger.info("Admin %s signed in", id_tail(session.identity.id))
    return response


@auth_router.post("/register")
async def register_submit(request: Request):
    if (blocked := csrf_violation(request)) is not None:
        return blocked
    fields = await _form_fields(request)
    values = {k: fields.get(k, "") for k in ("full_name", "email", "role")}
    data, errors = parse_input(RegistrationInput, fields)
    if data is None:
        body = register_form(_REGISTRATION_ROLE_VALUES, values=values, error=validation_message(errors), field_errors=errors)
        return render_page("Daftar", body, status_code=400)

    backend = wiring.get_auth_backend()
    metadata = {"full_name": data.full_name, "role": data.role.value, "is_verified": False}
    try:
        identity = await asyncio.to_thread(backend.sign_up, data.email, data.password, metadata)
    except AuthBackendError as exc:
        if exc.code == "email_taken":
            body = register_form(_REGISTRATION_ROLE_VALUES, values=values, error=f'Email "{data.email}" sudah terdaftar.')
            return render_page("Daftar", body, status_code=409)
        logger.warning("Sign-up failed: %s", exc.code)
        body = register_form(_REGISTRATION_ROLE_VALUES, values=values, error=AUTH_UNAVAILABLE)
        return render_page("Daftar", body, status_code=503)

    try:
        await asyncio.to_thread(
            wiring.get_repo().insert_profile,
            user_id=identity.id,
            email=data.email,
            full_name=data.full_name,
            role=data.role,
            is_verified=False,
        )
    except RepoError as exc:
        logger.warning("Profile insert after sign-up failed for %s: %s", id_tail(identity.id), exc.code)
    logger.info("User %s registered as %s", id_tail(identity.id), data.role.value)
    return navigate(request, f"{LOGIN_PATH}?registered=1")


@auth_router.post("/logout")
async def logout(request: Request) -> Response:
    if (blocked := csrf_violation(request)) is not None:
        return blocked
    token = getattr(request.state, "access_token", None)
    if token:
        try:
            await asyncio.to_thread(wiring.get_auth_backend().sign_out, token)
        except AuthBackendError as exc:
            # Cookies are cleared regardless; the token expires on its own.
            logger.warning("Backend sign-out failed: %s", exc.code)
    response = navigate(request, LOGIN_PATH)
    clear_session_cookies(response)
    return response
