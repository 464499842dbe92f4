"EduPortal web application"
from __future__ import annotations

import asyncio
import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from identity_access.policy import decide
from identity_access.sessions import ResolvedSession, resolve_session

import config as _cfg
import wiring
from auth_utils import ACCESS_COOKIE_NAME, REFRESH_COOKIE_NAME, clear_session_cookies, set_session_cookies


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via EDUPORTAL_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("EDUPORTAL_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("eduportal.web.gate")

app = FastAPI(title="EduPortal", description="Portal administrasi sekolah", version="0.1.0")

from routes.admin import admin_router
from routes.auth import auth_router
from routes.portal import portal_router

NO_STORE = {"Cache-Control": "private, no-store"}

# Never gated: assets and orchestration probes.
_EXEMPT_PREFIXES = ("/static/",)
_EXEMPT_PATHS = frozenset({"/favicon.ico", "/health"})
SIGN_OUT_PATH = "/logout"


def _is_exempt(path: str) -> bool:
    return path.startswith(_EXEMPT_PREFIXES) or path in _EXEMPT_PATHS


def _is_sign_out(request: Request) -> bool:
    # Every role must be able to end its session, admins included.
    return request.method == "POST" and request.url.path.rstrip("/") == SIGN_OUT_PATH


def _gate_redirect(request: Request, location: str, *, anonymous: bool) -> Response:
    if "HX-Request" in request.headers:
        # Security: prevent intermediaries from caching redirected HTMX responses
        headers = {"HX-Redirect": location, "Vary": "HX-Request", **NO_STORE}
        return Response(status_code=401 if anonymous else 200, headers=headers)
    return RedirectResponse(url=location, status_code=302, headers=dict(NO_STORE))


def _sets_session_cookie(response: Response) -> bool:
    prefix = f"{ACCESS_COOKIE_NAME}="
    return any(v.startswith(prefix) for v in response.headers.getlist("set-cookie"))


def _sync_cookies(response: Response, resolved: ResolvedSession) -> None:
    """Write rotated tokens back, or drop tokens the backend no longer accepts.

    A handler that already set or cleared the session cookies (sign-in,
    sign-out) wins.
    """
    if _sets_session_cookie(response):
        return
    if resolved.refreshed is not None:
        set_session_cookies(response, resolved.refreshed)
    elif resolved.stale:
        clear_session_cookies(response)


@app.middleware("http")
async def access_gate(request: Request, call_next):
    path = request.url.path
    if _is_exempt(path):
        return await call_next(request)

    access_token = request.cookies.get(ACCESS_COOKIE_NAME)
    refresh_token = request.cookies.get(REFRESH_COOKIE_NAME)
    resolved = await asyncio.to_thread(resolve_session, wiring.get_auth_backend(), access_token, refresh_token)

    decision = None if _is_sign_out(request) else decide(resolved.identity_present, resolved.role, path)
    if decision is not None:
        logger.debug("Gate redirect %s -> %s", path, decision.location)
        response = _gate_redirect(request, decision.location, anonymous=not resolved.identity_present)
    else:
        identity = resolved.identity
        # Expose minimal, read-only user context for downstream handlers.
        request.state.identity = identity
        request.state.user = identity.as_request_user() if identity is not None else None
        # The token the backend just accepted; guarded actions re-verify with it.
        request.state.access_token = (resolved.access_token or access_token) if identity is not None else None
        response = await call_next(request)

    _sync_cookies(response, resolved)
    return response


# --- Security Headers Middleware ----------------------------------------------

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    if _cfg.is_prod_like():
        csp = (
            "default-src 'self'; script-src 'self'; style-src 'self'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self'; frame-ancestors 'self';"
        )
    else:
        # Developer experience: allow inline for the server-rendered pages.
        csp = (
            "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self'; frame-ancestors 'self';"
        )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    # HSTS: always on (dev = prod)
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Routes --------------------------------------------------------------------

app.include_router(auth_router)
app.include_router(admin_router)
app.include_router(portal_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "healthy"}, headers=dict(NO_STORE))
