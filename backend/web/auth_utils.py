"""
Shared authentication cookie helpers.

Why:
    The middleware gate (refresh write-back, stale cookie clearing) and the
    auth routes (sign-in, sign-out) must set and clear the session cookies
    with identical flags. Keeping one helper avoids drift.

Design:
    Cookie flags are the same in every environment: HttpOnly, Secure,
    SameSite=Lax, Path=/. Lax keeps the cookies on top-level navigations such
    as the redirect after sign-in.
"""

from __future__ import annotations

from fastapi import Response

from identity_access.domain import Session


ACCESS_COOKIE_NAME = "eduportal-access-token"
REFRESH_COOKIE_NAME = "eduportal-refresh-token"
REFRESH_COOKIE_MAX_AGE = 30 * 24 * 3600


def cookie_opts() -> dict:
    """Return hardened cookie flags (dev = prod)."""
    return {"httponly": True, "secure": True, "samesite": "lax", "path": "/"}


def set_session_cookies(response: Response, session: Session) -> None:
    opts = cookie_opts()
    response.set_cookie(key=ACCESS_COOKIE_NAME, value=session.access_token, **opts)
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=session.refresh_token,
        max_age=REFRESH_COOKIE_MAX_AGE,
        **opts,
    )


def clear_session_cookies(response: Response) -> None:
    opts = cookie_opts()
    for name in (ACCESS_COOKIE_NAME, REFRESH_COOKIE_NAME):
        response.delete_cookie(key=name, **opts)
