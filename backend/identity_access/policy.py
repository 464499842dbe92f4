"""
Route classification and redirect policy.

Why:
    The edge middleware and the client session store must reach the same
    navigation decision for the same inputs. Both import `decide` from here;
    there is no second copy to drift. A disagreement between the two sites is
    what produces redirect loops.

Design:
    Pure functions over static data. No I/O, no clock, no configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .domain import Role


ROOT_PATH = "/"
LOGIN_PATH = "/login"
REGISTER_PATH = "/register"
DASHBOARD_PATH = "/dashboard"
ADMIN_PREFIX = "/admin"
ADMIN_LOGIN_PATH = "/admin/login"
ADMIN_DASHBOARD_PATH = "/admin/dashboard"

PUBLIC_AUTH_PATHS = frozenset({LOGIN_PATH, REGISTER_PATH, ADMIN_LOGIN_PATH})


class RouteClass(str, Enum):
    ROOT = "root"
    PUBLIC_AUTH = "public_auth"
    ADMIN = "admin"
    PROTECTED = "protected"


@dataclass(frozen=True)
class Redirect:
    location: str


def _normalize(path: str) -> str:
    if not path:
        return ROOT_PATH
    if len(path) > 1 and path.endswith("/"):
        return path.rstrip("/") or ROOT_PATH
    return path


def classify(path: str) -> RouteClass:
    """Return the single class of `path`.

    `/admin` and `/admin/...` are the admin namespace; `/administration` is not.
    A trailing slash is ignored.
    """
    p = _normalize(path)
    if p == ROOT_PATH:
        return RouteClass.ROOT
    if p in PUBLIC_AUTH_PATHS:
        return RouteClass.PUBLIC_AUTH
    if p == ADMIN_PREFIX or p.startswith(ADMIN_PREFIX + "/"):
        return RouteClass.ADMIN
    return RouteClass.PROTECTED


def is_admin_login(path: str) -> bool:
    return _normalize(path) == ADMIN_LOGIN_PATH


def decide(identity_present: bool, role: Optional[Role], path: str) -> Optional[Redirect]:
    """Return where to send the caller, or None to render `path` normally.

    Rules are evaluated in order; the first match wins:
      1. admin namespace, anonymous          -> /admin/login
      2. /admin/login as Admin               -> /admin/dashboard
      3. Admin outside the admin namespace   -> /admin/dashboard
      4. non-admin in the admin namespace    -> /dashboard
      5. non-admin on a login/register page  -> /dashboard
      6. anonymous outside public pages      -> /login
      7. otherwise                           -> None
    """
    route = classify(path)
    is_admin = identity_present and role is Role.ADMIN

    if route is RouteClass.ADMIN and not identity_present:
        return Redirect(ADMIN_LOGIN_PATH)
    if is_admin_login(path) and is_admin:
        return Redirect(ADMIN_DASHBOARD_PATH)
    if is_admin and route is not RouteClass.ADMIN:
        return Redirect(ADMIN_DASHBOARD_PATH)
    if identity_present and not is_admin:
        if route is RouteClass.ADMIN:
            return Redirect(DASHBOARD_PATH)
        if route is RouteClass.PUBLIC_AUTH:
            return Redirect(DASHBOARD_PATH)
    if not identity_present and route not in (RouteClass.PUBLIC_AUTH, RouteClass.ROOT):
        return Redirect(LOGIN_PATH)
    return None


__all__ = [
    "ADMIN_DASHBOARD_PATH",
    "ADMIN_LOGIN_PATH",
    "DASHBOARD_PATH",
    "LOGIN_PATH",
    "REGISTER_PATH",
    "ROOT_PATH",
    "Redirect",
    "RouteClass",
    "classify",
    "decide",
    "is_admin_login",
]
