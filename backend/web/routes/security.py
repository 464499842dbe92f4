"""
Shared web security helpers for routes.

Contains the CSRF same-origin check used by the auth and admin routers. All
state-changing endpoints call `csrf_violation(request)` first; keeping a
single implementation avoids security drift between routers.
"""
from __future__ import annotations

import os
from typing import Optional, Tuple
from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import JSONResponse


NO_STORE = {"Cache-Control": "private, no-store"}

Origin = Tuple[str, str, int]


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> Origin:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    return scheme, p.hostname.lower(), int(p.port or _default_port(scheme))


def _server_origin(request: Request) -> Origin:
    """Origin the server is reachable at.

    X-Forwarded-* headers are only trusted when EDUPORTAL_TRUST_PROXY=true.
    """
    trust_proxy = (os.getenv("EDUPORTAL_TRUST_PROXY", "false") or "").lower() == "true"
    if not trust_proxy:
        scheme = (request.url.scheme or "http").lower()
        host = (request.url.hostname or "").lower()
        return scheme, host, int(request.url.port or _default_port(scheme))

    proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "http").split(",")[0].strip()
    scheme = proto.lower() or "http"
    host_raw = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").split(",")[0].strip()
    port: Optional[int] = None
    if ":" in host_raw:
        host_raw, port_str = host_raw.rsplit(":", 1)
        port = int(port_str) if port_str.isdigit() else None
    host = (host_raw or request.url.hostname or "").lower()
    fwd_port = (request.headers.get("x-forwarded-port") or "").split(",")[0].strip()
    if fwd_port.isdigit():
        port = int(fwd_port)
    return scheme, host, port or _default_port(scheme)


def is_same_origin(request: Request) -> bool:
    """Verify same-origin using the Origin header, else the Referer header.

    Requests carrying neither header are allowed so non-browser clients keep
    working; browsers always send Origin on cross-site POSTs.
    """
    try:
        server = _server_origin(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False


def csrf_violation(request: Request) -> Optional[JSONResponse]:
    """Return a 403 response for cross-origin writes, None otherwise."""
    if is_same_origin(request):
        return None
    return JSONResponse(
        {"error": "forbidden", "detail": "csrf_violation"},
        status_code=403,
        headers=NO_STORE,
    )
