"""
Server-side session revalidation.

Why:
    The middleware gate and the server-action guard must never trust a role
    handed to them by the client. Both call into this module, which asks the
    auth backend for the identity behind the caller's tokens on every request.

Failure policy:
    Fail closed. Any backend error, malformed identity or unexpected exception
    yields an anonymous result. Access is never granted because the backend
    hiccuped.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging

from .auth_backend import AuthBackend
from .domain import Identity, Role, Session


logger = logging.getLogger("eduportal.identity.sessions")


@dataclass(frozen=True)
class ResolvedSession:
    identity: Optional[Identity] = None
    # New tokens issued while resolving; the caller writes them back as cookies.
    refreshed: Optional[Session] = None
    # Tokens were presented but are no longer valid; the caller should clear them.
    stale: bool = False
    # The backend could not be asked; treated as anonymous.
    backend_failed: bool = False

    @property
    def identity_present(self) -> bool:
        return self.identity is not None

    @property
    def role(self) -> Optional[Role]:
        return self.identity.role if self.identity is not None else None

    @property
    def access_token(self) -> Optional[str]:
        return self.refreshed.access_token if self.refreshed is not None else None


ANONYMOUS = ResolvedSession()


def resolve_session(backend: AuthBackend, access_token: str | None, refresh_token: str | None) -> ResolvedSession:
    """Revalidate the caller's tokens against the backend.

    Order: validate the access token; if it is missing/expired and a refresh
    token is present, rotate the session once.
    """
    if not access_token and not refresh_token:
        return ANONYMOUS
    try:
        if access_token:
            identity = backend.get_user(access_token)
            if identity is not None:
                return ResolvedSession(identity=identity)
        if refresh_token:
            session = backend.refresh_session(refresh_token)
            if session is not None:
                return ResolvedSession(identity=session.identity, refreshed=session)
    except Exception as exc:
        logger.warning("Session revalidation failed; treating caller as anonymous: %s", exc.__class__.__name__)
        return ResolvedSession(backend_failed=True)
    return ResolvedSession(stale=True)


__all__ = ["ANONYMOUS", "ResolvedSession", "resolve_session"]
