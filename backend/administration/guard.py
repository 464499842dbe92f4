"""
Authorization guard for privileged admin mutations.

Why:
    The middleware gate protects pages, but a mutation endpoint can be called
    directly. Every admin action therefore re-reads the caller's identity from
    the auth backend with the caller's own access token, immediately before
    it runs. A role sent in the request payload is never consulted.

Behavior:
    - backend unreachable            -> BACKEND_FAILURE (retry message)
    - no identity / role != Admin    -> AUTHORIZATION_DENIED, nothing written
    - unexpected exception in action -> BACKEND_FAILURE, logged with traceback
    The wrapped function receives the verified admin `Identity` as `actor`.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Optional

from identity_access.auth_backend import AuthBackend
from identity_access.domain import Identity, InvalidIdentityError

from .results import ActionResult, ErrorKind


logger = logging.getLogger("eduportal.admin.guard")

DENIED_MESSAGE = "Akses ditolak: Hanya admin yang berwenang."
AUTH_UNAVAILABLE_MESSAGE = "Layanan autentikasi sedang tidak tersedia. Silakan coba lagi."
SERVER_ERROR_MESSAGE = "Terjadi kesalahan server."


def id_tail(value: Optional[str]) -> str:
    """Last 6 characters of an id for logs."""
    return (value or "")[-6:] or "-"


def fetch_admin(backend: AuthBackend, access_token: Optional[str]) -> Identity | ActionResult:
    """Return the verified admin identity, or the failing ActionResult."""
    identity: Optional[Identity] = None
    if access_token:
        try:
            identity = backend.get_user(access_token)
        except InvalidIdentityError:
            identity = None
        except Exception as exc:
            logger.warning("Admin check could not reach auth backend: %s", exc.__class__.__name__)
            return ActionResult.fail(ErrorKind.BACKEND_FAILURE, AUTH_UNAVAILABLE_MESSAGE)
    if identity is None or not identity.is_admin:
        return ActionResult.fail(ErrorKind.AUTHORIZATION_DENIED, DENIED_MESSAGE)
    return identity


def admin_action(name: str) -> Callable[[Callable[..., ActionResult]], Callable[..., ActionResult]]:
    """Wrap a service method `fn(self, actor, *args)` as `method(access_token, *args)`.

    The owning object must expose the auth backend as `self.backend`.
    """

    def decorator(fn: Callable[..., ActionResult]) -> Callable[..., ActionResult]:
        @functools.wraps(fn)
        def wrapper(self: Any, access_token: Optional[str], *args: Any, **kwargs: Any) -> ActionResult:
            checked = fetch_admin(self.backend, access_token)
            if isinstance(checked, ActionResult):
                logger.warning("%s refused: %s", name, checked.error.value if checked.error else "unknown")
                return checked
            try:
                return fn(self, checked, *args, **kwargs)
            except Exception:
                logger.exception("%s failed for admin %s", name, id_tail(checked.id))
                return ActionResult.fail(ErrorKind.BACKEND_FAILURE, SERVER_ERROR_MESSAGE)

        wrapper.action_name = name  # type: ignore[attr-defined]
        return wrapper

    return decorator


__all__ = [
    "AUTH_UNAVAILABLE_MESSAGE",
    "DENIED_MESSAGE",
    "SERVER_ERROR_MESSAGE",
    "admin_action",
    "fetch_admin",
    "id_tail",
]
