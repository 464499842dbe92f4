"""
Authentication backend contract.

Two sides of the same hosted auth service:

- `AuthBackend` is what the server uses. It is stateless per call: every
  enforcement point passes the caller's tokens explicitly and gets a fresh
  answer. There is no role cache.
- `ClientAuth` is what a single client (browser tab, CLI session) holds: one
  current session plus a stream of change events.

Implementations: `supabase_auth` (hosted Supabase) and `stores` (in-memory,
for local development and tests).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol

from .domain import Identity, Role, Session


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


AuthListener = Callable[[AuthEvent, Optional[Session]], None]


class AuthBackendError(Exception):
    """Raised for auth failures the caller may want to translate.

    Codes used across implementations:
      - invalid_credentials: wrong email/password
      - email_taken: account with this email already exists
      - user_not_found: admin operation on an unknown id
      - unavailable: transport or service failure
    """

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class Subscription(Protocol):
    def unsubscribe(self) -> None:
        ...


class AuthBackend(Protocol):
    def get_user(self, access_token: str) -> Optional[Identity]:
        """Return the identity for a valid access token, None when invalid/expired.

        Raises AuthBackendError("unavailable") on transport failure and
        InvalidIdentityError when the stored metadata is malformed.
        """
        ...

    def refresh_session(self, refresh_token: str) -> Optional[Session]:
        ...

    def sign_in_with_password(self, email: str, password: str) -> Session:
        ...

    def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> Identity:
        ...

    def sign_out(self, access_token: str) -> None:
        ...

    def admin_create_user(
        self,
        *,
        email: str,
        password: str,
        full_name: str,
        role: Role,
        email_confirm: bool = True,
    ) -> Identity:
        ...

    def admin_delete_user(self, user_id: str) -> None:
        ...

    def admin_update_metadata(self, user_id: str, metadata: Mapping[str, Any]) -> None:
        ...


class ClientAuth(Protocol):
    def get_session(self) -> Optional[Session]:
        ...

    def get_user(self) -> Optional[Identity]:
        """Ask the backend who holds the current session; None when signed out.

        Raises AuthBackendError("unavailable") on transport failure and
        InvalidIdentityError when the stored metadata is malformed.
        """
        ...

    def on_auth_state_change(self, listener: AuthListener) -> Subscription:
        ...

    def sign_out(self) -> None:
        ...


__all__ = [
    "AuthBackend",
    "AuthBackendError",
    "AuthEvent",
    "AuthListener",
    "ClientAuth",
    "Subscription",
]
