"""
Supabase-backed auth backend.

This adapter implements `AuthBackend` on top of supabase-py. Three kinds of
clients are involved:

- an anon-key client for token validation (`auth.get_user(jwt)`), which keeps
  no per-user state;
- short-lived anon-key clients for sign-in/refresh/sign-up, created per call so
  that one user's session is never stored inside a shared client;
- a service-role client for `auth.admin.*` calls.

Security:
- The service-role key stays server-side. It is never rendered into pages or
  returned from any endpoint.
- Tokens and passwords are never logged.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from supabase import AuthApiError, AuthError, Client, ClientOptions, create_client

from .auth_backend import AuthBackendError, AuthEvent, AuthListener
from .domain import Identity, InvalidIdentityError, Role, Session, identity_from_user


logger = logging.getLogger("eduportal.identity.supabase")

ClientFactory = Callable[[], Client]


def _stateless_options() -> ClientOptions:
    return ClientOptions(auto_refresh_token=False, persist_session=False)


def _error_code(exc: Exception) -> str:
    return str(getattr(exc, "code", "") or "").lower()


def _error_status(exc: Exception) -> int:
    try:
        return int(getattr(exc, "status", 0) or 0)
    except (TypeError, ValueError):
        return 0


def _translate(exc: Exception) -> AuthBackendError:
    """Map supabase-py auth errors onto AuthBackendError codes."""
    message = str(getattr(exc, "message", "") or exc)
    lowered = message.lower()
    code = _error_code(exc)
    if code in ("email_exists", "user_already_exists") or "already registered" in lowered or "already been registered" in lowered:
        return AuthBackendError("email_taken", message)
    if code == "invalid_credentials" or "invalid login credentials" in lowered:
        return AuthBackendError("invalid_credentials", message)
    if code == "user_not_found" or "user not found" in lowered:
        return AuthBackendError("user_not_found", message)
    return AuthBackendError("unavailable", message)


def _to_session(session: Any, user: Any = None) -> Optional[Session]:
    if session is None or not getattr(session, "access_token", None):
        return None
    user = getattr(session, "user", None) or user
    return Session(
        access_token=session.access_token,
        refresh_token=getattr(session, "refresh_token", "") or "",
        identity=identity_from_user(user),
        expires_at=getattr(session, "expires_at", None),
    )


def _session_from_response(res: Any) -> Optional[Session]:
    return _to_session(getattr(res, "session", None), getattr(res, "user", None))


def _is_rejected_token(exc: AuthApiError) -> bool:
    return _error_status(exc) in (401, 403) or _error_code(exc) in ("bad_jwt", "session_not_found", "user_not_found")


class SupabaseAuthBackend:
    """AuthBackend using the hosted Supabase Auth (GoTrue) service."""

    def __init__(self, url: str, anon_key: str, service_role_key: str, *, client_factory: ClientFactory | None = None):
        self._url = url
        self._anon_key = anon_key
        self._service_role_key = service_role_key
        self._client_factory = client_factory or self._new_anon_client
        self._anon: Client | None = None
        self._admin: Client | None = None

    # --- Clients -----------------------------------------------------------------

    def _new_anon_client(self) -> Client:
        return create_client(self._url, self._anon_key, options=_stateless_options())

    def _anon_client(self) -> Client:
        if self._anon is None:
            self._anon = self._client_factory()
        return self._anon

    def admin_client(self) -> Client:
        """Service-role client; also used by the PostgREST-backed admin repo."""
        if self._admin is None:
            self._admin = create_client(self._url, self._service_role_key, options=_stateless_options())
        return self._admin

    # --- AuthBackend -------------------------------------------------------------

    def get_user(self, access_token: str) -> Optional[Identity]:
        if not access_token:
            return None
        try:
            res = self._anon_client().auth.get_user(access_token)
        except AuthApiError as exc:
            if _is_rejected_token(exc):
                return None
            raise _translate(exc) from exc
        except AuthError as exc:
            raise _translate(exc) from exc
        except Exception as exc:
            raise AuthBackendError("unavailable", exc.__class__.__name__) from exc
        user = getattr(res, "user", None) if res is not None else None
        if user is None:
            return None
        return identity_from_user(user)

    def refresh_session(self, refresh_token: str) -> Optional[Session]:
        if not refresh_token:
            return None
        try:
            res = self._client_factory().auth.refresh_session(refresh_token)
        except AuthApiError as exc:
            if 400 <= _error_status(exc) < 500:
                return None
            raise _translate(exc) from exc
        except AuthError as exc:
            raise _translate(exc) from exc
        except Exception as exc:
            raise AuthBackendError("unavailable", exc.__class__.__name__) from exc
        return _session_from_response(res)

    def sign_in_with_password(self, email: str, password: str) -> Session:
        try:
            res = self._client_factory().auth.sign_in_with_password({"email": email, "password": password})
        except AuthError as exc:
            raise _translate(exc) from exc
        except Exception as exc:
            raise AuthBackendError("unavailable", exc.__class__.__name__) from exc
        session = _session_from_response(res)
        if session is None:
            raise AuthBackendError("invalid_credentials", "no session returned")
        return session

    def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> Identity:
        try:
            res = self._client_factory().auth.sign_up(
                {"email": email, "password": password, "options": {"data": dict(metadata)}}
            )
        except AuthError as exc:
            raise _translate(exc) from exc
        except Exception as exc:
            raise AuthBackendError("unavailable", exc.__class__.__name__) from exc
        user = getattr(res, "user", None)
        if user is None:
            raise AuthBackendError("unavailable", "no user returned")
        return identity_from_user(user)

    def sign_out(self, access_token: str) -> None:
        if not access_token:
            return
        try:
            self.admin_client().auth.admin.sign_out(access_token)
        except AuthError as exc:
            raise _translate(exc) from exc
        except Exception as exc:
            raise AuthBackendError("unavailable", exc.__class__.__name__) from exc

    def admin_create_user(
        self,
        *,
        email: str,
        password: str,
        full_name: str,
        role: Role,
        email_confirm: bool = True,
    ) -> Identity:
        attrs = {
            "email": email,
            "password": password,
            "email_confirm": email_confirm,
            "user_metadata": {"full_name": full_name, "role": role.value, "is_verified": True},
        }
        try:
            res = self.admin_client().auth.admin.create_user(attrs)
        except AuthError as exc:
            raise _translate(exc) from exc
        except Exception as exc:
            raise AuthBackendError("unavailable", exc.__class__.__name__) from exc
        user = getattr(res, "user", None)
        if user is None:
            raise AuthBackendError("unavailable", "no user returned")
        return identity_from_user(user)

    def admin_delete_user(self, user_id: str) -> None:
        try:
            self.admin_client().auth.admin.delete_user(user_id)
        except AuthError as exc:
            raise _translate(exc) from exc
        except Exception as exc:
            raise AuthBackendError("unavailable", exc.__class__.__name__) from exc

    def admin_update_metadata(self, user_id: str, metadata: Mapping[str, Any]) -> None:
        try:
            self.admin_client().auth.admin.update_user_by_id(user_id, {"user_metadata": dict(metadata)})
        except AuthError as exc:
            raise _translate(exc) from exc
        except Exception as exc:
            raise AuthBackendError("unavailable", exc.__class__.__name__) from exc


class _SupabaseSubscription:
    def __init__(self, inner: Any):
        self._inner = inner

    def unsubscribe(self) -> None:
        self._inner.unsubscribe()


class SupabaseClientAuth:
    """ClientAuth over one stateful supabase client (e.g. a CLI or kiosk session).

    A session whose user carries no usable role is reported as no session, so
    the store above it resolves to signed out instead of failing.
    """

    def __init__(self, client: Client):
        self._client = client

    @staticmethod
    def _checked(session: Any) -> Optional[Session]:
        try:
            return _to_session(session)
        except InvalidIdentityError as exc:
            logger.warning("Dropping session with malformed identity: %s", exc.code)
            return None

    def get_session(self) -> Optional[Session]:
        try:
            session = self._client.auth.get_session()
        except AuthError as exc:
            raise _translate(exc) from exc
        return self._checked(session)

    def get_user(self) -> Optional[Identity]:
        try:
            res = self._client.auth.get_user()
        except AuthApiError as exc:
            if _is_rejected_token(exc):
                return None
            raise _translate(exc) from exc
        except AuthError as exc:
            raise _translate(exc) from exc
        except Exception as exc:
            raise AuthBackendError("unavailable", exc.__class__.__name__) from exc
        user = getattr(res, "user", None) if res is not None else None
        if user is None:
            return None
        return identity_from_user(user)

    def on_auth_state_change(self, listener: AuthListener) -> _SupabaseSubscription:
        def _relay(event: Any, session: Any) -> None:
            try:
                evt = AuthEvent(str(getattr(event, "value", event)))
            except ValueError:
                logger.debug("Ignoring auth event %s", event)
                return
            listener(evt, self._checked(session))

        return _SupabaseSubscription(self._client.auth.on_auth_state_change(_relay))

    def sign_out(self) -> None:
        try:
            self._client.auth.sign_out()
        except AuthError as exc:
            raise _translate(exc) from exc


__all__ = ["SupabaseAuthBackend", "SupabaseClientAuth"]
