"""
In-memory auth backend and client for development and tests.

Why: Run the portal without a Supabase project. The behavior mirrors the hosted
service closely enough for the access-control paths: opaque access tokens with
a TTL, rotating refresh tokens, metadata-carried roles and auth events.

Security: Passwords are stored as salted PBKDF2 hashes even here, so a memory
dump of a dev server never shows plaintext credentials.

Concurrency: Route handlers call the backend from `asyncio.to_thread` workers.
One re-entrant lock guards the user and token maps.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import hashlib
import hmac
import secrets
import threading
import time
import uuid

from .auth_backend import AuthBackendError, AuthEvent, AuthListener
from .domain import Identity, Role, Session, identity_from_user


def _now() -> int:
    return int(time.time())


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 10_000)


@dataclass
class UserRecord:
    id: str
    email: str
    salt: bytes
    password_hash: bytes
    user_metadata: Dict[str, Any] = field(default_factory=dict)
    email_confirmed: bool = False


@dataclass
class TokenRecord:
    user_id: str
    expires_at: int


class MemoryAuthBackend:
    """Server-side auth backend keeping users and tokens in process memory."""

    def __init__(self, *, access_ttl_seconds: int = 3600, refresh_ttl_seconds: int = 30 * 24 * 3600):
        self._users: Dict[str, UserRecord] = {}
        self._access: Dict[str, TokenRecord] = {}
        self._refresh: Dict[str, TokenRecord] = {}
        self._lock = threading.RLock()
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.available = True

    # --- Helpers (callers hold the lock) -------------------------------------------

    def _check_available(self) -> None:
        if not self.available:
            raise AuthBackendError("unavailable", "auth service unreachable")

    def _find_by_email(self, email: str) -> Optional[UserRecord]:
        needle = (email or "").strip().lower()
        for rec in self._users.values():
            if rec.email == needle:
                return rec
        return None

    def _identity(self, rec: UserRecord) -> Identity:
        return identity_from_user({"id": rec.id, "email": rec.email, "user_metadata": dict(rec.user_metadata)})

    def _issue(self, rec: UserRecord) -> Session:
        access = secrets.token_urlsafe(24)
        refresh = secrets.token_urlsafe(24)
        expires_at = _now() + self.access_ttl_seconds
        self._access[access] = TokenRecord(user_id=rec.id, expires_at=expires_at)
        self._refresh[refresh] = TokenRecord(user_id=rec.id, expires_at=_now() + self.refresh_ttl_seconds)
        return Session(access_token=access, refresh_token=refresh, identity=self._identity(rec), expires_at=expires_at)

    def _revoke_all(self, user_id: str) -> None:
        for store in (self._access, self._refresh):
            for key in [k for k, v in store.items() if v.user_id == user_id]:
                del store[key]

    def _create(self, email: str, password: str, metadata: Mapping[str, Any], *, confirmed: bool) -> UserRecord:
        normalized = (email or "").strip().lower()
        if self._find_by_email(normalized) is not None:
            raise AuthBackendError("email_taken", "User already registered")
        salt = secrets.token_bytes(16)
        rec = UserRecord(
            id=str(uuid.uuid4()),
            email=normalized,
            salt=salt,
            password_hash=_hash_password(password, salt),
            user_metadata=dict(metadata),
            email_confirmed=confirmed,
        )
        self._users[rec.id] = rec
        return rec

    # --- Dev/test seeding --------------------------------------------------------

    def add_user(
        self,
        *,
        email: str,
        password: str,
        role: Role | str | None,
        full_name: str = "",
        is_verified: bool = True,
    ) -> str:
        """Create a confirmed account directly; returns the user id.

        `role` may be any string (or None) so tests can seed malformed metadata.
        """
        role_value = role.value if isinstance(role, Role) else role
        metadata = {"full_name": full_name, "is_verified": is_verified}
        if role_value is not None:
            metadata["role"] = role_value
        with self._lock:
            return self._create(email, password, metadata, confirmed=True).id

    def issue_session(self, user_id: str) -> Session:
        """Sign a known user in without a password (tests only)."""
        with self._lock:
            return self._issue(self._users[user_id])

    def expire_access_token(self, access_token: str) -> None:
        with self._lock:
            rec = self._access.get(access_token)
            if rec:
                rec.expires_at = _now() - 1

    def user_ids(self) -> List[str]:
        with self._lock:
            return list(self._users.keys())

    # --- AuthBackend -------------------------------------------------------------

    def get_user(self, access_token: str) -> Optional[Identity]:
        with self._lock:
            self._check_available()
            tok = self._access.get(access_token or "")
            if not tok:
                return None
            if tok.expires_at < _now():
                self._access.pop(access_token, None)
                return None
            rec = self._users.get(tok.user_id)
            if rec is None:
                return None
            return self._identity(rec)

    def refresh_session(self, refresh_token: str) -> Optional[Session]:
        with self._lock:
            self._check_available()
            tok = self._refresh.pop(refresh_token or "", None)
            if not tok or tok.expires_at < _now():
                return None
            rec = self._users.get(tok.user_id)
            if rec is None:
                return None
            return self._issue(rec)

    def sign_in_with_password(self, email: str, password: str) -> Session:
        with self._lock:
            self._check_available()
            rec = self._find_by_email(email)
            if rec is None or not hmac.compare_digest(rec.password_hash, _hash_password(password or "", rec.salt)):
                raise AuthBackendError("invalid_credentials", "Invalid login credentials")
            return self._issue(rec)

    def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> Identity:
        with self._lock:
            self._check_available()
            return self._identity(self._create(email, password, metadata, confirmed=False))

    def sign_out(self, access_token: str) -> None:
        with self._lock:
            self._check_available()
            tok = self._access.pop(access_token or "", None)
            if tok is None:
                return
            # Global scope: revoke every token of this user.
            self._revoke_all(tok.user_id)

    def admin_create_user(
        self,
        *,
        email: str,
        password: str,
        full_name: str,
        role: Role,
        email_confirm: bool = True,
    ) -> Identity:
        metadata = {"full_name": full_name, "role": role.value, "is_verified": True}
        with self._lock:
            self._check_available()
            return self._identity(self._create(email, password, metadata, confirmed=email_confirm))

    def admin_delete_user(self, user_id: str) -> None:
        with self._lock:
            self._check_available()
            if self._users.pop(user_id, None) is None:
                raise AuthBackendError("user_not_found", "User not found")
            self._revoke_all(user_id)

    def admin_update_metadata(self, user_id: str, metadata: Mapping[str, Any]) -> None:
        with self._lock:
            self._check_available()
            rec = self._users.get(user_id)
            if rec is None:
                raise AuthBackendError("user_not_found", "User not found")
            rec.user_metadata.update(metadata)


class _ListenerSubscription:
    def __init__(self, listeners: List[AuthListener], listener: AuthListener):
        self._listeners = listeners
        self._listener = listener

    def unsubscribe(self) -> None:
        if self._listener in self._listeners:
            self._listeners.remove(self._listener)


class MemoryClientAuth:
    """One client's view of the in-memory backend (holds the current session)."""

    def __init__(self, backend: MemoryAuthBackend, session: Optional[Session] = None):
        self._backend = backend
        self._session = session
        self._listeners: List[AuthListener] = []

    def _emit(self, event: AuthEvent) -> None:
        for listener in list(self._listeners):
            listener(event, self._session)

    def get_session(self) -> Optional[Session]:
        if self._session is None:
            return None
        identity = self._backend.get_user(self._session.access_token)
        if identity is None:
            self._session = None
        return self._session

    def get_user(self) -> Optional[Identity]:
        if self._session is None:
            return None
        return self._backend.get_user(self._session.access_token)

    def on_auth_state_change(self, listener: AuthListener) -> _ListenerSubscription:
        self._listeners.append(listener)
        return _ListenerSubscription(self._listeners, listener)

    def sign_in_with_password(self, email: str, password: str) -> Session:
        self._session = self._backend.sign_in_with_password(email, password)
        self._emit(AuthEvent.SIGNED_IN)
        return self._session

    def refresh(self) -> Optional[Session]:
        if self._session is None:
            return None
        self._session = self._backend.refresh_session(self._session.refresh_token)
        self._emit(AuthEvent.TOKEN_REFRESHED if self._session else AuthEvent.SIGNED_OUT)
        return self._session

    def sign_out(self) -> None:
        if self._session is not None:
            self._backend.sign_out(self._session.access_token)
        self._session = None
        self._emit(AuthEvent.SIGNED_OUT)


__all__ = ["MemoryAuthBackend", "MemoryClientAuth", "TokenRecord", "UserRecord"]
