"""
Client-side session store.

Why:
    A client (browser tab, kiosk, CLI session) needs to know who is signed in
    and to leave pages it may not see without waiting for the next server round
    trip. This is a convenience layer only; the middleware gate remains the
    enforcement point.

Design:
    A single-owner cell. The auth event stream is the only writer; page code
    reads `state` or registers a listener. Events arrive on one event loop, so
    no locking is involved. Navigation decisions come from `policy.decide`, the
    same function the middleware gate uses.

Role freshness:
    The identity carried by an event is never trusted as is. Whenever an event
    brings a session, the role is re-read from the backend. If the backend is
    unreachable and the session still belongs to the user already shown, the
    last known identity stays; every other failure resolves to signed out.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol
import logging

from .auth_backend import AuthBackendError, AuthEvent, ClientAuth, Subscription
from .domain import Identity, InvalidIdentityError, Session
from .policy import decide


logger = logging.getLogger("eduportal.identity.session_context")


class Navigator(Protocol):
    def current_path(self) -> str:
        ...

    def replace(self, path: str) -> None:
        """Navigate to `path`, replacing the current history entry."""
        ...


@dataclass(frozen=True)
class SessionState:
    identity: Optional[Identity] = None
    session: Optional[Session] = None
    loading: bool = True


StateListener = Callable[[SessionState], None]


class SessionContext:
    """Holds `{identity, session, loading}` for one client.

    `loading` is True until the first session resolution and then stays False.
    Consumers must not render protected content while it is True.
    """

    def __init__(self, auth: ClientAuth, navigator: Navigator):
        self._auth = auth
        self._navigator = navigator
        self._state = SessionState()
        self._listeners: List[StateListener] = []
        self._subscription: Optional[Subscription] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state.loading

    def start(self) -> None:
        """Resolve the current session once, then follow the event stream."""
        if self._subscription is not None:
            return
        try:
            session = self._auth.get_session()
        except Exception as exc:
            logger.warning("Initial session lookup failed: %s", exc.__class__.__name__)
            session = None
        self._subscription = self._auth.on_auth_state_change(self._on_auth_event)
        self._on_auth_event(AuthEvent.INITIAL_SESSION, session)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def sign_out(self) -> None:
        """Ask the backend to end the session.

        No navigation happens here; the SIGNED_OUT event that follows drives
        the redirect through the policy.
        """
        self._auth.sign_out()

    def reevaluate(self) -> None:
        """Re-run the policy for the current path (call after client-side navigation)."""
        if self._state.loading:
            return
        self._redirect_if_needed()

    # --- Internals ---------------------------------------------------------------

    def _on_auth_event(self, event: AuthEvent, session: Optional[Session]) -> None:
        logger.debug("Auth event: %s", event.value)
        identity = self._reread_identity(event, session)
        self._state = SessionState(identity=identity, session=session if identity is not None else None, loading=False)
        for listener in list(self._listeners):
            listener(self._state)
        self._redirect_if_needed()

    def _reread_identity(self, event: AuthEvent, session: Optional[Session]) -> Optional[Identity]:
        if session is None:
            return None
        try:
            return self._auth.get_user()
        except AuthBackendError as exc:
            previous = self._state.identity
            if exc.code == "unavailable" and previous is not None and previous.id == session.identity.id:
                logger.warning("Role re-read on %s failed, keeping last known identity", event.value)
                return previous
            logger.warning("Role re-read on %s failed: %s", event.value, exc.code)
            return None
        except InvalidIdentityError as exc:
            logger.warning("Malformed identity on %s: %s", event.value, exc.code)
            return None

    def _redirect_if_needed(self) -> None:
        identity = self._state.identity
        path = self._navigator.current_path()
        decision = decide(identity is not None, identity.role if identity else None, path)
        if decision is not None and decision.location != path:
            self._navigator.replace(decision.location)


__all__ = ["Navigator", "SessionContext", "SessionState"]
