from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .errors import AuthError, RepositoryError, StoreError
from .models import Identity, Session
from .storage import DocumentStore, IdentityProvider, Unsubscribe

logger = logging.getLogger(__name__)

SessionObserver = Callable[[Session], None]


class SessionStore:
    """Process-wide record of who is logged in.

    The store starts ``UNRESOLVED`` and follows the identity provider once
    :meth:`start` has been called. Observers are called on a background
    thread, in order, once per state change.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        store: DocumentStore,
        *,
        users_collection: str = "users",
    ) -> None:
        self._identity = identity
        self._store = store
        self._users_collection = users_collection

        self._state_lock = threading.Lock()
        # Held for a whole delivery; unsubscribe waits on it.
        self._delivery_lock = threading.RLock()
        self._session = Session.unresolved()
        self._observers: Dict[int, SessionObserver] = {}
        self._observer_ids = itertools.count()
        self._closed = False

        self._dispatcher = ThreadPoolExecutor(max_workers=1, thread_name_prefix="session-store")
        self._provider_unsubscribe: Optional[Unsubscribe] = None

    def start(self) -> None:
        if self._provider_unsubscribe is None:
            self._provider_unsubscribe = self._identity.on_session_change(self._on_provider_change)

    def close(self) -> None:
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        if self._provider_unsubscribe is not None:
            self._provider_unsubscribe()
        self._dispatcher.shutdown(wait=False)

    @property
    def current(self) -> Session:
        with self._state_lock:
            return self._session

    def observe(self, callback: SessionObserver) -> Unsubscribe:
        """Register ``callback`` for session changes and return its unsubscribe handle.

        When the session is already resolved the callback also receives the
        current session once.
        """

        with self._state_lock:
            key = next(self._observer_ids)
            self._observers[key] = callback
            if self._session.resolved and not self._closed:
                self._dispatcher.submit(self._deliver, [key], self._session)

        def unsubscribe() -> None:
            with self._delivery_lock, self._state_lock:
                self._observers.pop(key, None)

        return unsubscribe

    def sign_up(self, email: str, password: str) -> Identity:
        """Create an account, start its session and write its profile record.

        A failed profile write raises :class:`RepositoryError` and leaves the
        new session in place.
        """

        try:
            identity = self._identity.sign_up(email, password)
        except AuthError as exc:
            logger.warning("Sign-up for %s failed: %s", email, exc.message)
            raise
        self._synchronize()

        profile = {"email": identity.email, "createdAt": datetime.now(timezone.utc)}
        try:
            self._store.set_document(self._users_collection, identity.uid, profile)
        except StoreError as exc:
            logger.error("Profile creation for %s failed, session kept: %s", identity.uid, exc)
            raise RepositoryError("create profile", str(exc)) from exc
        return identity

    def sign_in(self, email: str, password: str) -> Identity:
        try:
            identity = self._identity.sign_in(email, password)
        except AuthError as exc:
            logger.warning("Login for %s failed: %s", email, exc.message)
            raise
        self._synchronize()
        return identity

    def sign_out(self) -> None:
        try:
            self._identity.sign_out()
        except AuthError as exc:
            logger.warning("Logout failed: %s", exc.message)
            raise
        self._synchronize()

    def revalidate(self) -> Session:
        """Check the current session with the provider and return the result.

        A revoked session turns anonymous before the provider's
        :class:`AuthError` is re-raised.
        """

        try:
            self._identity.ensure_fresh_session()
        except AuthError as exc:
            logger.warning("Session check failed: %s", exc.message)
            raise
        finally:
            self._synchronize()
        return self.current

    def _on_provider_change(self, _identity: Optional[Identity]) -> None:
        self._synchronize()

    def _synchronize(self) -> None:
        with self._state_lock:
            # Provider state is read under the lock; signals may arrive stale.
            identity = self._identity.current_user
            previous = self._session

            if identity is None:
                targets = [Session.anonymous()]
            elif previous.authenticated and previous.identity.uid != identity.uid:
                targets = [Session.anonymous(), Session.authenticated_as(identity)]
            else:
                targets = [Session.authenticated_as(identity)]

            changes: List[Session] = []
            last = previous
            for target in targets:
                if not _same_session(last, target):
                    changes.append(target)
                    last = target
            self._session = targets[-1]

            if self._closed:
                return
            keys = list(self._observers)
            for session in changes:
                logger.debug("Session changed to %s", session.state.value)
                self._dispatcher.submit(self._deliver, keys, session)

    def _deliver(self, keys: List[int], session: Session) -> None:
        with self._delivery_lock:
            for key in keys:
                with self._state_lock:
                    callback = self._observers.get(key)
                if callback is None:
                    continue
                try:
                    callback(session)
                except Exception:
                    logger.exception("Session observer raised")


def _same_session(left: Session, right: Session) -> bool:
    if left.state is not right.state:
        return False
    if left.identity is None or right.identity is None:
        return left.identity is right.identity
    return left.identity.uid == right.identity.uid


__all__ = ["SessionObserver", "SessionStore"]
