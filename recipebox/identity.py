from __future__ import annotations

import itertools
import logging
import math
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .errors import AuthError
from .models import Identity
from .storage import IdentityProvider, SessionListener, Unsubscribe

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

NETWORK_FAILURE = "NETWORK_REQUEST_FAILED"
INVALID_RESPONSE = "INVALID_RESPONSE"

# Firebase id tokens live for an hour; refresh a little before that.
DEFAULT_TOKEN_LIFETIME = 3600.0
REFRESH_MARGIN = 300.0

# Refresh-token errors meaning the session is gone for good.
REVOKED_SESSION_CODES = frozenset(
    {"TOKEN_EXPIRED", "USER_DISABLED", "USER_NOT_FOUND", "INVALID_REFRESH_TOKEN"}
)


class FirebaseIdentityProvider(IdentityProvider):
    """Firebase Authentication through the Identity Toolkit REST API.

    Listeners registered with :meth:`on_session_change` are called on a single
    background worker, first once the initial session is known (restored from
    ``refresh_token`` when one is given) and then on every sign-in, sign-up,
    sign-out or revocation.
    """

    def __init__(
        self,
        api_key: str,
        *,
        refresh_token: Optional[str] = None,
        emulator_host: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        if emulator_host:
            self._auth_url = f"http://{emulator_host}/identitytoolkit.googleapis.com/v1"
            self._token_url = f"http://{emulator_host}/securetoken.googleapis.com/v1/token"
        else:
            self._auth_url = IDENTITY_TOOLKIT_URL
            self._token_url = SECURE_TOKEN_URL

        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)

        self._lock = threading.Lock()
        self._user: Optional[Identity] = None
        self._expires_at = 0.0
        self._resolved = False
        self._closed = False
        self._listeners: Dict[int, SessionListener] = {}
        self._listener_ids = itertools.count()

        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="firebase-auth")
        self._worker.submit(self._resolve_initial_session, refresh_token)

    @classmethod
    def from_env(cls) -> "FirebaseIdentityProvider":
        """Build a provider from environment variables."""

        api_key = os.environ.get("FIREBASE_API_KEY")
        if not api_key:
            raise RuntimeError(
                "FIREBASE_API_KEY is not set. Configure the Firebase web API key "
                "or pass an explicit identity provider to create_app."
            )
        return cls(
            api_key,
            refresh_token=os.environ.get("FIREBASE_REFRESH_TOKEN") or None,
            emulator_host=os.environ.get("FIREBASE_AUTH_EMULATOR_HOST") or None,
            timeout=float(os.environ.get("FIREBASE_HTTP_TIMEOUT", "10")),
        )

    @property
    def current_user(self) -> Optional[Identity]:
        with self._lock:
            return self._user

    def sign_up(self, email: str, password: str) -> Identity:
        payload = self._post(
            f"{self._auth_url}/accounts:signUp",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        return self._start_session(payload, email)

    def sign_in(self, email: str, password: str) -> Identity:
        payload = self._post(
            f"{self._auth_url}/accounts:signInWithPassword",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        return self._start_session(payload, email)

    def sign_out(self) -> None:
        with self._lock:
            if self._user is None:
                return
            self._user = None
        self._emit()

    def refresh(self) -> Identity:
        """Exchange the refresh token for a new id token.

        When the provider reports the session revoked, the current user is
        cleared, listeners are notified and :class:`AuthError` is raised.
        """

        user = self.current_user
        if user is None:
            raise AuthError("No user is currently signed in.", "NO_CURRENT_USER")

        try:
            payload = self._post(
                self._token_url,
                data={"grant_type": "refresh_token", "refresh_token": user.refresh_token},
            )
        except AuthError as exc:
            if exc.code in REVOKED_SESSION_CODES:
                logger.info("Session for %s was revoked (%s)", user.uid, exc.code)
                with self._lock:
                    revoked = self._user == user
                    if revoked:
                        self._user = None
                if revoked:
                    self._emit()
            raise

        refreshed = Identity(
            uid=str(payload.get("user_id") or user.uid),
            email=user.email,
            id_token=str(payload.get("id_token", "")),
            refresh_token=str(payload.get("refresh_token") or user.refresh_token),
        )
        with self._lock:
            if self._user == user:
                self._user = refreshed
                self._expires_at = _expiry(payload.get("expires_in"))
        return refreshed

    def ensure_fresh_session(self) -> Optional[Identity]:
        """Return the current user, refreshing its id token when it is about to expire.

        This is where a revoked session is noticed; see :meth:`refresh`.
        """

        with self._lock:
            user = self._user
            stale = time.monotonic() >= self._expires_at - REFRESH_MARGIN
        if user is None or not stale:
            return user
        return self.refresh()

    def on_session_change(self, listener: SessionListener) -> Unsubscribe:
        with self._lock:
            key = next(self._listener_ids)
            self._listeners[key] = listener
            if self._resolved and not self._closed:
                self._worker.submit(self._deliver, [key], self._user)

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(key, None)

        return unsubscribe

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._listeners.clear()
        self._worker.shutdown(wait=False)
        if self._owns_client:
            self._client.close()

    def _start_session(self, payload: Dict[str, Any], email: str) -> Identity:
        identity = Identity(
            uid=str(payload.get("localId", "")),
            email=str(payload.get("email") or email),
            id_token=str(payload.get("idToken", "")),
            refresh_token=str(payload.get("refreshToken", "")),
        )
        with self._lock:
            self._user = identity
            self._expires_at = _expiry(payload.get("expiresIn"))
        logger.info("Signed in %s", identity.email)
        self._emit()
        return identity

    def _resolve_initial_session(self, refresh_token: Optional[str]) -> None:
        restored: Optional[Tuple[Identity, float]] = None
        try:
            if refresh_token:
                restored = self._restore(refresh_token)
        except AuthError as exc:
            logger.warning("Could not restore the previous session: %s", exc.message)
        except Exception:
            logger.exception("Restoring the previous session failed")
        finally:
            # Listeners always receive the initial session, even after a failure.
            with self._lock:
                if restored is not None and self._user is None:
                    self._user, self._expires_at = restored
                self._resolved = True
                keys = list(self._listeners)
                user = self._user
            self._deliver(keys, user)

    def _restore(self, refresh_token: str) -> Tuple[Identity, float]:
        tokens = self._post(
            self._token_url,
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        id_token = str(tokens.get("id_token", ""))
        lookup = self._post(f"{self._auth_url}/accounts:lookup", json={"idToken": id_token})
        users = lookup.get("users")
        if not isinstance(users, list) or not users or not isinstance(users[0], dict):
            raise AuthError("The identity provider returned no user for the session.", INVALID_RESPONSE)
        identity = Identity(
            uid=str(tokens.get("user_id") or users[0].get("localId", "")),
            email=str(users[0].get("email", "")),
            id_token=id_token,
            refresh_token=str(tokens.get("refresh_token") or refresh_token),
        )
        return identity, _expiry(tokens.get("expires_in"))

    def _emit(self) -> None:
        with self._lock:
            if not self._resolved or self._closed:
                # The initial resolution delivers whatever is current by then.
                return
            keys = list(self._listeners)
            user = self._user
            self._worker.submit(self._deliver, keys, user)

    def _deliver(self, keys: List[int], user: Optional[Identity]) -> None:
        for key in keys:
            with self._lock:
                listener = self._listeners.get(key)
            if listener is None:
                continue
            try:
                listener(user)
            except Exception:
                logger.exception("Session listener raised")

    def _post(
        self,
        url: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            response = self._client.post(url, params={"key": self._api_key}, json=json, data=data)
        except httpx.HTTPError as exc:
            logger.warning("Identity provider request to %s failed: %s", url, exc)
            raise AuthError(NETWORK_FAILURE, NETWORK_FAILURE) from exc

        if response.is_error:
            message, code = _error_details(response)
            logger.info("Identity provider rejected request: %s", message)
            raise AuthError(message, code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("Malformed response from the identity provider.", INVALID_RESPONSE) from exc
        if not isinstance(payload, dict):
            raise AuthError("Malformed response from the identity provider.", INVALID_RESPONSE)
        return payload


def _error_details(response: httpx.Response) -> Tuple[str, str]:
    """Extract the provider message and code, e.g. ``WEAK_PASSWORD : Password should be...``."""

    try:
        payload = response.json()
    except ValueError:
        payload = None
    error = payload.get("error") if isinstance(payload, dict) else None

    if isinstance(error, dict):
        message = str(error.get("message") or f"HTTP {response.status_code}")
    elif isinstance(error, str):
        message = error
    else:
        message = f"HTTP {response.status_code}"

    code = message.split(" : ", 1)[0].strip()
    return message, code


def _expiry(expires_in: Any) -> float:
    """Monotonic deadline for a token whose lifetime the provider sends as a string of seconds."""

    try:
        lifetime = float(expires_in)
    except (TypeError, ValueError):
        lifetime = DEFAULT_TOKEN_LIFETIME
    if not math.isfinite(lifetime):
        lifetime = DEFAULT_TOKEN_LIFETIME
    return time.monotonic() + lifetime


__all__ = ["FirebaseIdentityProvider", "REVOKED_SESSION_CODES"]
