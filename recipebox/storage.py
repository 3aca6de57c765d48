from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from .models import Identity

Document = Dict[str, Any]
SessionListener = Callable[[Optional[Identity]], None]
Unsubscribe = Callable[[], None]


class DocumentStore(Protocol):
    """Protocol describing the schemaless document database used by the core.

    Implementations raise :class:`recipebox.errors.StoreError` on I/O,
    permission or connectivity failures.
    """

    def scan_collection(self, collection: str) -> List[Tuple[str, Document]]:
        """Return every ``(id, document)`` pair of ``collection``."""

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        """Return a single document, or ``None`` when it does not exist."""

    def insert_document(self, collection: str, document: Document) -> str:
        """Store ``document`` under a new id chosen by the store and return it."""

    def set_document(self, collection: str, doc_id: str, document: Document) -> None:
        """Create or overwrite the document stored under ``doc_id``."""


class IdentityProvider(Protocol):
    """Protocol describing the authentication service.

    Credential operations raise :class:`recipebox.errors.AuthError`.
    """

    @property
    def current_user(self) -> Optional[Identity]:
        """The identity of the current session, or ``None``."""

    def sign_up(self, email: str, password: str) -> Identity:
        """Create an account and start a session for it."""

    def sign_in(self, email: str, password: str) -> Identity:
        """Start a session for an existing account."""

    def sign_out(self) -> None:
        """End the current session."""

    def ensure_fresh_session(self) -> Optional[Identity]:
        """Refresh the current session's token if it is due and return the current identity.

        A session revoked by the provider is cleared, listeners are notified
        and :class:`recipebox.errors.AuthError` is raised.
        """

    def on_session_change(self, listener: SessionListener) -> Unsubscribe:
        """Call ``listener`` once the initial session is known and on every change."""


__all__ = [
    "Document",
    "DocumentStore",
    "IdentityProvider",
    "SessionListener",
    "Unsubscribe",
]
