from __future__ import annotations

import logging
import os
from typing import List, Optional, Tuple

from google.api_core import exceptions as gcloud_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore

from .errors import StoreError
from .storage import Document, DocumentStore

logger = logging.getLogger(__name__)

_STORE_FAILURES = (gcloud_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError)


class FirestoreDocumentStore(DocumentStore):
    """Document store backed by Cloud Firestore."""

    def __init__(
        self,
        *,
        project: Optional[str] = None,
        client: Optional[firestore.Client] = None,
    ) -> None:
        self._project = project
        self._client = client if client is not None else firestore.Client(project=project)

    @classmethod
    def from_env(cls) -> "FirestoreDocumentStore":
        """Build a store from environment variables.

        ``FIRESTORE_EMULATOR_HOST`` is picked up by the Firestore client itself.
        """

        project = os.environ.get("GCP_PROJECT")
        return cls(project=project)

    def scan_collection(self, collection: str) -> List[Tuple[str, Document]]:
        try:
            return [(doc.id, doc.to_dict() or {}) for doc in self._client.collection(collection).stream()]
        except _STORE_FAILURES as exc:
            raise self._store_error("scan", collection, exc) from exc

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            snapshot = self._client.collection(collection).document(doc_id).get()
        except _STORE_FAILURES as exc:
            raise self._store_error("get", collection, exc) from exc

        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    def insert_document(self, collection: str, document: Document) -> str:
        doc_ref = self._client.collection(collection).document()
        try:
            doc_ref.set(document)
        except _STORE_FAILURES as exc:
            raise self._store_error("insert", collection, exc) from exc
        return doc_ref.id

    def set_document(self, collection: str, doc_id: str, document: Document) -> None:
        try:
            self._client.collection(collection).document(doc_id).set(document)
        except _STORE_FAILURES as exc:
            raise self._store_error("set", collection, exc) from exc

    def _store_error(self, operation: str, collection: str, exc: Exception) -> StoreError:
        logger.warning("Firestore %s on '%s' failed: %s", operation, collection, exc)
        return StoreError(f"Firestore {operation} on '{collection}' failed: {exc}")


__all__ = ["FirestoreDocumentStore"]
