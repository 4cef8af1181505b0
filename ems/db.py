from __future__ import annotations

import logging
from typing import Any, Callable, NamedTuple

from fastapi import HTTPException
from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from .auth import init_firebase
from .errors import StoreError

logger = logging.getLogger(__name__)

SERVER_TIMESTAMP = firestore.SERVER_TIMESTAMP


class Document(NamedTuple):
    id: str
    data: dict[str, Any]


SnapshotCallback = Callable[[list[Document]], None]


class Subscription:
    """Handle for a live query; ``unsubscribe`` stops further callbacks."""

    def __init__(self, watch: Any) -> None:
        self._watch = watch

    def unsubscribe(self) -> None:
        if self._watch is None:
            return
        try:
            self._watch.unsubscribe()
        finally:
            self._watch = None


class FirestoreStore:
    """Thin wrapper over the Firestore client used by the resolver and console.

    Only the operations this service needs: get-by-id, set, field update,
    equality queries, and live equality queries. Google API failures become
    ``StoreError``.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            snapshot = self._client.collection(collection).document(doc_id).get()
        except google_exceptions.GoogleAPIError as e:
            logger.exception(f"Firestore get {collection}/{doc_id} failed")
            raise StoreError("Could not reach the database. Please try again.") from e
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        try:
            self._client.collection(collection).document(doc_id).set(data)
        except google_exceptions.GoogleAPIError as e:
            logger.exception(f"Firestore set {collection}/{doc_id} failed")
            raise StoreError("Could not save to the database. Please try again.") from e

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        try:
            self._client.collection(collection).document(doc_id).update(fields)
        except google_exceptions.GoogleAPIError as e:
            logger.exception(f"Firestore update {collection}/{doc_id} failed")
            raise StoreError(str(e)) from e

    def _query(self, collection: str, filters: dict[str, Any] | None):
        query = self._client.collection(collection)
        for field_path, value in (filters or {}).items():
            query = query.where(filter=FieldFilter(field_path, "==", value))
        return query

    def query(self, collection: str, filters: dict[str, Any] | None = None) -> list[Document]:
        try:
            snapshots = self._query(collection, filters).stream()
            return [Document(s.id, s.to_dict() or {}) for s in snapshots]
        except google_exceptions.GoogleAPIError as e:
            logger.exception(f"Firestore query on {collection} failed")
            raise StoreError("Could not load data. Please try again.") from e

    def listen(
        self,
        collection: str,
        filters: dict[str, Any] | None,
        callback: SnapshotCallback,
    ) -> Subscription:
        """Push the full result set to ``callback`` on every change.

        Callbacks run on a Firestore SDK thread, not the caller's.
        """

        def on_snapshot(snapshots, changes, read_time) -> None:
            callback([Document(s.id, s.to_dict() or {}) for s in snapshots])

        try:
            watch = self._query(collection, filters).on_snapshot(on_snapshot)
        except google_exceptions.GoogleAPIError as e:
            logger.exception(f"Firestore listen on {collection} failed")
            raise StoreError("Could not subscribe to live updates.") from e
        return Subscription(watch)


def get_db() -> FirestoreStore:
    try:
        init_firebase()
    except Exception as e:
        logger.exception("Firebase Admin initialization failed")
        raise HTTPException(
            status_code=500,
            detail="Server database is not configured (Firebase Admin init failed).",
        ) from e
    return FirestoreStore(firestore.client())
