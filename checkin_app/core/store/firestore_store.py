"""Cloud Firestore backed implementation of :class:`DocumentStore`."""

from __future__ import annotations

import logging
from typing import Any

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore

from checkin_app.core.errors import StoreUnavailable
from checkin_app.core.store.base import (
    CollectionCallback,
    DocumentCallback,
    DocumentSnapshot,
    DocumentStore,
    Subscription,
)

logger = logging.getLogger(__name__)


def _to_snapshot(doc: Any) -> DocumentSnapshot:
    return DocumentSnapshot(
        path=doc.reference.path,
        id=doc.id,
        data=doc.to_dict() if doc.exists else None,
    )


class _WatchSubscription(Subscription):
    def __init__(self, watch: Any) -> None:
        self._watch = watch
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._watch.unsubscribe()


class FirestoreDocumentStore(DocumentStore):
    """Thin adapter over ``google.cloud.firestore.Client``.

    Snapshot listeners run on the client's background thread, exactly like
    the in-memory store runs them on the writer's thread.
    """

    def __init__(self, client: firestore.Client | None = None, project: str | None = None) -> None:
        self._client = client or firestore.Client(project=project)

    def get(self, path: str) -> dict[str, Any] | None:
        try:
            doc = self._client.document(path).get()
        except google_exceptions.GoogleAPICallError as exc:
            raise StoreUnavailable(f"Read of {path} failed: {exc}") from exc
        return doc.to_dict() if doc.exists else None

    def set(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        try:
            self._client.document(path).set(fields, merge=merge)
        except google_exceptions.GoogleAPICallError as exc:
            raise StoreUnavailable(f"Write of {path} failed: {exc}") from exc

    def delete(self, path: str) -> None:
        try:
            self._client.document(path).delete()
        except google_exceptions.GoogleAPICallError as exc:
            raise StoreUnavailable(f"Delete of {path} failed: {exc}") from exc

    def delete_field(self, path: str, field_path: str) -> None:
        try:
            self._client.document(path).update({field_path: firestore.DELETE_FIELD})
        except google_exceptions.NotFound:
            logger.debug("Field %s not removed: %s does not exist", field_path, path)
        except google_exceptions.GoogleAPICallError as exc:
            raise StoreUnavailable(f"Update of {path} failed: {exc}") from exc

    def add(self, collection_path: str, fields: dict[str, Any]) -> str:
        try:
            _, reference = self._client.collection(collection_path).add(fields)
        except google_exceptions.GoogleAPICallError as exc:
            raise StoreUnavailable(f"Create in {collection_path} failed: {exc}") from exc
        return reference.id

    def scan(self, collection_path: str, order_by: str | None = None) -> list[DocumentSnapshot]:
        query = self._client.collection(collection_path)
        if order_by:
            query = query.order_by(order_by)
        try:
            return [_to_snapshot(doc) for doc in query.stream()]
        except google_exceptions.GoogleAPICallError as exc:
            raise StoreUnavailable(f"Scan of {collection_path} failed: {exc}") from exc

    def subscribe(self, path: str, callback: DocumentCallback) -> Subscription:
        reference = self._client.document(path)

        def on_snapshot(docs: list[Any], changes: Any, read_time: Any) -> None:
            if docs:
                callback(_to_snapshot(docs[0]))
            else:
                callback(DocumentSnapshot(path=reference.path, id=reference.id, data=None))

        return _WatchSubscription(reference.on_snapshot(on_snapshot))

    def subscribe_collection(
        self,
        collection_path: str,
        callback: CollectionCallback,
        order_by: str | None = None,
    ) -> Subscription:
        query = self._client.collection(collection_path)
        if order_by:
            query = query.order_by(order_by)

        def on_snapshot(docs: list[Any], changes: Any, read_time: Any) -> None:
            callback([_to_snapshot(doc) for doc in docs])

        return _WatchSubscription(query.on_snapshot(on_snapshot))
