"""Thread-safe in-process document store with push subscriptions.

Writes mutate the tree under a data lock; listener callbacks run after that
lock is released, on the writing thread, so a callback may itself subscribe or
write. A re-entrant delivery lock spans each write and its dispatch, so every
listener sees changes in the order they were applied.
"""

from __future__ import annotations

import copy
import logging
from itertools import count
from threading import Lock, RLock
from typing import Any, Callable
from uuid import uuid4

from checkin_app.core.store import paths
from checkin_app.core.store.base import (
    CollectionCallback,
    DocumentCallback,
    DocumentSnapshot,
    DocumentStore,
    Subscription,
)

logger = logging.getLogger(__name__)

_Notification = tuple["_MemorySubscription", Callable[[Any], None], Any]


class _MemorySubscription(Subscription):
    def __init__(self, release: Callable[[], None]) -> None:
        self._release = release
        self._active = True
        self._lock = Lock()

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._release()


class InMemoryDocumentStore(DocumentStore):
    """Document store kept in process memory; used for tests and local runs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._delivery_lock = RLock()
        # collection path -> {document id -> fields}
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._document_listeners: dict[str, dict[int, tuple[_MemorySubscription, DocumentCallback]]] = {}
        self._collection_listeners: dict[
            str, dict[int, tuple[_MemorySubscription, CollectionCallback, str | None]]
        ] = {}
        self._tokens = count(1)

    # --- Reads ---

    def get(self, path: str) -> dict[str, Any] | None:
        collection, doc_id = self._locate(path)
        with self._lock:
            data = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    def scan(self, collection_path: str, order_by: str | None = None) -> list[DocumentSnapshot]:
        collection = self._collection_key(collection_path)
        with self._lock:
            return self._scan_locked(collection, order_by)

    # --- Writes ---

    def set(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        collection, doc_id = self._locate(path)
        with self._delivery_lock:
            with self._lock:
                documents = self._collections.setdefault(collection, {})
                existing = documents.get(doc_id)
                if merge and existing is not None:
                    _deep_merge(existing, copy.deepcopy(fields))
                else:
                    documents[doc_id] = copy.deepcopy(fields)
                notifications = self._collect_notifications(collection, doc_id)
            self._dispatch(notifications)

    def add(self, collection_path: str, fields: dict[str, Any]) -> str:
        doc_id = uuid4().hex[:20]
        self.set(paths.join(collection_path, doc_id), fields)
        return doc_id

    def delete(self, path: str) -> None:
        collection, doc_id = self._locate(path)
        with self._delivery_lock:
            with self._lock:
                documents = self._collections.get(collection)
                if documents is None or doc_id not in documents:
                    return
                del documents[doc_id]
                notifications = self._collect_notifications(collection, doc_id)
            self._dispatch(notifications)

    def delete_field(self, path: str, field_path: str) -> None:
        collection, doc_id = self._locate(path)
        with self._delivery_lock:
            with self._lock:
                data = self._collections.get(collection, {}).get(doc_id)
                if data is None:
                    return
                *parents, leaf = field_path.split(".")
                node = data
                for key in parents:
                    node = node.get(key)
                    if not isinstance(node, dict):
                        return
                if leaf not in node:
                    return
                del node[leaf]
                notifications = self._collect_notifications(collection, doc_id)
            self._dispatch(notifications)

    # --- Subscriptions ---

    def subscribe(self, path: str, callback: DocumentCallback) -> Subscription:
        collection, doc_id = self._locate(path)
        full_path = paths.join(collection, doc_id)
        token = next(self._tokens)

        def release() -> None:
            with self._lock:
                listeners = self._document_listeners.get(full_path, {})
                listeners.pop(token, None)
                if not listeners:
                    self._document_listeners.pop(full_path, None)

        subscription = _MemorySubscription(release)
        with self._delivery_lock:
            with self._lock:
                self._document_listeners.setdefault(full_path, {})[token] = (subscription, callback)
                initial = self._document_snapshot_locked(collection, doc_id)
            self._dispatch([(subscription, callback, initial)])
        return subscription

    def subscribe_collection(
        self,
        collection_path: str,
        callback: CollectionCallback,
        order_by: str | None = None,
    ) -> Subscription:
        collection = self._collection_key(collection_path)
        token = next(self._tokens)

        def release() -> None:
            with self._lock:
                listeners = self._collection_listeners.get(collection, {})
                listeners.pop(token, None)
                if not listeners:
                    self._collection_listeners.pop(collection, None)

        subscription = _MemorySubscription(release)
        with self._delivery_lock:
            with self._lock:
                self._collection_listeners.setdefault(collection, {})[token] = (subscription, callback, order_by)
                initial = self._scan_locked(collection, order_by)
            self._dispatch([(subscription, callback, initial)])
        return subscription

    def listener_count(self) -> int:
        """Number of live subscriptions, across documents and collections."""
        with self._lock:
            return sum(len(v) for v in self._document_listeners.values()) + sum(
                len(v) for v in self._collection_listeners.values()
            )

    # --- Internals ---

    @staticmethod
    def _locate(path: str) -> tuple[str, str]:
        if not paths.is_document_path(path):
            raise ValueError(f"{path!r} is not a document path.")
        return paths.parent_collection(path), paths.document_id(path)

    @staticmethod
    def _collection_key(collection_path: str) -> str:
        if paths.is_document_path(collection_path):
            raise ValueError(f"{collection_path!r} is not a collection path.")
        return "/".join(paths.split(collection_path))

    def _document_snapshot_locked(self, collection: str, doc_id: str) -> DocumentSnapshot:
        data = self._collections.get(collection, {}).get(doc_id)
        return DocumentSnapshot(
            path=paths.join(collection, doc_id),
            id=doc_id,
            data=copy.deepcopy(data) if data is not None else None,
        )

    def _scan_locked(self, collection: str, order_by: str | None) -> list[DocumentSnapshot]:
        documents = self._collections.get(collection, {})
        snapshots = [
            DocumentSnapshot(path=paths.join(collection, doc_id), id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in sorted(documents.items())
        ]
        if order_by:
            snapshots.sort(key=lambda snap: _sort_key(snap.data.get(order_by)))
        return snapshots

    def _collect_notifications(self, collection: str, doc_id: str) -> list[_Notification]:
        notifications: list[_Notification] = []
        full_path = paths.join(collection, doc_id)
        listeners = self._document_listeners.get(full_path, {})
        if listeners:
            snapshot = self._document_snapshot_locked(collection, doc_id)
            for subscription, callback in listeners.values():
                notifications.append((subscription, callback, snapshot))
        for subscription, callback, order_by in self._collection_listeners.get(collection, {}).values():
            notifications.append((subscription, callback, self._scan_locked(collection, order_by)))
        return notifications

    @staticmethod
    def _dispatch(notifications: list[_Notification]) -> None:
        for subscription, callback, payload in notifications:
            if not subscription.active:
                continue
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber callback failed")


def _deep_merge(target: dict[str, Any], updates: dict[str, Any]) -> None:
    for key, value in updates.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _deep_merge(current, value)
        else:
            target[key] = value


def _sort_key(value: Any) -> tuple[int, Any]:
    # Missing values sort last; mixed types fall back to their string form.
    if value is None:
        return (2, "")
    if isinstance(value, (int, float)):
        return (0, value)
    return (1, str(value))
