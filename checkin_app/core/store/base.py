"""Contract of the realtime document store consumed by the check-in core.

The store keeps documents addressed by slash-separated paths
(``collection/doc/collection/doc``). Subscriptions replay the current state
immediately and then push every change; a subscriber may see the same state
more than once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable


@dataclass(slots=True, frozen=True)
class DocumentSnapshot:
    """Point-in-time view of one document; ``data`` is None when it does not exist."""

    path: str
    id: str
    data: dict[str, Any] | None

    @property
    def exists(self) -> bool:
        return self.data is not None


DocumentCallback = Callable[[DocumentSnapshot], None]
CollectionCallback = Callable[[list[DocumentSnapshot]], None]


class Subscription(ABC):
    """Handle returned by every subscribe call."""

    @abstractmethod
    def unsubscribe(self) -> None:
        """Stop delivery. Calling it more than once is harmless."""

    @property
    @abstractmethod
    def active(self) -> bool:
        ...


class DocumentStore(ABC):
    """Durable documents with point reads, scans and push subscriptions.

    Implementations raise :class:`~checkin_app.core.errors.StoreUnavailable`
    for transient backend failures and never retry on their own.
    """

    @abstractmethod
    def get(self, path: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def set(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        ...

    @abstractmethod
    def delete_field(self, path: str, field_path: str) -> None:
        """Remove a (dotted) field from an existing document."""

    @abstractmethod
    def add(self, collection_path: str, fields: dict[str, Any]) -> str:
        """Create a document with a generated id and return that id."""

    @abstractmethod
    def scan(self, collection_path: str, order_by: str | None = None) -> list[DocumentSnapshot]:
        ...

    @abstractmethod
    def subscribe(self, path: str, callback: DocumentCallback) -> Subscription:
        ...

    @abstractmethod
    def subscribe_collection(
        self,
        collection_path: str,
        callback: CollectionCallback,
        order_by: str | None = None,
    ) -> Subscription:
        ...

    def exists(self, path: str) -> bool:
        return self.get(path) is not None
