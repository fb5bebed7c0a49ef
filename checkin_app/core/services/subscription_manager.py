"""Scoped subscription handles that tear down as a tree.

A listener that fans out (user → classrooms → sessions → questions) opens a
child handle for every entity it starts watching. Cancelling any handle
cancels everything opened beneath it, so removing a classroom can never leave
its session or question listeners running.
"""

from __future__ import annotations

from enum import Enum
from itertools import count
import logging
from threading import Lock

from checkin_app.core.store.base import Subscription

logger = logging.getLogger(__name__)


class SubscriptionScope(str, Enum):
    USER = "user"
    CLASSROOM = "classroom"
    SESSION = "session"
    QUESTION = "question"


class SubscriptionHandle:
    """A node of the subscription tree."""

    def __init__(
        self,
        manager: "SubscriptionManager",
        scope: SubscriptionScope,
        key: str,
        parent: "SubscriptionHandle | None" = None,
    ) -> None:
        self._manager = manager
        self.scope = scope
        self.key = key
        self._parent = parent
        self._children: dict[str, SubscriptionHandle] = {}
        self._subscriptions: list[Subscription] = []
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, subscription: Subscription) -> Subscription:
        """Tie a store subscription to this node's lifetime."""
        with self._manager._lock:
            if not self._cancelled:
                self._subscriptions.append(subscription)
                return subscription
        # Node was torn down while the subscription was being opened.
        subscription.unsubscribe()
        return subscription

    def open_child(self, scope: SubscriptionScope, key: str) -> "SubscriptionHandle":
        """Return the child for ``key``, creating it when missing."""
        with self._manager._lock:
            existing = self._children.get(key)
            if existing is not None:
                return existing
            child = SubscriptionHandle(self._manager, scope, key, parent=self)
            if self._cancelled:
                child._cancelled = True
            else:
                self._children[key] = child
            return child

    def claim_child(self, scope: SubscriptionScope, key: str) -> "SubscriptionHandle | None":
        """Create the child for ``key`` and return it, or None if it already exists.

        Only the caller that receives the new node should attach listeners to it.
        A cancelled node claims nothing.
        """
        with self._manager._lock:
            if self._cancelled or key in self._children:
                return None
            child = SubscriptionHandle(self._manager, scope, key, parent=self)
            self._children[key] = child
            return child

    def child(self, key: str) -> "SubscriptionHandle | None":
        with self._manager._lock:
            return self._children.get(key)

    def child_keys(self) -> set[str]:
        with self._manager._lock:
            return set(self._children)

    def cancel(self) -> None:
        """Cancel this node and every node opened beneath it."""
        with self._manager._lock:
            if self._cancelled:
                return
            released = self._cancel_locked()
            if self._parent is not None:
                self._parent._children.pop(self.key, None)
            else:
                self._manager._roots.pop(self.key, None)
        for subscription in released:
            subscription.unsubscribe()
        logger.debug(
            "Cancelled %s subscription %s (%d listeners released)",
            self.scope.value,
            self.key,
            len(released),
        )

    def _cancel_locked(self) -> list[Subscription]:
        self._cancelled = True
        released: list[Subscription] = []
        for child in self._children.values():
            released.extend(child._cancel_locked())
        self._children.clear()
        released.extend(self._subscriptions)
        self._subscriptions = []
        return released

    def live_subscription_count(self) -> int:
        with self._manager._lock:
            return self._count_locked()

    def _count_locked(self) -> int:
        return len(self._subscriptions) + sum(child._count_locked() for child in self._children.values())


class SubscriptionManager:
    """Owns the root handles of every live subscription tree."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._roots: dict[str, SubscriptionHandle] = {}
        self._root_counter = count(1)

    def open_root(self, scope: SubscriptionScope, label: str) -> SubscriptionHandle:
        key = f"{label}#{next(self._root_counter)}"
        handle = SubscriptionHandle(self, scope, key)
        with self._lock:
            self._roots[key] = handle
        return handle

    def root_count(self) -> int:
        with self._lock:
            return len(self._roots)

    def cancel_all(self) -> None:
        with self._lock:
            roots = list(self._roots.values())
        for root in roots:
            root.cancel()
