"""Document store contract and its implementations."""

from .base import DocumentSnapshot, DocumentStore, Subscription
from .memory_store import InMemoryDocumentStore

__all__ = [
    "DocumentSnapshot",
    "DocumentStore",
    "InMemoryDocumentStore",
    "Subscription",
]
