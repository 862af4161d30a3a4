"""Storage layer - Firestore and in-memory implementations."""

from wacrm.storage.base import StorageBackend
from wacrm.storage.firestore import FirestoreStorage
from wacrm.storage.memory import InMemoryStorage

__all__ = ["StorageBackend", "FirestoreStorage", "InMemoryStorage"]
