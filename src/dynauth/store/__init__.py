"""Resource store: contract, events and the in-memory implementation.

Public API::

    from dynauth.store import InMemoryResourceStore, NotFoundError

    store = InMemoryResourceStore()
    store.apply(patch, field_manager="me", force=True)
"""

from dynauth.store.base import (
    AlreadyExistsError,
    ApplyRejectedError,
    ConflictError,
    EventType,
    NamespacedName,
    NotFoundError,
    ResourceStore,
    StoreError,
    Watch,
    WatchEvent,
    annotations_of,
    key_of,
    labels_of,
    matches_labels,
    metadata_of,
)
from dynauth.store.memory import InMemoryResourceStore

__all__ = [
    "AlreadyExistsError",
    "ApplyRejectedError",
    "ConflictError",
    "EventType",
    "InMemoryResourceStore",
    "NamespacedName",
    "NotFoundError",
    "ResourceStore",
    "StoreError",
    "Watch",
    "WatchEvent",
    "annotations_of",
    "key_of",
    "labels_of",
    "matches_labels",
    "metadata_of",
]
