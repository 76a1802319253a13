"""
Store boundary and store-side helpers for docbridge.

- Base: DocumentStore / StoreConnection interfaces and StoredDocument
- Memory: in-process store speaking the native filter dialect
- Mongo: pymongo-backed store using a versioned envelope
- Context: explicit per-store state (collection handles, index registries)
- Cache: deterministic filter fingerprints for logs
- Frames: find results as pyarrow / pandas / polars
"""

from .base import DocumentStore, IndexSpec, StoreConnection, StoredDocument
from .cache import filter_shape, hash_query
from .context import CollectionHandle, StoreContext
from .indexes import IndexRegistry
from .memory import MemoryDocumentStore
from .mongo import MongoDocumentStore

__all__ = [
    "DocumentStore",
    "StoreConnection",
    "StoredDocument",
    "IndexSpec",
    "MemoryDocumentStore",
    "MongoDocumentStore",
    "StoreContext",
    "CollectionHandle",
    "IndexRegistry",
    "hash_query",
    "filter_shape",
]
