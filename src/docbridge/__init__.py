"""
docbridge: Mongo-style queries and updates over a key-versioned document store.

Example:
    >>> from docbridge import MemoryDocumentStore, StoreContext, WriteEngine
    >>> engine = WriteEngine(StoreContext(MemoryDocumentStore()))
    >>> key = engine.insert_one("Player", {"name": "ann", "score": 1})
    >>> engine.find_one_and_update("Player", {"name": "ann"}, {"$inc": {"score": 4}})
    {'name': 'ann', 'score': 5}
"""

from docbridge.analysis import apply_update, build_sort_spec, parse_filter, parse_update, translate
from docbridge.errors import (
    DocBridgeError,
    DuplicateValueError,
    NotFoundError,
    StoreError,
    TranslationError,
    VersionConflictError,
)
from docbridge.execution import (
    DEFAULT_CONFIG,
    DEFAULT_RETRY_POLICY,
    EngineConfig,
    QueryOptions,
    RetryPolicy,
    WriteEngine,
    retry_on_conflict,
)
from docbridge.schema import Schema, Types
from docbridge.signals import NO_MATCH, NOT_FOUND, RETRY, Signal
from docbridge.storage import (
    DocumentStore,
    MemoryDocumentStore,
    MongoDocumentStore,
    StoreContext,
)

__version__ = "0.1.0"

__all__ = [
    "WriteEngine",
    "QueryOptions",
    "EngineConfig",
    "DEFAULT_CONFIG",
    "RetryPolicy",
    "DEFAULT_RETRY_POLICY",
    "retry_on_conflict",
    "StoreContext",
    "DocumentStore",
    "MemoryDocumentStore",
    "MongoDocumentStore",
    "Schema",
    "Types",
    "translate",
    "apply_update",
    "parse_filter",
    "parse_update",
    "build_sort_spec",
    "Signal",
    "RETRY",
    "NOT_FOUND",
    "NO_MATCH",
    "DocBridgeError",
    "NotFoundError",
    "VersionConflictError",
    "DuplicateValueError",
    "TranslationError",
    "StoreError",
]
