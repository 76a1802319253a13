"""
Boundary between docbridge and a key-versioned document store.

The store is an external collaborator. docbridge only needs:

    insert(content)                   -> key
    find(native_filter, skip, limit)  -> [StoredDocument(key, version, content)]
    replace(key, version, content)    -> True if replaced, False on version mismatch
    remove(key, version)              -> True if removed, False on version mismatch
    create_index(spec) / drop_index(name) / list_indexes()

Every call happens on a StoreConnection obtained from ``store.connection()``,
a context manager that releases the connection-scoped resource on every exit
path:

    with store.connection() as conn:
        docs = conn.find("Player", {"name": "ann"}, limit=1)

Existing documents are never overwritten blindly: the only way to change one
is replace() with the exact (key, version) pair that was read.

Errors: uniqueness violations raise StoreError(code=DUPLICATE_KEY); creating an
index whose name exists raises StoreError(code=INDEX_EXISTS). Anything else is
a StoreError with whatever code the store reports.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass
class StoredDocument:
    """One document as read from the store."""

    key: str
    version: str
    content: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IndexSpec:
    """
    Native index definition.

    Example:
        IndexSpec(name="email_1", paths=("email",), unique=True)
    """

    name: str
    paths: tuple
    unique: bool = True


class StoreConnection(ABC):
    """Operations available while a connection is held."""

    @abstractmethod
    def create_collection(self, collection: str) -> bool:
        """Create the collection if missing; returns True when it was created."""

    @abstractmethod
    def insert(self, collection: str, content: Dict[str, Any]) -> str:
        """Insert a new document and return its key."""

    @abstractmethod
    def find(
        self,
        collection: str,
        native_filter: Dict[str, Any],
        skip: Optional[int] = None,
        limit: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> List[StoredDocument]:
        """Run a native filter (optionally $query/$orderby wrapped)."""

    @abstractmethod
    def replace(
        self, collection: str, key: str, version: str, content: Dict[str, Any]
    ) -> bool:
        """Replace content only if (key, version) still matches."""

    @abstractmethod
    def remove(self, collection: str, key: str, version: str) -> bool:
        """Delete only if (key, version) still matches."""

    @abstractmethod
    def create_index(self, collection: str, spec: IndexSpec) -> None:
        """Create a native index."""

    @abstractmethod
    def drop_index(self, collection: str, name: str) -> None:
        """Drop a native index by name."""

    @abstractmethod
    def list_indexes(self, collection: str) -> Tuple[str, ...]:
        """Names of the native indexes on a collection."""

    def close(self) -> None:
        """Release the connection-scoped resource."""


class DocumentStore(ABC):
    """Factory for StoreConnection objects."""

    @abstractmethod
    def _acquire(self) -> StoreConnection:
        """Acquire a connection from the underlying pool."""

    @contextmanager
    def connection(self) -> Iterator[StoreConnection]:
        """Hold a connection for one request; always released on exit."""
        conn = self._acquire()
        try:
            yield conn
        finally:
            conn.close()
