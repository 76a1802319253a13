"""
Explicit per-store context.

A StoreContext owns everything docbridge remembers about one store: the
collection handles (class name -> native collection) and, per handle, the
registry of known index names. It is passed to the engine explicitly; there is
no module-level state.

    context = StoreContext(MemoryDocumentStore())
    handle = context.collection("Player")      # cached, prefix applied
    with context.store.connection() as conn:
        handle.ensure_created(conn)             # lazy create + primary-key index
"""

import logging
import threading
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from docbridge.constants import ID_FIELD, ID_INDEX_NAME
from docbridge.errors import INDEX_EXISTS, StoreError
from docbridge.storage.base import DocumentStore, IndexSpec, StoreConnection
from docbridge.storage.indexes import IndexRegistry

if TYPE_CHECKING:
    from docbridge.execution.config import EngineConfig

logger = logging.getLogger(__name__)


class CollectionHandle:
    """
    Cached handle for one collection.

    Attributes:
        name: Class name as the caller knows it
        native_name: Collection name in the store (prefix applied)
        indexes: Known index names
    """

    def __init__(self, name: str, native_name: str, create_id_index: bool = True):
        self.name = name
        self.native_name = native_name
        self.indexes = IndexRegistry()
        self._create_id_index = create_id_index
        self._created = False
        self._lock = threading.Lock()

    def ensure_created(self, conn: StoreConnection) -> None:
        """
        On first use: create the collection and its primary-key index, then
        load the names of indexes that already exist in the store.
        """
        if self._created:
            return
        with self._lock:
            if self._created:
                return
            if conn.create_collection(self.native_name):
                logger.info(f"Created collection '{self.native_name}'")
            if self._create_id_index:
                try:
                    conn.create_index(
                        self.native_name, IndexSpec(ID_INDEX_NAME, (ID_FIELD,), unique=True)
                    )
                except StoreError as e:
                    if e.code != INDEX_EXISTS:
                        raise
            for index_name in conn.list_indexes(self.native_name):
                self.indexes.add(index_name)
            self._created = True

    @property
    def created(self) -> bool:
        return self._created

    def __repr__(self) -> str:
        return f"CollectionHandle({self.name!r} -> {self.native_name!r})"


class StoreContext:
    """
    Store plus the collection handles cached for it.

    Args:
        store: The document store
        config: Engine configuration (collection prefix, id-index creation);
            defaults to DEFAULT_CONFIG
    """

    def __init__(self, store: DocumentStore, config: Optional["EngineConfig"] = None):
        if config is None:
            from docbridge.execution.config import DEFAULT_CONFIG

            config = DEFAULT_CONFIG
        self.store = store
        self.config = config
        self._handles: Dict[str, CollectionHandle] = {}
        self._lock = threading.Lock()

    def collection(self, name: str) -> CollectionHandle:
        with self._lock:
            handle = self._handles.get(name)
            if handle is None:
                handle = CollectionHandle(
                    name,
                    f"{self.config.collection_prefix}{name}",
                    create_id_index=self.config.create_id_index,
                )
                self._handles[name] = handle
            return handle

    def list_collections(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._handles))

    def forget(self, name: str) -> None:
        """Drop the cached handle; the next use re-checks the store."""
        with self._lock:
            self._handles.pop(name, None)
