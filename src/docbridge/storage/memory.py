"""
In-process document store speaking the native filter-by-example dialect.

Used for tests and for running the engine without a database. It behaves the
way the native store does, including the parts docbridge has to work around:

- {"f": None} matches only documents where f is present and null.
- {"f": {"$in": []}} and empty objects inside $and are rejected as malformed.
- Rich operators ($containedBy, $nor, ...) are rejected.
- "items[*].k" addresses member k of every element of the array items.
- {"$query": ..., "$orderby": [{path, datatype, order}]} sorts results.

Every replace() changes the version token; replace()/remove() only succeed
against the exact (key, version) pair. Unique indexes are sparse: documents
without the indexed field do not take part.
"""

import logging
import re
import threading
import uuid
from copy import deepcopy
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from docbridge.analysis.paths import MISSING, get_path
from docbridge.constants import ARRAY_MEMBER_SEPARATOR, SORT_NUMBER
from docbridge.errors import DUPLICATE_KEY, INDEX_EXISTS, StoreError
from docbridge.storage.base import (
    DocumentStore,
    IndexSpec,
    StoreConnection,
    StoredDocument,
)

logger = logging.getLogger(__name__)

_NATIVE_OPERATORS = frozenset(
    {"$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin", "$all",
     "$exists", "$regex", "$options"}
)


class MemoryDocumentStore(DocumentStore):
    """
    Thread-safe in-memory store.

    Attributes:
        open_connections: Connections currently held (for leak checks)
        connections_opened: Total connections handed out
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, StoredDocument]] = {}
        self._indexes: Dict[str, Dict[str, IndexSpec]] = {}
        self.open_connections = 0
        self.connections_opened = 0

    def _acquire(self) -> "MemoryConnection":
        with self._lock:
            self.open_connections += 1
            self.connections_opened += 1
        return MemoryConnection(self)

    def _release(self) -> None:
        with self._lock:
            self.open_connections -= 1

    def documents(self, collection: str) -> List[StoredDocument]:
        """Snapshot of a collection, in insertion order (test helper)."""
        with self._lock:
            return [deepcopy(doc) for doc in self._collections.get(collection, {}).values()]

    def index_names(self, collection: str) -> List[str]:
        with self._lock:
            return list(self._indexes.get(collection, {}))


class MemoryConnection(StoreConnection):
    """Connection handle onto a MemoryDocumentStore."""

    def __init__(self, store: MemoryDocumentStore):
        self._store = store
        self._closed = False

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._store._release()

    def _check_open(self) -> None:
        if self._closed:
            raise StoreError("Connection is closed")

    def _docs(self, collection: str) -> Dict[str, StoredDocument]:
        return self._store._collections.setdefault(collection, {})

    # ------------------------------------------------------------------
    # Collections and indexes
    # ------------------------------------------------------------------

    def create_collection(self, collection: str) -> bool:
        self._check_open()
        with self._store._lock:
            if collection in self._store._collections:
                return False
            self._store._collections[collection] = {}
            return True

    def create_index(self, collection: str, spec: IndexSpec) -> None:
        self._check_open()
        with self._store._lock:
            indexes = self._store._indexes.setdefault(collection, {})
            if spec.name in indexes:
                raise StoreError(
                    f"index {spec.name} already exists on {collection}",
                    code=INDEX_EXISTS,
                )
            if spec.unique:
                seen = set()
                for doc in self._docs(collection).values():
                    signature = _index_signature(doc.content, spec)
                    if signature is None:
                        continue
                    if signature in seen:
                        raise _duplicate_error(collection, spec, doc.content)
                    seen.add(signature)
            indexes[spec.name] = spec
        logger.debug(f"Index {spec.name} on {collection} covers {list(spec.paths)}")

    def drop_index(self, collection: str, name: str) -> None:
        self._check_open()
        with self._store._lock:
            indexes = self._store._indexes.get(collection, {})
            if name not in indexes:
                raise StoreError(f"index {name} not found on {collection}")
            del indexes[name]

    def list_indexes(self, collection: str) -> Tuple[str, ...]:
        self._check_open()
        with self._store._lock:
            return tuple(self._store._indexes.get(collection, {}))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def insert(self, collection: str, content: Dict[str, Any]) -> str:
        self._check_open()
        with self._store._lock:
            self._check_unique(collection, content, exclude_key=None)
            key = str(ObjectId())
            self._docs(collection)[key] = StoredDocument(
                key=key, version=uuid.uuid4().hex, content=deepcopy(content)
            )
            return key

    def find(
        self,
        collection: str,
        native_filter: Dict[str, Any],
        skip: Optional[int] = None,
        limit: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> List[StoredDocument]:
        self._check_open()
        query, orderby = native_filter, None
        if "$query" in native_filter or "$orderby" in native_filter:
            query = native_filter.get("$query", {})
            orderby = native_filter.get("$orderby", [])
        _validate(query)

        with self._store._lock:
            docs = [
                deepcopy(doc)
                for doc in self._docs(collection).values()
                if _matches(doc.content, query)
            ]
        if orderby:
            docs = _sort(docs, orderby)
        if skip:
            docs = docs[int(skip):]
        if limit:
            docs = docs[: int(limit)]
        return docs

    def replace(
        self, collection: str, key: str, version: str, content: Dict[str, Any]
    ) -> bool:
        self._check_open()
        with self._store._lock:
            current = self._docs(collection).get(key)
            if current is None or current.version != version:
                return False
            self._check_unique(collection, content, exclude_key=key)
            current.content = deepcopy(content)
            current.version = uuid.uuid4().hex
            return True

    def remove(self, collection: str, key: str, version: str) -> bool:
        self._check_open()
        with self._store._lock:
            docs = self._docs(collection)
            current = docs.get(key)
            if current is None or current.version != version:
                return False
            del docs[key]
            return True

    def _check_unique(
        self, collection: str, content: Dict[str, Any], exclude_key: Optional[str]
    ) -> None:
        for spec in self._store._indexes.get(collection, {}).values():
            if not spec.unique:
                continue
            signature = _index_signature(content, spec)
            if signature is None:
                continue
            for key, doc in self._docs(collection).items():
                if key != exclude_key and _index_signature(doc.content, spec) == signature:
                    raise _duplicate_error(collection, spec, content)


# =============================================================================
# UNIQUE INDEX HELPERS
# =============================================================================


def _index_signature(content: Dict[str, Any], spec: IndexSpec):
    values = tuple(get_path(content, path) for path in spec.paths)
    if all(v is MISSING for v in values):
        return None
    return repr(values)


def _duplicate_error(collection: str, spec: IndexSpec, content: Dict[str, Any]) -> StoreError:
    path = spec.paths[0]
    value = get_path(content, path, None)
    return StoreError(
        f"E11000 duplicate key error collection: {collection} "
        f"index: {spec.name} dup key: {{ {path}: {value!r} }}",
        code=DUPLICATE_KEY,
    )


# =============================================================================
# FILTER EVALUATION
# =============================================================================


def _validate(query: Any) -> None:
    """Reject filters the native store would refuse."""
    if not isinstance(query, dict):
        raise StoreError(f"Invalid filter specification: {query!r}")
    for key, value in query.items():
        if key in ("$and", "$or"):
            if not isinstance(value, list) or not value:
                raise StoreError(f"{key} requires a non-empty array")
            for item in value:
                if not isinstance(item, dict) or not item:
                    raise StoreError("Empty objects not allowed in filter specification")
                _validate(item)
        elif key.startswith("$"):
            raise StoreError(f"Unsupported filter operator: {key}")
        elif isinstance(value, dict) and value and all(k.startswith("$") for k in value):
            for op, operand in value.items():
                if op not in _NATIVE_OPERATORS:
                    raise StoreError(f"Unsupported filter operator: {op}")
                if op in ("$in", "$nin", "$all") and not operand:
                    raise StoreError(f"Array of values was empty for {op} on {key}")


def _resolve(content: Dict[str, Any], path: str):
    """Value(s) at path; "a[*].b" yields the list of b across elements of a."""
    if ARRAY_MEMBER_SEPARATOR in path:
        head, tail = path.split(ARRAY_MEMBER_SEPARATOR, 1)
        array = get_path(content, head)
        if not isinstance(array, list):
            return MISSING
        members = [
            _resolve(item, tail) for item in array if isinstance(item, dict)
        ]
        members = [m for m in members if m is not MISSING]
        return members if members else MISSING
    return get_path(content, path)


def _matches(content: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, cond in query.items():
        if key == "$and":
            if not all(_matches(content, sub) for sub in cond):
                return False
        elif key == "$or":
            if not any(_matches(content, sub) for sub in cond):
                return False
        elif not _match_field(_resolve(content, key), cond, key):
            return False
    return True


def _candidates(value: Any) -> List[Any]:
    """The value itself plus, for arrays, each element."""
    if isinstance(value, list):
        return [value] + value
    return [value]


def _match_field(value: Any, cond: Any, path: str) -> bool:
    if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
        return all(_match_op(value, op, arg, cond) for op, arg in cond.items())
    if value is MISSING:
        return False
    if ARRAY_MEMBER_SEPARATOR in path and isinstance(value, list):
        return any(v == cond or (isinstance(v, list) and cond in v) for v in value)
    return any(v == cond for v in _candidates(value))


def _compare(value: Any, arg: Any, op: str) -> bool:
    for v in _candidates(value):
        if v is None or isinstance(v, list):
            continue
        try:
            if op == "$gt" and v > arg:
                return True
            if op == "$gte" and v >= arg:
                return True
            if op == "$lt" and v < arg:
                return True
            if op == "$lte" and v <= arg:
                return True
        except TypeError:
            continue
    return False


def _match_op(value: Any, op: str, arg: Any, cond: Dict[str, Any]) -> bool:
    present = value is not MISSING
    if op == "$exists":
        return present == bool(arg)
    if op == "$eq":
        return present and any(v == arg for v in _candidates(value))
    if op == "$ne":
        # Absent fields compare unequal to everything
        return not present or all(v != arg for v in _candidates(value))
    if op == "$in":
        return present and any(v in arg for v in _candidates(value))
    if op == "$nin":
        return not present or all(v not in arg for v in _candidates(value))
    if op == "$all":
        return present and isinstance(value, list) and all(a in value for a in arg)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        return present and _compare(value, arg, op)
    if op == "$regex":
        flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
        return present and any(
            isinstance(v, str) and re.search(arg, v, flags) is not None
            for v in _candidates(value)
        )
    if op == "$options":
        return True
    return False


def _sort(docs: List[StoredDocument], orderby: List[Dict[str, Any]]) -> List[StoredDocument]:
    # Stable sorts applied from the least significant key
    for term in reversed(orderby):
        numeric = term.get("datatype") == SORT_NUMBER
        descending = term.get("order") == "desc"

        def sort_key(doc, path=term["path"], numeric=numeric):
            value = get_path(doc.content, path)
            if value is MISSING or value is None:
                return (0, 0 if numeric else "")
            if numeric:
                try:
                    return (1, float(value))
                except (TypeError, ValueError):
                    return (0, 0)
            return (1, str(value))

        docs = sorted(docs, key=sort_key, reverse=descending)
    return docs
