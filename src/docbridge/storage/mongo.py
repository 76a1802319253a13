"""
MongoDB-backed document store.

Each stored document is wrapped in a versioned envelope:

    {"_id": <key>, "version": <opaque token>, "content": {...caller fields...}}

so the optimistic-concurrency contract maps directly onto single-document
operations:

    replace(key, version, content) -> replace_one({"_id": key, "version": version}, ...)
    remove(key, version)           -> delete_one({"_id": key, "version": version})

A matched count of zero means someone else replaced the document first.

PATH REWRITING
==============

Native filters address content fields; on MongoDB those live under
``content.``. The array-member syntax has no MongoDB equivalent and becomes a
plain dotted path (MongoDB already matches dotted paths across array elements):

    {"items[*].sku": "a1"}            -> {"content.items.sku": "a1"}
    {"$query": q, "$orderby": [...]}  -> find(q', sort=[("content.<path>", 1|-1)])

Every connection is a client session, ended when the connection is released.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import CollectionInvalid, DuplicateKeyError, OperationFailure, PyMongoError

from docbridge.constants import ARRAY_MEMBER_SEPARATOR
from docbridge.errors import DUPLICATE_KEY, INDEX_EXISTS, StoreError
from docbridge.storage.base import (
    DocumentStore,
    IndexSpec,
    StoreConnection,
    StoredDocument,
)

logger = logging.getLogger(__name__)

CONTENT_FIELD = "content"
VERSION_FIELD = "version"

# MongoDB error codes for conflicting index definitions
_INDEX_CONFLICT_CODES = (85, 86)


def native_path(path: str) -> str:
    """Map a content path onto the envelope ("a[*].b" -> "content.a.b")."""
    return f"{CONTENT_FIELD}.{path.replace(ARRAY_MEMBER_SEPARATOR, '.')}"


def to_mongo_filter(native_filter: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rewrite a native filter so every field path addresses the envelope.

    Examples:
        >>> to_mongo_filter({"$or": [{"a": 1}, {"b[*].c": {"$exists": True}}]})
        {'$or': [{'content.a': 1}, {'content.b.c': {'$exists': True}}]}
    """
    rewritten: Dict[str, Any] = {}
    for key, value in native_filter.items():
        if key in ("$and", "$or"):
            rewritten[key] = [to_mongo_filter(item) for item in value]
        elif key.startswith("$"):
            rewritten[key] = value
        else:
            rewritten[native_path(key)] = value
    return rewritten


def to_mongo_sort(orderby: List[Dict[str, Any]]) -> List[tuple]:
    return [
        (native_path(term["path"]), DESCENDING if term.get("order") == "desc" else ASCENDING)
        for term in orderby
    ]


def _duplicate_message(e: DuplicateKeyError) -> str:
    details = e.details or {}
    key_value = details.get("keyValue") or {}
    if key_value:
        field, value = next(iter(key_value.items()))
        if field.startswith(f"{CONTENT_FIELD}."):
            field = field[len(CONTENT_FIELD) + 1:]
        return f"E11000 duplicate key error dup key: {{ {field}: {value!r} }}"
    return str(details.get("errmsg") or e)


class MongoDocumentStore(DocumentStore):
    """
    Document store over a pymongo database.

    Example:
        >>> store = MongoDocumentStore(MongoClient("mongodb://localhost:27017"), "app")
        >>> with store.connection() as conn:
        ...     key = conn.insert("Player", {"name": "ann"})
    """

    def __init__(self, client: MongoClient, database_name: str):
        self.client = client
        self.database = client[database_name]

    @classmethod
    def from_uri(cls, uri: str, database_name: str, **client_kwargs) -> "MongoDocumentStore":
        return cls(MongoClient(uri, **client_kwargs), database_name)

    def _acquire(self) -> "MongoConnection":
        try:
            session = self.client.start_session()
        except PyMongoError as e:
            raise StoreError(f"Could not start session: {e}") from e
        return MongoConnection(self.database, session)


class MongoConnection(StoreConnection):
    """One client session against the database."""

    def __init__(self, database, session):
        self._database = database
        self._session = session

    def close(self) -> None:
        self._session.end_session()

    def _collection(self, name: str):
        return self._database[name]

    def create_collection(self, collection: str) -> bool:
        try:
            if collection in self._database.list_collection_names(session=self._session):
                return False
            self._database.create_collection(collection, session=self._session)
        except CollectionInvalid:
            # Created concurrently by another connection
            return False
        except PyMongoError as e:
            raise StoreError(str(e), code=getattr(e, "code", None)) from e
        return True

    def insert(self, collection: str, content: Dict[str, Any]) -> str:
        key = str(ObjectId())
        envelope = {"_id": key, VERSION_FIELD: uuid.uuid4().hex, CONTENT_FIELD: content}
        try:
            self._collection(collection).insert_one(envelope, session=self._session)
        except DuplicateKeyError as e:
            raise StoreError(_duplicate_message(e), code=DUPLICATE_KEY) from e
        except PyMongoError as e:
            raise StoreError(str(e), code=getattr(e, "code", None)) from e
        return key

    def find(
        self,
        collection: str,
        native_filter: Dict[str, Any],
        skip: Optional[int] = None,
        limit: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> List[StoredDocument]:
        query, orderby = native_filter, None
        if "$query" in native_filter or "$orderby" in native_filter:
            query = native_filter.get("$query", {})
            orderby = native_filter.get("$orderby", [])

        cursor = self._collection(collection).find(
            to_mongo_filter(query), session=self._session
        )
        if orderby:
            cursor = cursor.sort(to_mongo_sort(orderby))
        if skip:
            cursor = cursor.skip(int(skip))
        if limit:
            cursor = cursor.limit(int(limit))
        if hint:
            cursor = cursor.hint(hint)

        try:
            return [
                StoredDocument(
                    key=str(raw["_id"]),
                    version=raw[VERSION_FIELD],
                    content=raw.get(CONTENT_FIELD) or {},
                )
                for raw in cursor
            ]
        except PyMongoError as e:
            raise StoreError(str(e), code=getattr(e, "code", None)) from e

    def replace(
        self, collection: str, key: str, version: str, content: Dict[str, Any]
    ) -> bool:
        envelope = {"_id": key, VERSION_FIELD: uuid.uuid4().hex, CONTENT_FIELD: content}
        try:
            result = self._collection(collection).replace_one(
                {"_id": key, VERSION_FIELD: version}, envelope, session=self._session
            )
        except DuplicateKeyError as e:
            raise StoreError(_duplicate_message(e), code=DUPLICATE_KEY) from e
        except PyMongoError as e:
            raise StoreError(str(e), code=getattr(e, "code", None)) from e
        return result.matched_count == 1

    def remove(self, collection: str, key: str, version: str) -> bool:
        try:
            result = self._collection(collection).delete_one(
                {"_id": key, VERSION_FIELD: version}, session=self._session
            )
        except PyMongoError as e:
            raise StoreError(str(e), code=getattr(e, "code", None)) from e
        return result.deleted_count == 1

    def create_index(self, collection: str, spec: IndexSpec) -> None:
        coll = self._collection(collection)
        try:
            if spec.name in coll.index_information(session=self._session):
                raise StoreError(
                    f"index {spec.name} already exists on {collection}", code=INDEX_EXISTS
                )
            coll.create_index(
                [(native_path(path), ASCENDING) for path in spec.paths],
                name=spec.name,
                unique=spec.unique,
                sparse=True,
                session=self._session,
            )
        except DuplicateKeyError as e:
            raise StoreError(_duplicate_message(e), code=DUPLICATE_KEY) from e
        except OperationFailure as e:
            if e.code in _INDEX_CONFLICT_CODES:
                raise StoreError(str(e), code=INDEX_EXISTS) from e
            raise StoreError(str(e), code=e.code) from e
        except PyMongoError as e:
            raise StoreError(str(e), code=getattr(e, "code", None)) from e

    def drop_index(self, collection: str, name: str) -> None:
        try:
            self._collection(collection).drop_index(name, session=self._session)
        except PyMongoError as e:
            raise StoreError(str(e), code=getattr(e, "code", None)) from e

    def list_indexes(self, collection: str) -> Tuple[str, ...]:
        try:
            return tuple(self._collection(collection).index_information(session=self._session))
        except PyMongoError as e:
            raise StoreError(str(e), code=getattr(e, "code", None)) from e
