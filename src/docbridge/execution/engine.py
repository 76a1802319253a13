"""
Optimistic write engine for docbridge.

================================================================================
WRITE PROTOCOL
================================================================================

Every single-document write is one pass through:

    READ ─────────────▶ TRANSFORM ──────────▶ CONDITIONAL_WRITE
    translate filter     apply_update()        replace(key, version, new)
    find first match     (pure, no I/O)        / remove(key, version)
        │                                          │            │
        ▼                                          ▼            ▼
    NOT_FOUND                                 new content     RETRY
    (nothing matched)                         (DONE)          (version moved on)

The engine does not loop on RETRY for single-document writes; the caller
re-runs the whole operation (see execution.retry.retry_on_conflict). Bulk
operations whose contract covers "every matching document" (remove_fields,
delete_many) retry the conflicting documents themselves.

================================================================================
RESOURCES
================================================================================

Each READ and each WRITE borrows one connection for exactly that step:

    with store.connection() as conn:
        ...

so nothing is held while the update is transformed or across a RETRY.
Unsatisfiable filters (NO_MATCH) never touch the store at all.

================================================================================
EXAMPLE
================================================================================

    engine = WriteEngine(StoreContext(MemoryDocumentStore()))
    engine.insert_one("Player", {"name": "ann", "score": 1})

    engine.find_one_and_update("Player", {"name": "ann"}, {"$inc": {"score": 4}})
    # -> {"name": "ann", "score": 5}

    engine.find("Player", {"score": {"$ne": None}}, QueryOptions(sort={"score": -1}))
================================================================================
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from docbridge.analysis.expressions import (
    Combinator,
    Comparison,
    UpdateExpression,
    parse_filter,
    parse_update,
)
from docbridge.analysis.inspector import is_operator_object
from docbridge.analysis.paths import MISSING, get_path, set_path, unset_path
from docbridge.analysis.projection import build_sort_spec, project
from docbridge.analysis.translator import TranslatedFilter, apply_post_filters, translate
from docbridge.analysis.updates import apply_update
from docbridge.constants import EXPLAIN_ALLOWED_VALUES
from docbridge.errors import (
    DUPLICATE_KEY,
    INDEX_EXISTS,
    DuplicateValueError,
    NotFoundError,
    StoreError,
    TranslationError,
    VersionConflictError,
    parse_duplicated_field,
)
from docbridge.execution.config import EngineConfig
from docbridge.schema import Schema
from docbridge.signals import NO_MATCH, NOT_FOUND, RETRY, Signal
from docbridge.storage.base import IndexSpec, StoreConnection, StoredDocument
from docbridge.storage.cache import filter_shape, hash_query
from docbridge.storage.context import StoreContext
from docbridge.storage.frames import to_dataframe

logger = logging.getLogger(__name__)

FilterInput = Union[Dict[str, Any], Combinator, None]
Content = Dict[str, Any]


# =============================================================================
# CALLER OPTIONS
# =============================================================================


@dataclass(frozen=True)
class QueryOptions:
    """
    Read options as sent by the caller.

    ``case_insensitive``, ``collation`` and ``explain`` are accepted for
    compatibility; the native store has no equivalent, so they are validated
    and otherwise ignored.
    """

    skip: Optional[int] = None
    limit: Optional[int] = None
    sort: Optional[Mapping[str, int]] = None
    keys: Optional[Sequence[str]] = None
    hint: Optional[str] = None
    case_insensitive: bool = False
    explain: Any = False
    collation: Optional[Mapping[str, Any]] = None

    def __post_init__(self):
        if self.skip is not None and self.skip < 0:
            raise TranslationError("skip cannot be negative")
        if self.limit is not None and self.limit < 0:
            raise TranslationError("limit cannot be negative")
        if self.explain not in EXPLAIN_ALLOWED_VALUES:
            raise TranslationError(
                f"Invalid explain value {self.explain!r}; "
                f"expected one of {list(EXPLAIN_ALLOWED_VALUES)}"
            )


DEFAULT_OPTIONS = QueryOptions()


# =============================================================================
# ENGINE
# =============================================================================


class WriteEngine:
    """
    Reads and optimistic writes against one StoreContext.

    Args:
        context: Store plus cached collection handles
        config: Engine configuration; defaults to the context's
    """

    def __init__(self, context: StoreContext, config: Optional[EngineConfig] = None):
        self.context = context
        self.config = config or context.config

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _connection(
        self, operation: str, class_name: str, filter_expr: FilterInput = None
    ) -> Iterator[Tuple[StoreConnection, str]]:
        """Borrow a connection for one step; store failures are logged and re-raised."""
        handle = self.context.collection(class_name)
        try:
            with self.context.store.connection() as conn:
                handle.ensure_created(conn)
                yield conn, handle.native_name
        except StoreError as e:
            logger.error(
                f"{operation} on '{class_name}' failed "
                f"[filter {hash_query(_loggable(filter_expr))[:12]} "
                f"shape={filter_shape(_loggable(filter_expr))}]: {e}"
            )
            raise

    def _read(
        self,
        operation: str,
        class_name: str,
        translated: TranslatedFilter,
        first_only: bool = False,
    ) -> List[StoredDocument]:
        # Deferred clauses can reject native matches, so limit only without them
        limit = 1 if first_only and not translated.post_filters else None
        with self._connection(operation, class_name, translated.source) as (conn, native_name):
            docs = conn.find(native_name, translated.native, limit=limit)
        if translated.post_filters:
            kept = {
                id(c)
                for c in apply_post_filters([d.content for d in docs], translated.post_filters)
            }
            docs = [d for d in docs if id(d.content) in kept]
        if first_only:
            docs = docs[:1]
        logger.debug(f"{operation}: read {len(docs)} document(s) from '{class_name}'")
        return docs

    def _replace(
        self, operation: str, class_name: str, doc: StoredDocument, content: Content
    ) -> bool:
        with self._connection(operation, class_name) as (conn, native_name):
            replaced = conn.replace(native_name, doc.key, doc.version, content)
        if not replaced:
            logger.debug(f"{operation}: version of {doc.key} moved on, signalling RETRY")
        return replaced

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(
        self,
        class_name: str,
        filter_expr: FilterInput = None,
        options: Optional[QueryOptions] = None,
        schema: Optional[Schema] = None,
    ) -> List[Content]:
        """
        Return the contents of every document matching ``filter_expr``.

        Args:
            class_name: Collection as the caller names it
            filter_expr: Rich filter
            options: skip / limit / sort / keys / hint
            schema: Declared field types, used to type the sort

        Returns:
            List of content dicts (empty when the filter can never match)
        """
        options = options or DEFAULT_OPTIONS
        if options.case_insensitive or options.collation:
            logger.warning("Case-insensitive matching and collation are not supported; ignored")
        if options.explain:
            logger.warning(f"explain={options.explain!r} requested; explain plans are not produced")

        sort_spec = build_sort_spec(options.sort, schema)
        translated = translate(filter_expr, sort_spec)
        if translated is NO_MATCH:
            logger.debug(f"find on '{class_name}': filter can never match, store not contacted")
            return []

        deferred = bool(translated.post_filters)
        with self._connection("find", class_name, filter_expr) as (conn, native_name):
            docs = conn.find(
                native_name,
                translated.native,
                skip=None if deferred else options.skip,
                limit=None if deferred else options.limit,
                hint=options.hint,
            )

        contents = [doc.content for doc in docs]
        if deferred:
            contents = apply_post_filters(contents, translated.post_filters)
            start = options.skip or 0
            end = start + options.limit if options.limit else None
            contents = contents[start:end]
        return project(contents, options.keys)

    def count(self, class_name: str, filter_expr: FilterInput = None) -> int:
        return len(self.find(class_name, filter_expr))

    def distinct(
        self, class_name: str, field: str, filter_expr: FilterInput = None
    ) -> List[Any]:
        """
        Distinct values of ``field`` across matching documents.

        Array values contribute their elements; null and absent values are
        skipped. Order is first-seen.
        """
        values: List[Any] = []
        for content in self.find(class_name, filter_expr):
            value = get_path(content, field)
            if value is MISSING or value is None:
                continue
            for item in value if isinstance(value, list) else [value]:
                if item is not None and item not in values:
                    values.append(item)
        return values

    def find_frame(
        self,
        class_name: str,
        filter_expr: FilterInput = None,
        options: Optional[QueryOptions] = None,
        schema: Optional[Schema] = None,
        engine: Literal["pandas", "polars"] = "pandas",
    ):
        """find() results as a pandas or polars DataFrame."""
        return to_dataframe(self.find(class_name, filter_expr, options, schema), schema, engine)

    # ------------------------------------------------------------------
    # Single-document writes
    # ------------------------------------------------------------------

    def find_one_and_update(
        self,
        class_name: str,
        filter_expr: FilterInput,
        update: Union[Dict[str, Any], UpdateExpression],
    ) -> Union[Content, Signal]:
        """
        Apply ``update`` to the first matching document.

        Returns:
            The new content, ``RETRY`` when the document changed between read
            and write, or ``NOT_FOUND`` when nothing matched

        Raises:
            TranslationError: Malformed filter or update (before any I/O)
        """
        expr = parse_update(update)
        translated = translate(filter_expr)
        if translated is NO_MATCH:
            return NOT_FOUND

        if expr.unset and not expr.is_field_definition:
            # Field removal runs as its own pass; the document is read afresh after it
            self.remove_fields(class_name, expr.unset, filter_expr)
            expr = expr.without_unset()

        docs = self._read("update", class_name, translated, first_only=True)
        if not docs:
            return NOT_FOUND
        doc = docs[0]

        new_content = apply_update(doc.content, expr)
        if not self._replace("update", class_name, doc, new_content):
            return RETRY
        return new_content

    def upsert_one(
        self,
        class_name: str,
        filter_expr: FilterInput,
        update: Union[Dict[str, Any], UpdateExpression],
    ) -> Union[Content, Signal]:
        """
        Update the first match, or insert a new document when none exists.

        The inserted content is ``apply_update({}, update)`` with the filter's
        literal equality fields set on top.
        """
        result = self.find_one_and_update(class_name, filter_expr, update)
        if result is not NOT_FOUND:
            return result

        content = apply_update({}, parse_update(update).without_unset())
        for name, value in _equality_fields(filter_expr):
            set_path(content, name, deepcopy(value))
        self.insert_one(class_name, content)
        logger.debug(f"upsert on '{class_name}': no match, inserted new document")
        return content

    def find_one_and_delete(
        self, class_name: str, filter_expr: FilterInput
    ) -> Union[Content, Signal]:
        """Delete the first match; returns its content, ``RETRY`` or ``NOT_FOUND``."""
        translated = translate(filter_expr)
        if translated is NO_MATCH:
            return NOT_FOUND

        docs = self._read("delete", class_name, translated, first_only=True)
        if not docs:
            return NOT_FOUND
        doc = docs[0]

        with self._connection("delete", class_name) as (conn, native_name):
            removed = conn.remove(native_name, doc.key, doc.version)
        if not removed:
            return RETRY
        return doc.content

    def remove_field(
        self, class_name: str, filter_expr: FilterInput, field: str
    ) -> Union[Content, Signal]:
        """Remove one (dotted) field from the first matching document."""
        translated = translate(filter_expr)
        if translated is NO_MATCH:
            return NOT_FOUND

        docs = self._read("remove_field", class_name, translated, first_only=True)
        if not docs:
            return NOT_FOUND
        doc = docs[0]

        new_content = deepcopy(doc.content)
        unset_path(new_content, field)
        if not self._replace("remove_field", class_name, doc, new_content):
            return RETRY
        return new_content

    def insert_one(self, class_name: str, content: Content) -> str:
        """
        Insert a new document and return its key.

        Raises:
            DuplicateValueError: A unique index already holds one of the values
        """
        with self._connection("insert", class_name) as (conn, native_name):
            try:
                key = conn.insert(native_name, content)
            except StoreError as e:
                if e.code != DUPLICATE_KEY:
                    raise
                field = parse_duplicated_field(str(e))
                logger.debug(f"insert on '{class_name}' rejected: duplicate value for {field}")
                raise DuplicateValueError(
                    "A duplicate value for a field with unique values was provided",
                    field=field,
                ) from e
        return key

    # ------------------------------------------------------------------
    # Multi-document writes
    # ------------------------------------------------------------------

    def _rounds(self) -> Iterator[int]:
        round_no = 1
        while self.config.max_removal_rounds is None or round_no <= self.config.max_removal_rounds:
            yield round_no
            round_no += 1

    def remove_fields(
        self,
        class_name: str,
        field_names: Union[str, Iterable[str]],
        filter_expr: FilterInput = None,
    ) -> int:
        """
        Remove fields from every matching document that has any of them.

        Per-document conditional replaces run concurrently; documents that
        lose a version race are read again and retried until none still holds
        the fields.

        Returns:
            Number of documents rewritten

        Raises:
            VersionConflictError: ``max_removal_rounds`` reached with
                conflicts outstanding
        """
        names = (field_names,) if isinstance(field_names, str) else tuple(field_names)
        if not names:
            return 0

        translated = translate(_with_any_field(filter_expr, names))
        if translated is NO_MATCH:
            return 0

        rewritten = 0
        for round_no in self._rounds():
            docs = self._read("remove_fields", class_name, translated)
            if not docs:
                break

            def rewrite(doc: StoredDocument) -> bool:
                content = deepcopy(doc.content)
                for name in names:
                    unset_path(content, name)
                return self._replace("remove_fields", class_name, doc, content)

            with ThreadPoolExecutor(max_workers=self.config.removal_workers) as pool:
                outcomes = list(pool.map(rewrite, docs))

            rewritten += sum(outcomes)
            conflicts = len(outcomes) - sum(outcomes)
            if not conflicts:
                break
            logger.warning(
                f"remove_fields on '{class_name}': {conflicts} conflict(s) in round {round_no}, retrying"
            )
        else:
            raise VersionConflictError(
                f"Fields {list(names)} still present on '{class_name}' after "
                f"{self.config.max_removal_rounds} rounds",
                attempts=self.config.max_removal_rounds,
            )

        logger.info(f"Removed {list(names)} from {rewritten} document(s) in '{class_name}'")
        return rewritten

    def delete_many(self, class_name: str, filter_expr: FilterInput) -> int:
        """
        Delete every matching document.

        Returns:
            Number of documents deleted

        Raises:
            NotFoundError: Nothing matched
        """
        translated = translate(filter_expr)
        if translated is NO_MATCH:
            raise NotFoundError(f"No object found in '{class_name}'")

        deleted = 0
        for round_no in self._rounds():
            docs = self._read("delete_many", class_name, translated)
            if not docs:
                break
            conflicts = 0
            with self._connection("delete_many", class_name, filter_expr) as (conn, native_name):
                for doc in docs:
                    if conn.remove(native_name, doc.key, doc.version):
                        deleted += 1
                    else:
                        conflicts += 1
            if not conflicts:
                break
            logger.warning(
                f"delete_many on '{class_name}': {conflicts} conflict(s) in round {round_no}, retrying"
            )
        else:
            raise VersionConflictError(
                f"Documents in '{class_name}' kept changing during delete_many",
                attempts=self.config.max_removal_rounds,
            )

        if not deleted:
            raise NotFoundError(f"No object found in '{class_name}'")
        logger.info(f"Deleted {deleted} document(s) from '{class_name}'")
        return deleted

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    def create_index(
        self,
        class_name: str,
        field_names: Union[str, Sequence[str]],
        name: Optional[str] = None,
        unique: bool = True,
    ) -> str:
        """
        Create a native index and register it on the collection handle.

        An index that already exists under the same name is registered as is.

        Returns:
            The index name (``<field>_1`` joined by ``_`` unless given)
        """
        paths = (field_names,) if isinstance(field_names, str) else tuple(field_names)
        index_name = name or "_".join(f"{path}_1" for path in paths)
        handle = self.context.collection(class_name)

        with self._connection("create_index", class_name) as (conn, native_name):
            try:
                conn.create_index(native_name, IndexSpec(index_name, paths, unique=unique))
            except StoreError as e:
                if e.code != INDEX_EXISTS:
                    raise
                logger.debug(f"Index {index_name} already exists on '{class_name}'")
        handle.indexes.add(index_name)
        return index_name

    def ensure_uniqueness(self, class_name: str, field_names: Union[str, Sequence[str]]) -> str:
        """
        Create a unique index over ``field_names``.

        Raises:
            DuplicateValueError: Existing documents already share a value
        """
        try:
            return self.create_index(class_name, field_names, unique=True)
        except StoreError as e:
            if e.code != DUPLICATE_KEY:
                raise
            raise DuplicateValueError(
                "Tried to ensure field uniqueness for a class that already has duplicates.",
                field=parse_duplicated_field(str(e)),
            ) from e

    def drop_index(self, class_name: str, name: str) -> None:
        with self._connection("drop_index", class_name) as (conn, native_name):
            conn.drop_index(native_name, name)
        self.context.collection(class_name).indexes.remove(name)

    def get_indexes(self, class_name: str) -> Tuple[str, ...]:
        """Known index names; the first call loads them from the store."""
        handle = self.context.collection(class_name)
        if not handle.created:
            with self._connection("get_indexes", class_name):
                pass
        return handle.indexes.snapshot()


# =============================================================================
# HELPERS
# =============================================================================


def _loggable(filter_expr: Any) -> Any:
    # Parsed trees are logged through their repr
    if filter_expr is None or isinstance(filter_expr, dict):
        return filter_expr
    return {"$tree": repr(filter_expr)}


def _as_tree(filter_expr: FilterInput) -> Combinator:
    if isinstance(filter_expr, Combinator):
        return filter_expr
    return parse_filter(filter_expr)


def _with_any_field(filter_expr: FilterInput, names: Sequence[str]) -> Combinator:
    """``filter_expr`` AND (any of ``names`` exists)."""
    has_field = Combinator(
        "$or",
        tuple(Combinator("$and", (Comparison(name, "$exists", True),)) for name in names),
    )
    return Combinator("$and", (_as_tree(filter_expr), has_field))


def _equality_fields(filter_expr: FilterInput) -> List[Tuple[str, Any]]:
    """Literal ``field == value`` terms at the top level of a filter."""
    return [
        (node.field, node.operand)
        for node in _as_tree(filter_expr).children
        if isinstance(node, Comparison)
        and node.op == "$eq"
        and node.operand is not None
        and not is_operator_object(node.operand)
    ]
