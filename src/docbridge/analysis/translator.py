"""
Filter translation for docbridge.

================================================================================
DATA FLOW - RICH FILTER TO NATIVE FILTER
================================================================================

The native store runs filter-by-example queries, but several operators of the
rich algebra either mean something different there or are rejected outright.
translate() rewrites the parsed filter tree bottom-up so that every node left
is one the store accepts literally.

EXAMPLE TRANSFORMATION:
--------------------------------------------------------------------------------

INPUT FILTER:
    {
        "owner": None,
        "$or": [{"_rperm": {"$in": ["*", "u1"]}}, {"_rperm": None}],
        "tags": {"$containedBy": ["a", "b"]},
    }

STEP 1: parse_filter() builds the tree (implicit $and of the three entries)

STEP 2: each Comparison becomes a native fragment
    owner: None           -> {"$or": [{"owner": {"$exists": False}}, {"owner": None}]}
    _rperm branches       -> translated one by one, $or passed through
    tags $containedBy     -> {}   (deferred to a post-filter)

STEP 3: fragments are conjoined; two "$or" keys collide, so they are wrapped:

    OUTPUT:
    {
        "$and": [
            {"$or": [{"owner": {"$exists": False}}, {"owner": None}]},
            {"$or": [
                {"_rperm": {"$in": ["*", "u1"]}},
                {"$or": [{"_rperm": {"$exists": False}}, {"_rperm": None}]},
            ]},
        ]
    }
    post_filters = (Comparison("tags", "$containedBy", ["a", "b"]),)

SHORT-CIRCUITS:
--------------------------------------------------------------------------------
    {"tags": {"$in": []}}   -> NO_MATCH   (store is never contacted)
    {"tags": {"$all": []}}  -> NO_MATCH
    {"tags": {"$nin": []}}  -> {}         (no constraint)

SORTING:
--------------------------------------------------------------------------------
    With a sort spec the native filter is wrapped:

    {"$query": <filter>,
     "$orderby": [{"path": "score", "datatype": "number", "order": "desc"}]}
================================================================================
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from docbridge.analysis.expressions import (
    Combinator,
    Comparison,
    FilterNode,
    parse_filter,
)
from docbridge.analysis.inspector import is_operator_object
from docbridge.analysis.paths import MISSING, get_path
from docbridge.analysis.projection import SortKey
from docbridge.constants import ARRAY_MEMBER_SEPARATOR
from docbridge.errors import TranslationError
from docbridge.signals import NO_MATCH, Signal

NativeFilter = Dict[str, Any]

# Fragment meaning "no constraint"
_ALWAYS = None


@dataclass(frozen=True)
class TranslatedFilter:
    """
    Result of a successful translation.

    Attributes:
        native: Filter the store can execute as-is
        post_filters: Deferred $containedBy clauses, applied to read results
        source: The parsed original filter, threaded through to the read
    """

    native: NativeFilter
    post_filters: Tuple[Comparison, ...] = ()
    source: Optional[Combinator] = None

    @property
    def is_unconstrained(self) -> bool:
        return not self.native


def translate(
    filter_expr: Union[Dict[str, Any], Combinator, None],
    sort: Optional[Sequence[SortKey]] = None,
) -> Union[TranslatedFilter, Signal]:
    """
    Rewrite a rich filter into a native one.

    Args:
        filter_expr: Raw filter dict or an already-parsed tree
        sort: Optional sort spec; wraps the result in $query/$orderby

    Returns:
        TranslatedFilter, or ``NO_MATCH`` when the filter is unsatisfiable

    Raises:
        TranslationError: Malformed filter, or $containedBy under $or

    Examples:
        >>> translate({"score": {"$ne": None}}).native
        {'$and': [{'score': {'$exists': True}}, {'score': {'$ne': None}}]}
        >>> translate({"tags": {"$in": []}})
        Signal.NO_MATCH
    """
    root = filter_expr if isinstance(filter_expr, Combinator) else parse_filter(filter_expr)
    post_filters = tuple(_collect_deferred(root, under_or=False))

    native = _translate_node(root)
    if native is NO_MATCH:
        return NO_MATCH
    if native is _ALWAYS:
        native = {}
    if sort:
        native = wrap_with_sort(native, sort)
    return TranslatedFilter(native=native, post_filters=post_filters, source=root)


def wrap_with_sort(native: NativeFilter, sort: Iterable[SortKey]) -> NativeFilter:
    """Wrap a native filter with the store's $query/$orderby envelope."""
    return {
        "$query": native,
        "$orderby": [
            {
                "path": key.path,
                "datatype": key.datatype,
                "order": "desc" if key.direction == -1 else "asc",
            }
            for key in sort
        ],
    }


def apply_post_filters(
    documents: Iterable[Dict[str, Any]], post_filters: Sequence[Comparison]
) -> List[Dict[str, Any]]:
    """
    Drop documents rejected by deferred clauses.

    A $containedBy clause keeps a document when every element of the target
    array is in the operand. Absent or null fields hold no elements and are
    kept; a scalar is treated as a one-element array.
    """
    documents = list(documents)
    for clause in post_filters:
        allowed = clause.operand
        documents = [doc for doc in documents if _contained_by(doc, clause.field, allowed)]
    return documents


def _contained_by(doc: Dict[str, Any], field: str, allowed: Sequence[Any]) -> bool:
    value = get_path(doc, field)
    if value is MISSING or value is None:
        return True
    values = value if isinstance(value, list) else [value]
    return all(item in allowed for item in values)


# =============================================================================
# TREE WALK
# =============================================================================


def _collect_deferred(node: FilterNode, under_or: bool):
    if isinstance(node, Comparison):
        if node.op == "$containedBy":
            if under_or:
                raise TranslationError(
                    f"$containedBy on '{node.field}' cannot be combined with $or"
                )
            yield node
        return
    for child in node.children:
        yield from _collect_deferred(child, under_or or node.op == "$or")


def _translate_node(node: FilterNode):
    """Return a native fragment, ``_ALWAYS`` (no constraint) or ``NO_MATCH``."""
    if isinstance(node, Comparison):
        return _translate_comparison(node)

    if node.op == "$and":
        parts = []
        for child in node.children:
            fragment = _translate_node(child)
            if fragment is NO_MATCH:
                return NO_MATCH
            if fragment is _ALWAYS or fragment == {}:
                continue
            parts.append(fragment)
        return _conjoin(parts)

    # $or: children are translated individually and passed through
    branches = []
    for child in node.children:
        fragment = _translate_node(child)
        if fragment is NO_MATCH:
            continue
        if fragment is _ALWAYS or fragment == {}:
            return _ALWAYS
        branches.append(fragment)
    if not branches:
        return NO_MATCH
    return {"$or": branches}


def _conjoin(parts: List[NativeFilter]):
    """
    Combine conjunctive fragments into one filter.

    Fragments with disjoint keys are merged into a single dict; operator dicts
    on the same field merge when their operators differ. Any other collision
    (two $or groups, the same field twice) wraps everything in one $and.
    """
    if not parts:
        return _ALWAYS
    merged: NativeFilter = {}
    for part in parts:
        for key, value in part.items():
            if key not in merged:
                merged[key] = value
                continue
            existing = merged[key]
            if (
                not key.startswith("$")
                and is_operator_object(existing)
                and is_operator_object(value)
                and not set(existing) & set(value)
            ):
                merged[key] = {**existing, **value}
                continue
            return {"$and": _flatten_and(parts)}
    return merged


def _flatten_and(parts: List[NativeFilter]) -> List[NativeFilter]:
    flat = []
    for part in parts:
        if set(part) == {"$and"}:
            flat.extend(item for item in part["$and"] if item)
        else:
            flat.append(part)
    return flat


# =============================================================================
# COMPARISONS
# =============================================================================


def _null_equality(field: str) -> NativeFilter:
    # The store does not treat "absent" and "null" as equal
    return {"$or": [{field: {"$exists": False}}, {field: None}]}


def _translate_comparison(c: Comparison):
    field, op, operand = c.field, c.op, c.operand

    if op == "$eq":
        if operand is None:
            return _null_equality(field)
        if isinstance(operand, dict):
            return {field: {"$eq": operand}}
        return {field: operand}

    if op == "$ne":
        if operand is None:
            return {"$and": [{field: {"$exists": True}}, {field: {"$ne": None}}]}
        return {field: {"$ne": operand}}

    if op == "$in":
        if not operand:
            return NO_MATCH
        if any(v is None for v in operand):
            present = [v for v in operand if v is not None]
            if not present:
                return _null_equality(field)
            return {
                "$or": [
                    {field: {"$in": present}},
                    {field: None},
                    {field: {"$exists": False}},
                ]
            }
        return {field: {"$in": operand}}

    if op == "$nin":
        if not operand:
            return _ALWAYS
        return {field: {"$nin": operand}}

    if op == "$all":
        return _translate_all(field, operand)

    if op == "$containedBy":
        return _ALWAYS

    if op == "$regex" and c.options:
        return {field: {"$regex": operand, "$options": c.options}}

    return {field: {op: operand}}


def _translate_all(field: str, operand: List[Any]):
    if not operand or operand[0] is None:
        return NO_MATCH
    if any(isinstance(v, dict) and not v for v in operand):
        return NO_MATCH

    objects = [v for v in operand if isinstance(v, dict)]
    if not objects:
        return {field: {"$all": operand}}

    clauses: List[NativeFilter] = []
    for obj in objects:
        if is_operator_object(obj):
            clauses.append({field: obj})
            continue
        for key, value in obj.items():
            clauses.append({f"{field}{ARRAY_MEMBER_SEPARATOR}{key}": value})
    scalars = [v for v in operand if not isinstance(v, dict)]
    if scalars:
        clauses.append({field: {"$all": scalars}})
    return {"$and": clauses}
