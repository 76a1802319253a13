"""
Validated expression trees for filters and updates.

Callers hand docbridge Mongo-style dictionaries. They are parsed once, at the
boundary, into a closed set of node types; the translator and the update
transformer only ever dispatch on those node types, never on raw key names.

FILTERS
================================================================================

INPUT:
    {
        "score": {"$gte": 10, "$ne": None},
        "$or": [{"team": "red"}, {"team": None}],
    }

OUTPUT:
    Combinator("$and", (
        Comparison("score", "$gte", 10),
        Comparison("score", "$ne", None),
        Combinator("$or", (
            Combinator("$and", (Comparison("team", "$eq", "red"),)),
            Combinator("$and", (Comparison("team", "$eq", None),)),
        )),
    ))

A top-level dict is always an implicit $and of its entries, in insertion
order. An empty dict parses to an empty $and, which later translates to {}.

UPDATES
================================================================================

    {"$inc": {"a": 5}, "$addToSet": {"b": {"$each": [2, 3]}}, "name": "x"}

parses to an UpdateExpression whose operator groups are kept apart, so the
transformer can apply them in a fixed order no matter how the caller ordered
the keys.
"""

from dataclasses import dataclass, field
from numbers import Number
from typing import Any, Dict, Optional, Tuple, Union

from docbridge.analysis.inspector import (
    COMBINATORS,
    FILTER_OPERATORS,
    LIST_OPERATORS,
    UPDATE_OPERATORS,
    is_operator,
    is_operator_object,
)
from docbridge.constants import FIELD_ALIASES, FIELD_NAME_KEY, FIELD_TYPE_KEY
from docbridge.errors import TranslationError

# =============================================================================
# FILTER NODES
# =============================================================================


@dataclass(frozen=True)
class Comparison:
    """
    One field predicate.

    Example:
        Comparison(field="score", op="$gt", operand=10)
        Comparison(field="name", op="$regex", operand="^a", options="i")
    """

    field: str
    op: str
    operand: Any
    options: Optional[str] = None


@dataclass(frozen=True)
class Combinator:
    """Boolean combination of child nodes; ``op`` is ``$and`` or ``$or``."""

    op: str
    children: Tuple["FilterNode", ...] = ()


FilterNode = Union[Comparison, Combinator]


def parse_filter(raw: Optional[Dict[str, Any]]) -> Combinator:
    """
    Parse a Mongo-style filter dict into a filter tree.

    Args:
        raw: Filter dictionary (``None`` is treated as ``{}``)

    Returns:
        Root ``$and`` combinator

    Raises:
        TranslationError: Unsupported operator, wrong operand shape, or a dict
            mixing operators with plain fields
    """
    if raw is None:
        return Combinator("$and")
    if not isinstance(raw, dict):
        raise TranslationError(f"Filter must be a dict, got {type(raw).__name__}")

    children = []
    for key, value in raw.items():
        if key in COMBINATORS:
            children.append(_parse_combinator(key, value))
        elif is_operator(key):
            raise TranslationError(f"Unsupported top-level operator: {key}")
        else:
            children.extend(_parse_field(key, value))
    return Combinator("$and", tuple(children))


def _parse_combinator(op: str, value: Any) -> Combinator:
    if not isinstance(value, (list, tuple)) or not value:
        raise TranslationError(f"{op} requires a non-empty list of filters")
    return Combinator(op, tuple(parse_filter(item) for item in value))


def _parse_field(name: str, value: Any) -> Tuple[Comparison, ...]:
    if not is_operator_object(value):
        if isinstance(value, dict) and any(is_operator(k) for k in value):
            raise TranslationError(
                f"Filter on '{name}' mixes operators and plain fields: {sorted(value)}"
            )
        return (Comparison(name, "$eq", value),)

    options = value.get("$options")
    if options is not None and "$regex" not in value:
        raise TranslationError(f"$options on '{name}' requires $regex")

    comparisons = []
    for op, operand in value.items():
        if op == "$options":
            continue
        if op not in FILTER_OPERATORS:
            raise TranslationError(f"Unsupported operator {op} on '{name}'")
        if op in LIST_OPERATORS and not isinstance(operand, (list, tuple)):
            raise TranslationError(f"{op} on '{name}' requires a list")
        if op == "$exists":
            if not isinstance(operand, (bool, int)):
                raise TranslationError(f"$exists on '{name}' requires true or false")
            operand = bool(operand)
        if op in LIST_OPERATORS:
            operand = list(operand)
        comparisons.append(
            Comparison(name, op, operand, options if op == "$regex" else None)
        )
    return tuple(comparisons)


def iter_comparisons(node: FilterNode):
    """Yield every Comparison in the tree, depth first."""
    if isinstance(node, Comparison):
        yield node
        return
    for child in node.children:
        yield from iter_comparisons(child)


# =============================================================================
# UPDATE EXPRESSION
# =============================================================================


@dataclass(frozen=True)
class UpdateExpression:
    """
    Parsed update, one slot per operator group.

    ``field_definition`` is set only for the ``{fieldName, theFieldType}``
    shape, which bypasses every other group.
    """

    assignments: Tuple[Tuple[str, Any], ...] = ()
    unset: Tuple[str, ...] = ()
    inc: Tuple[Tuple[str, Any], ...] = ()
    add_to_set: Tuple[Tuple[str, Tuple[Any, ...]], ...] = ()
    pull_all: Tuple[Tuple[str, Tuple[Any, ...]], ...] = ()
    field_definition: Optional[Tuple[str, Any]] = field(default=None)

    @property
    def is_field_definition(self) -> bool:
        return self.field_definition is not None

    def without_unset(self) -> "UpdateExpression":
        """Same update with the ``$unset`` group cleared."""
        return UpdateExpression(
            assignments=self.assignments,
            inc=self.inc,
            add_to_set=self.add_to_set,
            pull_all=self.pull_all,
            field_definition=self.field_definition,
        )


def parse_update(raw: Union[Dict[str, Any], UpdateExpression]) -> UpdateExpression:
    """
    Parse a Mongo-style update dict.

    Args:
        raw: Update dictionary, or an already-parsed expression

    Returns:
        UpdateExpression

    Raises:
        TranslationError: Unknown operator or malformed operand

    Example:
        >>> parse_update({"$inc": {"a": 5}, "name": "x"}).inc
        (('a', 5),)
    """
    if isinstance(raw, UpdateExpression):
        return raw
    if not isinstance(raw, dict):
        raise TranslationError(f"Update must be a dict, got {type(raw).__name__}")

    if set(raw) == {FIELD_NAME_KEY, FIELD_TYPE_KEY}:
        return UpdateExpression(
            field_definition=(raw[FIELD_NAME_KEY], raw[FIELD_TYPE_KEY])
        )

    assignments = []
    unset: Tuple[str, ...] = ()
    inc = []
    add_to_set = []
    pull_all = []

    for key, value in raw.items():
        if not is_operator(key):
            assignments.append((FIELD_ALIASES.get(key, key), value))
            continue
        if key not in UPDATE_OPERATORS:
            raise TranslationError(f"Unsupported update operator: {key}")
        if key == "$unset":
            unset = _parse_unset(value)
            continue
        if not isinstance(value, dict):
            raise TranslationError(f"{key} requires a dict of fields")
        if key == "$set":
            assignments.extend((FIELD_ALIASES.get(k, k), v) for k, v in value.items())
        elif key == "$inc":
            for name, delta in value.items():
                if not _is_number(delta):
                    raise TranslationError(f"$inc on '{name}' requires a number")
                inc.append((name, delta))
        elif key == "$addToSet":
            for name, spec in value.items():
                add_to_set.append((name, _parse_each(name, spec)))
        elif key == "$pullAll":
            for name, values in value.items():
                if not isinstance(values, (list, tuple)):
                    raise TranslationError(f"$pullAll on '{name}' requires a list")
                pull_all.append((name, tuple(values)))

    return UpdateExpression(
        assignments=tuple(assignments),
        unset=unset,
        inc=tuple(inc),
        add_to_set=tuple(add_to_set),
        pull_all=tuple(pull_all),
    )


def _parse_unset(value: Any) -> Tuple[str, ...]:
    if isinstance(value, dict):
        return tuple(value.keys())
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    if isinstance(value, str):
        return (value,)
    raise TranslationError("$unset requires a dict or a list of field names")


def _parse_each(name: str, spec: Any) -> Tuple[Any, ...]:
    if isinstance(spec, dict) and any(is_operator(k) for k in spec):
        if set(spec) != {"$each"}:
            raise TranslationError(f"$addToSet on '{name}' only supports $each")
        if not isinstance(spec["$each"], (list, tuple)):
            raise TranslationError(f"$each on '{name}' requires a list")
        return tuple(spec["$each"])
    return (spec,)


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)
