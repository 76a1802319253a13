"""
Operator classification for docbridge.

Every operator that may appear in a filter or update is classified here. The
parser consults these sets; anything not listed is rejected with a
TranslationError before any I/O happens.

================================================================================
FILTER OPERATOR CATEGORIES
================================================================================

    NATIVE (7 operators)
        The native store evaluates these literally once their operands are
        well-formed: $eq, $gt, $gte, $lt, $lte, $regex, $options

    REWRITTEN (5 operators)
        The native store accepts them, but not for every operand. The
        translator rewrites the edge cases:
        - $ne:     {$ne: null} needs an explicit existence check
        - $in:     [] is unsatisfiable, null members need an absent/null branch
        - $nin:    [] is no constraint at all
        - $all:    [] is unsatisfiable, object members become path clauses
        - $exists: passes through, but is also emitted by the rewrites above

    DEFERRED (1 operator)
        No native predicate exists; evaluated client-side after the read:
        - $containedBy

    COMBINATORS (2 operators)
        $and, $or

================================================================================
UPDATE OPERATOR CATEGORIES
================================================================================

    Applied in a fixed order regardless of how they appear in the update:

        $unset -> $inc -> $addToSet -> $pullAll -> plain fields

    $set is accepted and folded into the plain fields.
================================================================================
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "NATIVE",
    "REWRITTEN",
    "DEFERRED",
    "COMBINATORS",
    "FILTER_OPERATORS",
    "LIST_OPERATORS",
    "UPDATE_OPERATORS",
    "UPDATE_ORDER",
    "is_operator",
    "is_operator_object",
]

# =============================================================================
# FILTER OPERATORS
# =============================================================================

NATIVE: frozenset[str] = frozenset(
    {
        # ── Comparison ──────────────────────────────────────────────────────────
        # {"score": {"$gt": 10}} is understood as written.
        "$eq",  # {"status": {"$eq": "active"}}  - equals (null handled separately)
        "$gt",  # {"value": {"$gt": 100}}        - greater than
        "$gte",  # {"value": {"$gte": 100}}       - greater or equal
        "$lt",  # {"value": {"$lt": 0}}          - less than
        "$lte",  # {"value": {"$lte": 100}}       - less or equal
        # ── Pattern ─────────────────────────────────────────────────────────────
        "$regex",  # {"name": {"$regex": "^sensor_"}}
        "$options",  # Modifier for $regex
    }
)

REWRITTEN: frozenset[str] = frozenset(
    {
        "$ne",  # {"score": {"$ne": null}} -> exists AND ne null
        "$in",  # {"tag": {"$in": []}}     -> no results
        "$nin",  # {"tag": {"$nin": []}}    -> {}
        "$all",  # {"items": {"$all": [{"k": 1}]}} -> {"items[*].k": 1}
        "$exists",
    }
)

DEFERRED: frozenset[str] = frozenset(
    {
        # {"tags": {"$containedBy": ["a", "b"]}} - every element of tags is a or b
        "$containedBy",
    }
)

COMBINATORS: frozenset[str] = frozenset({"$and", "$or"})

FILTER_OPERATORS: frozenset[str] = NATIVE | REWRITTEN | DEFERRED

# Operators whose operand must be a list
LIST_OPERATORS: frozenset[str] = frozenset({"$in", "$nin", "$all", "$containedBy"})

# =============================================================================
# UPDATE OPERATORS
# =============================================================================

UPDATE_ORDER: tuple[str, ...] = ("$unset", "$inc", "$addToSet", "$pullAll")

UPDATE_OPERATORS: frozenset[str] = frozenset(UPDATE_ORDER) | {"$set"}


def is_operator(key: Any) -> bool:
    """True for ``$``-prefixed keys."""
    return isinstance(key, str) and key.startswith("$")


def is_operator_object(value: Any) -> bool:
    """
    True for a non-empty dict whose keys are all operators.

    Examples:
        >>> is_operator_object({"$gt": 1, "$lt": 5})
        True
        >>> is_operator_object({"city": "Oslo"})
        False
        >>> is_operator_object({})
        False
    """
    return isinstance(value, dict) and bool(value) and all(is_operator(k) for k in value)
