"""
Update transformation for docbridge.

The native store can only replace whole documents, so every partial update is
applied client-side to the content that was read, producing the full
replacement document.

ORDER OF APPLICATION
================================================================================

    1. $unset      remove listed (dotted) fields
    2. $inc        field = current (default 0) + delta
    3. $addToSet   append candidates not already present
    4. $pullAll    drop matching elements
    5. plain       merge remaining fields into the document

The order is fixed, so the result does not depend on how the caller ordered
the keys of the update.

ARRAY ELEMENT IDENTITY
================================================================================

For $addToSet and $pullAll, two objects are "the same element" when their FIRST
keys are equal; the values under those keys are not compared. Scalars compare
by equality. This matches how documents written by earlier releases were
maintained: arrays of single-key objects such as {"role:admin": true}.

    existing = [{"a": 1}, 2]
    $addToSet {"$each": [{"a": 99}, 2, 3]}  ->  [{"a": 1}, 2, 3]

EXAMPLE
================================================================================

    old    = {"a": 1, "b": [1, 2]}
    update = {"$inc": {"a": 5}, "$addToSet": {"b": {"$each": [2, 3]}}}
    result = {"a": 6, "b": [1, 2, 3]}
"""

import logging
from copy import deepcopy
from numbers import Number
from typing import Any, Dict, Union

from docbridge.analysis.expressions import UpdateExpression, parse_update
from docbridge.analysis.paths import MISSING, first_key, get_path, set_path, unset_path
from docbridge.constants import (
    CLASS_PERMISSIONS_FIELD,
    METADATA_FIELD,
    UPDATED_AT_FIELD,
)
from docbridge.errors import TranslationError

logger = logging.getLogger(__name__)

Content = Dict[str, Any]


def apply_update(
    old_content: Content, update: Union[Dict[str, Any], UpdateExpression]
) -> Content:
    """
    Compute the replacement document for ``old_content``.

    Args:
        old_content: Content as read from the store (not modified)
        update: Raw update dict or parsed UpdateExpression

    Returns:
        New content dict

    Raises:
        TranslationError: Malformed update, or an operator applied to a field
            of the wrong type (e.g. $inc on a string)
    """
    expr = parse_update(update)
    content = deepcopy(old_content) if old_content else {}

    if expr.is_field_definition:
        name, declared = expr.field_definition
        return {**content, name: deepcopy(declared)}

    for name in expr.unset:
        unset_path(content, name)

    for name, delta in expr.inc:
        _apply_inc(content, name, delta)

    for name, candidates in expr.add_to_set:
        _apply_add_to_set(content, name, candidates)

    for name, candidates in expr.pull_all:
        _apply_pull_all(content, name, candidates)

    for name, value in expr.assignments:
        _apply_assignment(content, name, value)

    return content


# =============================================================================
# OPERATORS
# =============================================================================


def _apply_inc(content: Content, name: str, delta: Number) -> None:
    current = get_path(content, name, 0)
    if current is None:
        current = 0
    if not isinstance(current, Number) or isinstance(current, bool):
        raise TranslationError(f"Cannot apply $inc to non-numeric field '{name}'")
    set_path(content, name, current + delta)


def _same_element(existing: Any, candidate: Any) -> bool:
    if isinstance(candidate, dict):
        return isinstance(existing, dict) and first_key(existing) == first_key(candidate)
    if isinstance(existing, dict):
        return False
    return existing == candidate


def _target_array(content: Content, name: str, op: str):
    current = get_path(content, name)
    if current is MISSING or current is None:
        return None
    if not isinstance(current, list):
        raise TranslationError(f"Cannot apply {op} to non-array field '{name}'")
    return current


def _apply_add_to_set(content: Content, name: str, candidates) -> None:
    current = _target_array(content, name, "$addToSet")
    array = list(current) if current is not None else []
    for candidate in candidates:
        if not any(_same_element(existing, candidate) for existing in array):
            array.append(deepcopy(candidate))
    set_path(content, name, array)


def _apply_pull_all(content: Content, name: str, candidates) -> None:
    current = _target_array(content, name, "$pullAll")
    if current is None:
        return
    remaining = [
        entry
        for entry in current
        if not any(_same_element(entry, candidate) for candidate in candidates)
    ]
    set_path(content, name, remaining)


def _apply_assignment(content: Content, name: str, value: Any) -> None:
    # An empty object removes the key instead of storing {}
    if isinstance(value, dict) and not value and name != UPDATED_AT_FIELD:
        unset_path(content, name)
        return

    if name == METADATA_FIELD and isinstance(value, dict):
        existing = content.get(METADATA_FIELD)
        if isinstance(existing, dict):
            _merge_metadata(existing, value)
            return

    if "." in name:
        set_path(content, name, deepcopy(value))
        return

    existing = content.get(name)
    if isinstance(existing, dict) and isinstance(value, dict):
        _deep_merge(existing, value)
    else:
        content[name] = deepcopy(value)


def _merge_metadata(existing: Dict[str, Any], update: Dict[str, Any]) -> None:
    for key, value in update.items():
        if key == CLASS_PERMISSIONS_FIELD and key in existing:
            existing[key] = deepcopy(value)
        elif isinstance(existing.get(key), dict) and isinstance(value, dict):
            _deep_merge(existing[key], value)
        else:
            existing[key] = deepcopy(value)


def _deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(target.get(key), dict) and isinstance(value, dict):
            _deep_merge(target[key], value)
        else:
            target[key] = deepcopy(value)
