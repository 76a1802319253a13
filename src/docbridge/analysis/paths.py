"""
Dotted-path access into document content.

A segment that is an integer indexes into a list parent, so ``"scores.0"``
addresses the first element of ``scores``. Any other segment is a dict key.
"""

from typing import Any, Dict

from docbridge.errors import TranslationError


class _Missing:
    """Marker for an absent path, distinct from an explicit ``None``."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def _index(container: list, part: str):
    """List position for ``part``, or None when it is not an in-range integer."""
    if not part.isdigit():
        return None
    position = int(part)
    return position if position < len(container) else None


def _child(cur: Any, part: str) -> Any:
    if isinstance(cur, dict):
        return cur.get(part, MISSING)
    if isinstance(cur, list):
        position = _index(cur, part)
        return MISSING if position is None else cur[position]
    return MISSING


def get_path(doc: Dict[str, Any], dotted_key: str, default: Any = MISSING) -> Any:
    cur: Any = doc
    for part in dotted_key.split("."):
        cur = _child(cur, part)
        if cur is MISSING:
            return default
    return cur


def _assign(cur: Any, part: str, value: Any, dotted_key: str) -> None:
    if isinstance(cur, dict):
        cur[part] = value
        return
    if not part.isdigit():
        raise TranslationError(f"Cannot set '{dotted_key}': '{part}' is not an array index")
    position = int(part)
    # Mongo pads with nulls up to the requested position
    while len(cur) <= position:
        cur.append(None)
    cur[position] = value


def set_path(doc: Dict[str, Any], dotted_key: str, value: Any) -> None:
    """
    Set ``value`` at ``dotted_key``, creating absent (or null) parents as dicts.

    Raises:
        TranslationError: A parent on the path is a scalar, or a list is
            addressed with a non-integer segment
    """
    parts = dotted_key.split(".")
    cur: Any = doc
    for part in parts[:-1]:
        child = _child(cur, part)
        if child is MISSING or child is None:
            child = {}
            _assign(cur, part, child, dotted_key)
        elif not isinstance(child, (dict, list)):
            raise TranslationError(
                f"Cannot set '{dotted_key}': '{part}' holds a {type(child).__name__}"
            )
        cur = child
    _assign(cur, parts[-1], value, dotted_key)


def unset_path(doc: Dict[str, Any], dotted_key: str) -> bool:
    """
    Remove ``dotted_key``; returns whether anything was removed.

    An array element is replaced by null rather than removed, so the positions
    of the other elements do not shift.
    """
    parts = dotted_key.split(".")
    cur: Any = doc
    for part in parts[:-1]:
        cur = _child(cur, part)
        if not isinstance(cur, (dict, list)):
            return False
    last = parts[-1]
    if isinstance(cur, list):
        position = _index(cur, last)
        if position is None:
            return False
        cur[position] = None
        return True
    return cur.pop(last, MISSING) is not MISSING


def first_key(value: Dict[str, Any]) -> Any:
    """First key of a dict in insertion order, or MISSING when empty."""
    return next(iter(value), MISSING)
