"""
Sort and projection adaptation.

Sort: the caller declares ``{"field": 1 | -1}``; the native store also needs to
know whether to order each path numerically or as text. The datatype comes from
the schema: numeric declared types sort as ``"number"``, everything else
(including undeclared fields) as ``"string"``.

Projection: the native read always returns whole documents. Keys the caller did
not ask for are stripped afterwards, except the bookkeeping fields downstream
consumers rely on (timestamps, identifier, read/write permission lists).
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from docbridge.constants import (
    ALWAYS_KEPT_FIELDS,
    PERMISSION_FIELDS,
    SORT_NUMBER,
    SORT_STRING,
)
from docbridge.errors import TranslationError
from docbridge.schema import Schema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SortKey:
    """One ordering term: path, direction (1 / -1) and native datatype."""

    path: str
    direction: int
    datatype: str = SORT_STRING


SortSpec = Tuple[SortKey, ...]


def build_sort_spec(
    sort: Optional[Mapping[str, int]], schema: Optional[Schema] = None
) -> SortSpec:
    """
    Build the typed sort spec for a caller's sort map.

    Args:
        sort: Ordered mapping of field to 1 (ascending) or -1 (descending)
        schema: Declared field types; undeclared fields sort as strings

    Returns:
        Tuple of SortKey, empty when there is nothing to sort on

    Example:
        >>> schema = Schema({"score": Float()})
        >>> build_sort_spec({"score": -1, "name": 1}, schema)
        (SortKey(path='score', direction=-1, datatype='number'),
         SortKey(path='name', direction=1, datatype='string'))
    """
    if not sort:
        return ()
    keys = []
    for path, direction in sort.items():
        if direction not in (1, -1):
            raise TranslationError(f"Sort direction for '{path}' must be 1 or -1")
        datatype = SORT_STRING
        if schema is not None:
            declared = schema.field_type(path)
            if declared is not None and declared.is_numeric:
                datatype = SORT_NUMBER
        keys.append(SortKey(path=path, direction=direction, datatype=datatype))
    return tuple(keys)


def project(
    documents: Iterable[Dict[str, Any]], keys: Optional[Iterable[str]]
) -> List[Dict[str, Any]]:
    """
    Strip content keys that were not requested.

    ``keys=None`` means "everything"; an empty list keeps only the bookkeeping
    and permission fields. Dotted keys keep their top-level field.
    """
    documents = list(documents)
    if keys is None:
        return documents

    kept = {key.split(".", 1)[0] for key in keys}
    kept |= ALWAYS_KEPT_FIELDS | PERMISSION_FIELDS
    logger.debug(f"Projecting results onto {sorted(kept)}")
    return [{k: v for k, v in doc.items() if k in kept} for doc in documents]
