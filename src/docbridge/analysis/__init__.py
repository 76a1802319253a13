"""
Filter and update analysis for docbridge.

Pure functions only; nothing here touches the store.

- expressions: validating parser into Comparison / Combinator / UpdateExpression
- inspector: operator classification
- translator: rich filter -> native filter (or NO_MATCH)
- updates: partial update -> full replacement document
- projection: typed sort specs and key projection
"""

from .expressions import (
    Combinator,
    Comparison,
    UpdateExpression,
    iter_comparisons,
    parse_filter,
    parse_update,
)
from .projection import SortKey, build_sort_spec, project
from .translator import TranslatedFilter, apply_post_filters, translate, wrap_with_sort
from .updates import apply_update

__all__ = [
    "Comparison",
    "Combinator",
    "UpdateExpression",
    "parse_filter",
    "parse_update",
    "iter_comparisons",
    "TranslatedFilter",
    "translate",
    "wrap_with_sort",
    "apply_post_filters",
    "apply_update",
    "SortKey",
    "build_sort_spec",
    "project",
]
