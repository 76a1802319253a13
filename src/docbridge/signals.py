"""
Sentinels returned by the translator and the write engine.

They are distinct from documents, from ``None`` and from each other, so callers
can branch on identity:

    result = engine.find_one_and_update("Player", {"name": "ann"}, update)
    if result is Signal.RETRY:
        ...  # lost the version race, re-run the whole operation
    elif result is Signal.NOT_FOUND:
        ...
"""

from enum import Enum


class Signal(Enum):
    """Non-document outcomes of a translation or a write cycle."""

    # Conditional replace/delete lost the version race
    RETRY = "retry"
    # The read step matched zero documents
    NOT_FOUND = "not_found"
    # The filter can never match; the store is not contacted
    NO_MATCH = "no_match"

    def __repr__(self) -> str:
        return f"Signal.{self.name}"


RETRY = Signal.RETRY
NOT_FOUND = Signal.NOT_FOUND
NO_MATCH = Signal.NO_MATCH
