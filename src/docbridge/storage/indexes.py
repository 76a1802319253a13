"""
Per-collection cache of known index names.

Several request threads may create or drop indexes on the same collection at
once, so the registry is guarded by a lock and readers only ever see an
immutable snapshot.
"""

import threading
from typing import Iterable, Tuple

from docbridge.constants import ID_INDEX_NAME


class IndexRegistry:
    """
    Thread-safe set of index names for one collection.

    The primary-key index is always listed.

    Example:
        >>> registry = IndexRegistry()
        >>> registry.add("email_1")
        >>> registry.snapshot()
        ('_id_', 'email_1')
    """

    def __init__(self, names: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._names = [ID_INDEX_NAME]
        for name in names:
            if name not in self._names:
                self._names.append(name)

    def add(self, name: str) -> None:
        with self._lock:
            if name not in self._names:
                self._names.append(name)

    def remove(self, name: str) -> None:
        # The primary-key index cannot be dropped
        if name == ID_INDEX_NAME:
            return
        with self._lock:
            if name in self._names:
                self._names.remove(name)

    def snapshot(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._names)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)
