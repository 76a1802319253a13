"""
Error taxonomy for docbridge.

    DocBridgeError
    ├── NotFoundError          read matched nothing on a "must exist" operation
    ├── VersionConflictError   retries exhausted after losing version races
    ├── DuplicateValueError    unique index violated on insert
    ├── TranslationError       malformed filter/update, or inexpressible combination
    └── StoreError             any other failure reported by the native store

Only version conflicts are retryable, and only by re-running the whole
read-transform-write cycle.
"""

import re
from typing import Optional

# StoreError codes shared by every store implementation
DUPLICATE_KEY = 11000
INDEX_EXISTS = 40733


class DocBridgeError(Exception):
    """Base class for docbridge errors."""


class NotFoundError(DocBridgeError):
    """Raised when an operation requires a matching document and none exists."""


class VersionConflictError(DocBridgeError):
    """Raised when a caller-side retry loop runs out of attempts."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class DuplicateValueError(DocBridgeError):
    """Raised when an insert violates a unique index."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class TranslationError(DocBridgeError):
    """Raised when a filter or update expression cannot be translated."""


class StoreError(DocBridgeError):
    """Failure reported by the native document store."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


_DUP_KEY_RE = re.compile(r"dup key:\s*\{\s*\"?([A-Za-z0-9_.$-]+?)\"?\s*:")
_INDEX_NAME_RE = re.compile(r"index:\s*(?:\S*\$)?([A-Za-z0-9_.-]+?)_1\b")


def parse_duplicated_field(message: str) -> Optional[str]:
    """
    Extract the offending field name from a uniqueness diagnostic.

    Understands both the ``dup key: { field: ... }`` form and the
    ``index: field_1`` naming convention.

    Examples:
        >>> parse_duplicated_field('... index: email_1 dup key: { email: "a" }')
        'email'
        >>> parse_duplicated_field("index: username_1")
        'username'
        >>> parse_duplicated_field("connection reset") is None
        True
    """
    if not message:
        return None
    for pattern in (_DUP_KEY_RE, _INDEX_NAME_RE):
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None
