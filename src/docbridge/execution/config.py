"""
Engine configuration for docbridge.

================================================================================
WHAT IS CONFIGURABLE
================================================================================

Most of the engine's behavior is fixed by the write protocol (read, transform,
conditional write, hand RETRY back to the caller). The knobs below only touch
naming and the bulk field-removal pass, the one place where the engine retries
on its own:

    remove_fields(...) runs in rounds:
        round 1: read every document that still has the field, rewrite each
                 one concurrently (removal_workers threads)
        round 2: the documents that lost a version race are read again
        ...
        until no document has the field, or max_removal_rounds is reached

================================================================================
"""

from dataclasses import dataclass
from typing import Optional

# =============================================================================
# ENGINE CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for one StoreContext / WriteEngine pair."""

    # Prepended to every class name to form the native collection name
    collection_prefix: str = ""

    # Thread pool size for per-document rewrites during field removal
    removal_workers: int = 4

    # Upper bound on field-removal rounds; None retries until the field is gone
    max_removal_rounds: Optional[int] = None

    # Create the primary-key index together with each new collection
    create_id_index: bool = True

    def __post_init__(self):
        if self.removal_workers < 1:
            raise ValueError("removal_workers must be at least 1")
        if self.max_removal_rounds is not None and self.max_removal_rounds < 1:
            raise ValueError("max_removal_rounds must be at least 1 (or None)")


DEFAULT_CONFIG = EngineConfig()
