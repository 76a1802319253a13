"""
Bounded retry loop for optimistic writes.

Single-document writes return ``Signal.RETRY`` when they lose a version race;
the engine never loops on its own. Callers that want "keep trying" semantics
wrap the whole operation:

    new_content = retry_on_conflict(
        lambda: engine.find_one_and_update("Player", {"name": "ann"}, update),
        RetryPolicy(max_attempts=5, backoff_s=0.01),
    )

Each attempt re-runs READ -> TRANSFORM -> CONDITIONAL_WRITE from scratch, so the
update is re-applied to the latest content. Anything other than RETRY
(a document, NOT_FOUND, an exception) ends the loop immediately.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from docbridge.errors import VersionConflictError
from docbridge.signals import RETRY

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to re-run an operation after a version conflict.

    Backoff before attempt n (n >= 2) is ``backoff_s * multiplier ** (n - 2)``.
    """

    max_attempts: int = 5
    backoff_s: float = 0.0
    multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_s < 0:
            raise ValueError("backoff_s cannot be negative")

    def delay_before(self, attempt: int) -> float:
        if attempt <= 1 or self.backoff_s == 0:
            return 0.0
        return self.backoff_s * self.multiplier ** (attempt - 2)


DEFAULT_RETRY_POLICY = RetryPolicy()


def retry_on_conflict(
    operation: Callable[[], T], policy: RetryPolicy = DEFAULT_RETRY_POLICY
) -> T:
    """
    Run ``operation`` until it returns something other than RETRY.

    Args:
        operation: Zero-argument callable performing one full write cycle
        policy: Attempt bound and backoff

    Returns:
        The first non-RETRY result

    Raises:
        VersionConflictError: Every attempt returned RETRY
    """
    for attempt in range(1, policy.max_attempts + 1):
        delay = policy.delay_before(attempt)
        if delay:
            time.sleep(delay)
        result = operation()
        if result is not RETRY:
            return result
        logger.warning(f"Version conflict on attempt {attempt}/{policy.max_attempts}")

    raise VersionConflictError(
        f"Gave up after {policy.max_attempts} conflicting attempts",
        attempts=policy.max_attempts,
    )
