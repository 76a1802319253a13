"""
Optimistic write engine, retry loop and configuration for docbridge.
"""

from docbridge.execution.config import DEFAULT_CONFIG, EngineConfig
from docbridge.execution.engine import DEFAULT_OPTIONS, QueryOptions, WriteEngine
from docbridge.execution.retry import (
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    retry_on_conflict,
)

__all__ = [
    "EngineConfig",
    "DEFAULT_CONFIG",
    "WriteEngine",
    "QueryOptions",
    "DEFAULT_OPTIONS",
    # retry.py exports
    "RetryPolicy",
    "DEFAULT_RETRY_POLICY",
    "retry_on_conflict",
]
