"""
Schema system for docbridge.

Provides declared field types used for sort typing and result frames.
"""

from .types import (
    BaseType,
    String,
    Int,
    Float,
    Bool,
    Timestamp,
    ObjectId,
    Any,
    Struct,
    List,
)
from .schema import Schema

# Import types module for Types.X syntax
from . import types as Types

__all__ = [
    "Schema",
    # Types module for Types.X syntax
    "Types",
    # Individual type classes
    "BaseType",
    "String",
    "Int",
    "Float",
    "Bool",
    "Timestamp",
    "ObjectId",
    "Any",
    "Struct",
    "List"
]
