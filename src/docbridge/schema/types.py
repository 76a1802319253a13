"""
Declared field types for docbridge schemas.

The schema boundary tells the engine how a class declares its fields. docbridge
uses that for two things:

- Sort typing: the native store orders values either numerically or as
  strings, so every sort key carries a datatype derived from the declared
  type (``is_numeric``).
- Result frames: declared types map to Arrow types when find results are
  turned into a pyarrow Table / DataFrame.

Supported Types:
- Primitives: String, Int, Float, Bool, Timestamp, ObjectId
- Complex: Struct (nested documents), List (arrays)
- Any: values with no fixed shape, carried as JSON text in frames
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import pyarrow as pa


class BaseType(ABC):
    """Base class for all docbridge types."""

    @abstractmethod
    def to_arrow(self) -> pa.DataType:
        """Convert to PyArrow data type."""
        pass

    @property
    def is_numeric(self) -> bool:
        """True when the native store should order this field as a number."""
        arrow_type = self.to_arrow()
        return pa.types.is_integer(arrow_type) or pa.types.is_floating(arrow_type)

    def to_arrow_value(self, value):
        """Coerce a stored value into something pyarrow accepts for this type."""
        return value

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"

    def __eq__(self, other) -> bool:
        """Compare types for equality."""
        return isinstance(other, self.__class__)

    def __hash__(self) -> int:
        """Make types hashable for use in sets/dicts."""
        return hash(self.__class__.__name__)


class String(BaseType):
    """String type."""

    def to_arrow(self) -> pa.DataType:
        return pa.string()

    def __eq__(self, other) -> bool:
        return isinstance(other, String)


@dataclass(frozen=True)
class Int(BaseType):
    """Integer type."""
    bits: int = 64

    def to_arrow(self) -> pa.DataType:
        return pa.int64() if self.bits == 64 else pa.int32()
    def __post_init__(self):
        if self.bits not in (32, 64):
            raise ValueError("Int bits must be either 32 or 64")


@dataclass(frozen=True)
class Float(BaseType):
    """Floating-point type."""
    bits: int = 64

    def to_arrow(self) -> pa.DataType:
        return pa.float64() if self.bits == 64 else pa.float32()
    def __post_init__(self):
        if self.bits not in (32, 64):
            raise ValueError("Float bits must be either 32 or 64")


class Bool(BaseType):
    """Boolean type."""

    def to_arrow(self) -> pa.DataType:
        return pa.bool_()

    def __eq__(self, other) -> bool:
        return isinstance(other, Bool)


@dataclass(frozen=True)
class Timestamp(BaseType):
    """Timestamp type."""
    unit: str = "ms"
    tz: Optional[str] = "UTC"

    def to_arrow(self) -> pa.DataType:
        return pa.timestamp(self.unit, tz=self.tz)
    def __post_init__(self):
        if self.unit not in ("s", "ms", "us", "ns"):
            raise ValueError("Timestamp unit must be one of 's', 'ms', 'us', 'ns'")


class ObjectId(BaseType):
    """Identifier type (bson ObjectId or its hex string), stored as string."""

    def to_arrow(self) -> pa.DataType:
        return pa.string()

    def to_arrow_value(self, value):
        return None if value is None else str(value)

    def __eq__(self, other) -> bool:
        return isinstance(other, ObjectId)


class Any(BaseType):
    """
    Polymorphic type - can hold any JSON-like value.

    Frames carry these values as JSON text so heterogeneous columns survive the
    trip through Arrow.
    """

    def to_arrow(self) -> pa.DataType:
        return pa.string()

    def to_arrow_value(self, value):
        if value is None:
            return None
        return json.dumps(value, sort_keys=True, default=str)

    def __eq__(self, other) -> bool:
        return isinstance(other, Any)


class Struct(BaseType):
    """Nested struct type."""

    def __init__(self, fields: Dict[str, BaseType]):
        """
        Args:
            fields: Dict mapping field name to type
        """
        self.fields = fields

    def to_arrow(self) -> pa.DataType:
        return pa.struct([
            (name, field_type.to_arrow())
            for name, field_type in self.fields.items()
        ])

    def to_arrow_value(self, value):
        if not isinstance(value, dict):
            return None
        return {
            name: field_type.to_arrow_value(value.get(name))
            for name, field_type in self.fields.items()
        }

    def __repr__(self) -> str:
        field_str = ", ".join(f"{k}: {v}" for k, v in self.fields.items())
        return f"Struct({{{field_str}}})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, Struct):
            return False
        if set(self.fields.keys()) != set(other.fields.keys()):
            return False
        return all(self.fields[k] == other.fields[k] for k in self.fields)

    def __hash__(self) -> int:
        return hash(("Struct", tuple(sorted(self.fields))))


class List(BaseType):
    """List type."""

    def __init__(self, element_type: BaseType):
        """
        Args:
            element_type: Type of list elements
        """
        self.element_type = element_type

    def to_arrow(self) -> pa.DataType:
        return pa.list_(self.element_type.to_arrow())

    def to_arrow_value(self, value):
        if value is None:
            return None
        if not isinstance(value, list):
            value = [value]
        return [self.element_type.to_arrow_value(v) for v in value]

    def __repr__(self) -> str:
        return f"List({self.element_type})"

    def __eq__(self, other) -> bool:
        return isinstance(other, List) and self.element_type == other.element_type

    def __hash__(self) -> int:
        return hash(("List", self.element_type))
