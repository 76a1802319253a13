"""
Read-only schema lookup handed to the engine by the schema boundary.

Example:
    schema = Schema(fields={"score": Types.Float(), "name": Types.String()})
    schema.field_type("score")          # Float(bits=64)
    schema.field_type("address.city")   # resolved through the first segment

    # Class definitions in the {"field": {"type": "Number"}} form
    schema = Schema.from_parse_fields({"score": {"type": "Number"}})
"""

from typing import Dict, Mapping, Optional

from .types import Any, BaseType, Bool, Float, List, ObjectId, String, Timestamp

# Declared type names -> docbridge types
_PARSE_TYPE_MAP = {
    "Number": Float,
    "String": String,
    "Boolean": Bool,
    "Date": Timestamp,
    "Pointer": String,
    "File": Any,
    "Object": Any,
    "GeoPoint": Any,
    "Polygon": Any,
    "Bytes": String,
    "Relation": Any,
}


class Schema:
    """Declared field types of one class."""

    def __init__(self, fields: Optional[Dict[str, BaseType]] = None):
        self.fields: Dict[str, BaseType] = dict(fields or {})

    @classmethod
    def from_parse_fields(cls, fields: Mapping[str, Mapping[str, str]]) -> "Schema":
        """
        Build a schema from ``{"name": {"type": "String"}, ...}`` definitions.

        Unknown type names fall back to ``Any``; ``Array`` becomes ``List(Any())``.
        """
        converted: Dict[str, BaseType] = {}
        for name, definition in fields.items():
            type_name = definition.get("type") if isinstance(definition, Mapping) else None
            if type_name == "Array":
                converted[name] = List(Any())
            elif name == "objectId":
                converted[name] = ObjectId()
            else:
                converted[name] = _PARSE_TYPE_MAP.get(type_name, Any)()
        return cls(converted)

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def field_type(self, path: str) -> Optional[BaseType]:
        """Declared type for ``path``; dotted paths resolve through their first segment."""
        if path in self.fields:
            return self.fields[path]
        return self.fields.get(path.split(".", 1)[0])

    def __repr__(self) -> str:
        return f"Schema({self.fields!r})"
