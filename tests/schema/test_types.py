"""
Tests for docbridge.schema (types and Schema lookup).
"""

import json

import pyarrow as pa
import pytest
from bson import ObjectId as BsonObjectId

from docbridge.schema import Schema, Types
from docbridge.schema.types import Any, Bool, Float, Int, List, ObjectId, String, Struct, Timestamp


class TestArrowTypes:
    """Each type maps to a pyarrow type."""

    def test_primitives(self):
        assert String().to_arrow() == pa.string()
        assert Int().to_arrow() == pa.int64()
        assert Int(bits=32).to_arrow() == pa.int32()
        assert Float().to_arrow() == pa.float64()
        assert Bool().to_arrow() == pa.bool_()
        assert Timestamp().to_arrow() == pa.timestamp("ms", tz="UTC")

    def test_complex(self):
        assert List(String()).to_arrow() == pa.list_(pa.string())
        assert Struct({"wins": Int()}).to_arrow() == pa.struct([("wins", pa.int64())])

    def test_invalid_bits(self):
        with pytest.raises(ValueError):
            Int(bits=16)
        with pytest.raises(ValueError):
            Float(bits=8)

    def test_invalid_timestamp_unit(self):
        with pytest.raises(ValueError):
            Timestamp(unit="h")


class TestIsNumeric:
    @pytest.mark.parametrize("type_", [Int(), Int(bits=32), Float(), Float(bits=32)])
    def test_numeric(self, type_):
        assert type_.is_numeric

    @pytest.mark.parametrize(
        "type_", [String(), Bool(), Timestamp(), ObjectId(), Any(), List(Int())]
    )
    def test_not_numeric(self, type_):
        assert not type_.is_numeric


class TestArrowValues:
    """Stored values are coerced into what pyarrow accepts."""

    def test_object_id_becomes_string(self):
        oid = BsonObjectId()

        assert ObjectId().to_arrow_value(oid) == str(oid)
        assert ObjectId().to_arrow_value(None) is None

    def test_any_becomes_json_text(self):
        assert json.loads(Any().to_arrow_value({"b": 1, "a": [1]})) == {"a": [1], "b": 1}

    def test_list_wraps_scalars(self):
        assert List(ObjectId()).to_arrow_value("k1") == ["k1"]

    def test_struct_fills_missing_members(self):
        assert Struct({"wins": Int(), "name": String()}).to_arrow_value({"wins": 1}) == {
            "wins": 1,
            "name": None,
        }


class TestSchema:
    def test_field_lookup(self):
        schema = Schema(fields={"score": Float()})

        assert schema.has_field("score")
        assert schema.field_type("score") == Float()
        assert schema.field_type("missing") is None

    def test_dotted_lookup_uses_first_segment(self):
        schema = Schema(fields={"stats": Struct({"wins": Int()})})

        assert isinstance(schema.field_type("stats.wins"), Struct)

    def test_from_parse_fields(self):
        schema = Schema.from_parse_fields(
            {
                "objectId": {"type": "String"},
                "score": {"type": "Number"},
                "name": {"type": "String"},
                "active": {"type": "Boolean"},
                "seen": {"type": "Date"},
                "tags": {"type": "Array"},
                "location": {"type": "GeoPoint"},
                "odd": {"type": "Unheard"},
            }
        )

        assert schema.field_type("objectId") == ObjectId()
        assert schema.field_type("score").is_numeric
        assert schema.field_type("name") == String()
        assert schema.field_type("active") == Bool()
        assert isinstance(schema.field_type("seen"), Timestamp)
        assert schema.field_type("tags") == List(Any())
        assert schema.field_type("location") == Any()
        assert schema.field_type("odd") == Any()

    def test_types_namespace(self):
        assert Types.Float() == Float()
