# tests/unit/test_schema.py
# ------------------------------------------------------------
# Purpose: Schema validation and mapping inference (no DB).
# ------------------------------------------------------------

import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from sqltojson.etl.schema import (
    ConfigError,
    Float32,
    Int8,
    Int16,
    Int32,
    Mapping,
    Schema,
    infer_type,
)


def test_validate_requires_key_when_nested():
    # Nested children without a key cannot be correlated to the parent.
    schema = Schema.from_dict({"type": "a", "sql": "x", "nested": {"b": {"sql": "y"}}})
    with pytest.raises(ConfigError, match="key is required"):
        schema.validate()


def test_validate_accepts_leaf_without_key_and_nested_with_key():
    Schema.from_dict({"type": "a", "sql": "x"}).validate()
    Schema.from_dict({"type": "a", "sql": "x", "key": "id", "nested": {"b": {"sql": "y"}}}).validate()


def test_validate_reports_path_of_deep_failure():
    schema = Schema.from_dict(
        {
            "type": "a",
            "key": ["id"],
            "nested": {"b": {"nested": {"c": {"sql": "z"}}}},
        }
    )
    with pytest.raises(ConfigError, match="a/b"):
        schema.validate()


def test_validate_resets_mapping_to_empty_nested():
    schema = Schema("a", sql="x")
    schema.mapping.properties["stale"] = Mapping("string")
    schema.validate()
    assert schema.mapping.type == "nested"
    assert schema.mapping.properties == {}


@pytest.mark.parametrize(
    "value, expected",
    [
        ([{"a": 1}], "nested"),
        ("text", "string"),
        (True, "boolean"),
        (Int8(1), "byte"),
        (Int16(1), "short"),
        (Int32(1), "integer"),
        (12, "long"),
        (Float32(1.5), "float"),
        (1.5, "double"),
        (Decimal("1.5"), "double"),
        (datetime(2025, 1, 1, 12, 0), "date"),
        (date(2025, 1, 1), "date"),
        (b"raw", None),
    ],
)
def test_infer_type(value, expected):
    assert infer_type(value) == expected


def test_first_type_wins():
    schema = Schema("a")
    schema.infer_mapping({"f": 1})
    schema.infer_mapping({"f": "later a string"})
    assert schema.mapping.properties["f"].type == "long"


def test_null_never_creates_or_overwrites():
    schema = Schema("a")
    schema.infer_mapping({"f": None})
    assert "f" not in schema.mapping.properties

    schema.infer_mapping({"f": "x"})
    schema.infer_mapping({"f": None})
    assert schema.mapping.properties["f"].type == "string"


def test_unknown_type_is_skipped():
    schema = Schema("a")
    schema.infer_mapping({"blob": b"\x00", "ok": 1})
    assert "blob" not in schema.mapping.properties
    assert schema.mapping.properties["ok"].type == "long"


def test_nested_field_shares_child_mapping():
    child = Schema("b")
    parent = Schema("a", key=["id"], nested={"b": child})
    parent.infer_mapping({"b": [{"x": 1}]})
    assert parent.mapping.properties["b"] is child.mapping


def test_concurrent_inference_registers_each_field_once():
    schema = Schema("a")
    barrier = threading.Barrier(8)

    def infer(value):
        barrier.wait()
        for _ in range(200):
            schema.infer_mapping({"f": value, "g": 1})

    # Half the threads see a string, half an int; only one may win.
    threads = [threading.Thread(target=infer, args=("s" if i % 2 else 1,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert set(schema.mapping.properties) == {"f", "g"}
    assert schema.mapping.properties["f"].type in ("string", "long")
    assert schema.mapping.properties["g"].type == "long"


def test_mapping_to_dict_omits_empty_members():
    m = Mapping("nested", properties={"a": Mapping("string"), "b": Mapping("nested")})
    assert m.to_dict() == {
        "type": "nested",
        "properties": {"a": {"type": "string"}, "b": {"type": "nested"}},
    }


def test_from_dict_rejects_non_mapping_nested():
    with pytest.raises(ConfigError):
        Schema.from_dict({"type": "a", "key": ["id"], "nested": ["b"]})
