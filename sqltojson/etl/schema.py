# =========================================
# 📄 File: sqltojson/etl/schema.py
# Purpose: Schema tree (root query + nested queries) and the field-type
#          mapping inferred while records are built
# =========================================

import logging
import threading
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

# Mapping type tags understood by the search index
NESTED = "nested"
STRING = "string"
BOOLEAN = "boolean"
BYTE = "byte"
SHORT = "short"
INTEGER = "integer"
LONG = "long"
FLOAT = "float"
DOUBLE = "double"
DATE = "date"


class ConfigError(ValueError):
    """Raised when a schema definition cannot be used to build documents."""


# -----------------------
# Width-tagged values
# -----------------------


class Int8(int):
    """Integer known to be stored in 8 bits."""


class Int16(int):
    """Integer known to be stored in 16 bits."""


class Int32(int):
    """Integer known to be stored in 32 bits."""


class Float32(float):
    """Float known to be stored in 32 bits."""


# Order matters: bool is an int subclass and the width-tagged classes
# are subclasses of int/float.
_TYPE_TAGS = (
    (list, NESTED),
    (bool, BOOLEAN),
    (str, STRING),
    (Int8, BYTE),
    (Int16, SHORT),
    (Int32, INTEGER),
    (int, LONG),
    (Float32, FLOAT),
    (float, DOUBLE),
    (Decimal, DOUBLE),
    (datetime, DATE),
    (date, DATE),
)


def infer_type(value: Any) -> Optional[str]:
    """
    Return the mapping type tag for a record value, or None if the value
    has no known index type.
    """
    for py_type, tag in _TYPE_TAGS:
        if isinstance(value, py_type):
            return tag
    return None


# -----------------------
# Mapping
# -----------------------


class Mapping:
    """One node of the inferred mapping tree."""

    def __init__(self, type: str, properties: Optional[Dict[str, "Mapping"]] = None,
                 index: Optional[str] = None, format: Optional[str] = None):
        self.type = type
        self.index = index
        self.format = format
        self.properties = properties if properties is not None else {}

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form; empty optional members are omitted."""
        out: Dict[str, Any] = {"type": self.type}
        if self.index:
            out["index"] = self.index
        if self.format:
            out["format"] = self.format
        if self.properties:
            out["properties"] = {k: v.to_dict() for k, v in self.properties.items()}
        return out

    def __repr__(self):
        return f"Mapping(type={self.type!r}, properties={list(self.properties)})"


# -----------------------
# Schema
# -----------------------


class Schema:
    """
    A query definition and the nested query definitions correlated to it.

    The tree is built once from configuration and shared by every worker.
    Only ``mapping`` changes during a run, always under this node's lock.
    """

    def __init__(
        self,
        type: str,
        sql: str = "",
        key: Optional[List[str]] = None,
        exclude: Optional[List[str]] = None,
        params: Optional[Dict[str, Any]] = None,
        nested: Optional[Dict[str, "Schema"]] = None,
    ):
        self.type = type
        self.sql = sql
        self.key = list(key or [])
        self.exclude = list(exclude or [])
        self.params = dict(params or {})
        self.nested = dict(nested or {})
        self.mapping = Mapping(NESTED)
        self._lock = threading.Lock()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], name: Optional[str] = None) -> "Schema":
        """Build a schema tree from the ``schema`` section of the config."""
        if not isinstance(data, dict):
            raise ConfigError(f"{name or 'schema'}: expected a mapping, got {type(data).__name__}")

        nested_cfg = data.get("nested") or {}
        if not isinstance(nested_cfg, dict):
            raise ConfigError(f"{name or 'schema'}: 'nested' must be a mapping")

        nested = {
            child: cls.from_dict(child_cfg, name=child)
            for child, child_cfg in nested_cfg.items()
        }

        key = data.get("key") or []
        if isinstance(key, str):  # allow `key: id` shorthand
            key = [key]
        exclude = data.get("exclude") or []
        if isinstance(exclude, str):
            exclude = [exclude]

        return cls(
            type=data.get("type") or name or "",
            sql=data.get("sql") or "",
            key=key,
            exclude=exclude,
            params=data.get("params"),
            nested=nested,
        )

    def validate(self) -> None:
        """
        Validate this node and its nested definitions recursively and reset
        every mapping to an empty nested mapping.
        """
        self.mapping = Mapping(NESTED)

        if not self.nested:
            return

        if not self.key:
            raise ConfigError("A key is required to include nested objects.")

        for name, child in self.nested.items():
            try:
                child.validate()
            except ConfigError as e:
                raise ConfigError(f"{self.type}/{name}: {e}") from e

    # -----------------------
    # Mapping inference
    # -----------------------

    def set_property(self, key: str, prop: Mapping) -> None:
        """Register ``prop`` under ``key`` unless the field already has a type."""
        with self._lock:
            self.mapping.properties.setdefault(key, prop)

    def has_property(self, key: str) -> bool:
        with self._lock:
            return key in self.mapping.properties

    def infer_mapping(self, record: Dict[str, Any]) -> None:
        """Register a type for every non-null field not yet in the mapping."""
        for key, value in record.items():
            if value is None:
                continue
            if self.has_property(key):
                continue

            tag = infer_type(value)
            if tag is None:
                log.warning(f"unknown type {type(value).__name__} for {self.type}/{key}")
                continue

            # A nested field's mapping is owned by its child schema.
            if tag == NESTED and key in self.nested:
                self.set_property(key, self.nested[key].mapping)
            else:
                self.set_property(key, Mapping(tag))

    def __repr__(self):
        return f"Schema(type={self.type!r}, key={self.key}, nested={list(self.nested)})"
