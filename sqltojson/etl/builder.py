# =========================================
# 📄 File: sqltojson/etl/builder.py
# Purpose: Build one root record into a nested document
# - Run each nested query with parameters taken from the parent's key fields
# - Recurse into the children on the same connection
# - Strip excluded fields, then infer the mapping of what remains
# =========================================

from typing import Any, Dict, List, NamedTuple, Optional

from sqlalchemy import text

from sqltojson.etl.schema import Schema

Record = Dict[str, Any]


class BuildTask(NamedTuple):
    """A root record and the schema describing how to build it out."""

    schema: Schema
    record: Record


def build_params(record: Record, keys: List[str]) -> Dict[str, Any]:
    """Bind parameters for child queries; missing key fields bind as NULL."""
    return {key: record.get(key) for key in keys}


def row_to_record(row) -> Record:
    """Decode a SQLAlchemy Row into a plain, column-ordered dict."""
    return dict(row._mapping)


def fetch_all(conn, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Record]:
    """
    Execute ``sql`` with ``params`` and return every row as a record.
    Execution and fetch errors propagate to the caller.
    """
    result = conn.execute(text(sql), params or {})
    return [row_to_record(row) for row in result]


def build(conn, schema: Schema, record: Record) -> None:
    """
    Fill ``record`` in place according to ``schema``.

    Children are fully built before the parent's exclusions and mapping
    inference run. Any query failure aborts the whole build; the caller
    retries from scratch with a fresh copy of the root record.
    """
    if schema.nested:
        params = build_params(record, schema.key)

        for name, nested in schema.nested.items():
            # Static params sit beneath the key-derived ones
            children = fetch_all(conn, nested.sql, {**nested.params, **params})
            record[name] = children

            for child in children:
                build(conn, nested, child)

            # An excluded child is dropped below and stays out of the mapping
            if name not in schema.exclude:
                schema.set_property(name, nested.mapping)

    for field in schema.exclude:
        record.pop(field, None)

    schema.infer_mapping(record)
