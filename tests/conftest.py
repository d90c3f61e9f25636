# tests/conftest.py
# ------------------------------------------------------------
# Purpose: Shared fixtures. A small SQLite database in a temp
# file stands in for the source database so tests exercise the
# real SQLAlchemy code paths without a server.
# ------------------------------------------------------------

import io

import pytest
from sqlalchemy import create_engine, event, text

from sqltojson.etl.schema import Schema

# people -> addresses -> visits, two levels of nesting
_DDL = [
    """
    CREATE TABLE people (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        active INTEGER NOT NULL,
        score REAL,
        nickname TEXT,
        secret TEXT
    )
    """,
    "CREATE TABLE addresses (id INTEGER PRIMARY KEY, person_id INTEGER, city TEXT)",
    "CREATE TABLE visits (id INTEGER PRIMARY KEY, address_id INTEGER, note TEXT)",
]

_ROWS = [
    "INSERT INTO people VALUES (1, 'Ana', 1, 9.5, NULL, 's1')",
    "INSERT INTO people VALUES (2, 'Bruno', 0, 7.0, 'B', 's2')",
    "INSERT INTO addresses VALUES (10, 1, 'Lisboa')",
    "INSERT INTO addresses VALUES (11, 1, 'Porto')",
    "INSERT INTO addresses VALUES (12, 2, 'Braga')",
    "INSERT INTO visits VALUES (100, 10, 'first')",
    "INSERT INTO visits VALUES (101, 10, 'second')",
    "INSERT INTO visits VALUES (102, 12, 'only')",
]

PEOPLE_SQL = "SELECT id, name, active, score, nickname, secret FROM people ORDER BY id"
ADDRESSES_SQL = "SELECT id, city FROM addresses WHERE person_id = :id ORDER BY id"
VISITS_SQL = "SELECT id, note FROM visits WHERE address_id = :id ORDER BY id"


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine usable from several threads."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'source.db'}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    with eng.begin() as conn:
        for stmt in _DDL + _ROWS:
            conn.execute(text(stmt))
    yield eng
    eng.dispose()


@pytest.fixture
def query_log(engine):
    """Every SQL statement the engine executes, in order."""
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine, "before_cursor_execute", _record)


@pytest.fixture
def nested_schema_def():
    """Definition of the people -> addresses -> visits tree."""
    return {
        "type": "person",
        "sql": PEOPLE_SQL,
        "key": ["id"],
        "exclude": ["secret"],
        "nested": {
            "addresses": {
                "sql": ADDRESSES_SQL,
                "key": ["id"],
                "nested": {"visits": {"sql": VISITS_SQL}},
            },
        },
    }


@pytest.fixture
def nested_schema(nested_schema_def):
    schema = Schema.from_dict(nested_schema_def)
    schema.validate()
    return schema


@pytest.fixture
def make_cfg(tmp_path):
    """Build a pipeline config dict around a schema definition."""

    def _make(schema_dict, workers=1, connections=1, max_retries=3):
        schema = Schema.from_dict(schema_dict)
        schema.validate()
        return {
            "schema": schema,
            "workers": workers,
            "connections": connections,
            "max_retries": max_retries,
            "index": "people",
            "type": schema.type,
            "files": {
                "data": str(tmp_path / "data.json"),
                "mapping": str(tmp_path / "mapping.json"),
            },
        }

    return _make


@pytest.fixture
def quiet_stats():
    return io.StringIO()
