# =========================================
# 📄 File: sqltojson/etl/db.py
# Purpose: SQLAlchemy engine with a pool sized for the worker pool
# =========================================

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

log = logging.getLogger(__name__)


def get_engine(url, connections: int):
    """
    Create the shared engine.

    ``connections`` caps what workers can hold at once; one extra pooled
    connection is reserved for the source reader, which keeps its cursor
    open for the whole run.
    """
    url = make_url(url)
    log.info(f"Connecting to: {url.render_as_string(hide_password=True)}")

    kwargs = {"future": True, "pool_pre_ping": True}
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # In-memory SQLite is per-connection; pool sizing does not apply
        return create_engine(url, **kwargs)

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}

    # pool_timeout=None: a worker waits for a free connection instead of
    # failing the build after 30s
    return create_engine(
        url, pool_size=connections + 1, max_overflow=0, pool_timeout=None, **kwargs
    )


def check_connection(engine) -> None:
    """Open one connection so connection problems surface before the run."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
