# =========================================
# 📄 File: sqltojson/etl/source_reader.py
# Purpose: Run the root query once and queue one build task per row
# =========================================

import logging
import threading

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from sqltojson.etl.builder import BuildTask, row_to_record
from sqltojson.etl.channels import Channel
from sqltojson.etl.schema import Schema

log = logging.getLogger(__name__)


class SourceQueryError(RuntimeError):
    """The root query could not be executed."""


def read_source(engine, schema: Schema, queue: Channel, cancel: threading.Event) -> int:
    """
    Stream the root result into ``queue`` and return how many tasks were
    queued. A fetch error from the cursor is logged and ends the read;
    rows already queued are still built. The caller closes the queue.
    """
    count = 0
    if cancel.is_set():
        log.info("Stopping source reader.")
        return count

    with engine.connect() as conn:
        try:
            result = conn.execution_options(stream_results=True).execute(
                text(schema.sql), schema.params
            )
        except SQLAlchemyError as e:
            raise SourceQueryError(f"Error executing query: {e}") from e

        log.info(f"Fetching root '{schema.type}' objects")

        try:
            for row in result:
                if not queue.put(BuildTask(schema, row_to_record(row))):
                    log.info("Stopping source reader.")
                    return count

                count += 1
        except SQLAlchemyError as e:
            # The cursor itself failed; what was queued still gets built
            log.error(f"Error fetching root rows after {count} objects: {e}")

    log.info(f"Queued {count} objects")
    return count
