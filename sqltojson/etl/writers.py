# =========================================
# 📄 File: sqltojson/etl/writers.py
# Purpose: Consumers at the end of the pipeline
# - stats_writer: build timing -> progress line on stderr
# - data_writer: completed records -> bulk-index action/document pairs
# - write_mapping: inferred mapping tree -> mapping file (once, at the end)
# =========================================

import base64
import json
import logging
import time
import uuid
from datetime import date, datetime, time as dtime
from decimal import Decimal
from typing import Any, Dict, IO, NamedTuple

from sqltojson.etl.channels import Channel
from sqltojson.etl.schema import Schema

log = logging.getLogger(__name__)


# -----------------------
# Stats
# -----------------------


class Throughput(NamedTuple):
    count: int
    build_seconds: float
    avg_build: float  # builds per second of build time
    concurrency: float  # builds per second of wall time
    rate: float


def compute_throughput(count: int, build_seconds: float, wall_seconds: float) -> Throughput:
    avg_build = count / build_seconds if build_seconds > 0 else 0.0
    conc = count / wall_seconds if wall_seconds > 0 else 0.0
    return Throughput(count, build_seconds, avg_build, conc, conc * avg_build)


def stats_writer(output: IO[str], samples: Channel) -> Throughput:
    """
    Report throughput for every build duration received.

    The first sample only marks the wall-clock start so pipeline warm-up
    does not skew the numbers. Returns the last computed figures.
    """
    start = None
    count = 0
    build_seconds = 0.0
    last = Throughput(0, 0.0, 0.0, 0.0, 0.0)

    for elapsed in samples:
        if start is None:
            start = time.monotonic()
            continue

        count += 1
        build_seconds += elapsed

        last = compute_throughput(count, build_seconds, time.monotonic() - start)
        output.write(
            f"\rCNT: {last.count}, ABT: {last.avg_build:f}, "
            f"CONC: {last.concurrency:f}, BPS: {last.rate:f}"
        )
        output.flush()

    if samples.cancelled:
        log.info("Stopping stats writer.")
    elif start is not None:
        output.write("\n")
    return last


# -----------------------
# Data
# -----------------------


def _json_default(value: Any):
    """json.dumps hook for the non-JSON types database drivers return."""
    if isinstance(value, (datetime, date, dtime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        # Binary columns are written as base64 text
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode(value: Any) -> str:
    # NaN and Infinity are not JSON; ValueError skips the record
    return json.dumps(value, default=_json_default, allow_nan=False)


def bulk_action(index: str, doc_type: str) -> Dict[str, Any]:
    """The header that precedes every document in the bulk file."""
    return {"create": {"_index": index, "_type": doc_type}}


def data_writer(output: IO[str], index: str, doc_type: str, records: Channel) -> int:
    """
    Write each record as an action line followed by a document line.
    Records that cannot be encoded are logged and skipped. Returns the
    number of documents written.
    """
    header = encode(bulk_action(index, doc_type))
    written = 0

    for record in records:
        try:
            doc = encode(record)
        except (TypeError, ValueError) as e:
            log.error(f"Error encoding record: {e}")
            continue

        output.write(header + "\n")
        output.write(doc + "\n")
        written += 1

    if records.cancelled:
        log.info("Stopping data writer.")
    output.flush()
    return written


# -----------------------
# Mapping
# -----------------------


def mapping_document(schema: Schema) -> Dict[str, Any]:
    properties = schema.mapping.to_dict().get("properties", {})
    return {"mappings": {schema.type: {"properties": properties}}}


def write_mapping(schema: Schema, output: IO[str]) -> None:
    """Serialize the final mapping tree; call only after every worker is done."""
    output.write(json.dumps(mapping_document(schema), indent=2))
    output.flush()
