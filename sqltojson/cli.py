#!/usr/bin/env python3
"""
sqltojson
---------
 - Reads a YAML config describing a root query and its nested queries
 - Builds one nested JSON document per root row with a pool of workers
 - Writes a bulk-index data file and the inferred mapping file

Run:
    sqltojson --config sqltojson.yaml [--workers N] [--connections N]
"""

import argparse
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from config.config_loader import DEFAULT_CONFIG_PATH, get_config
from sqltojson.etl.db import check_connection, get_engine
from sqltojson.etl.pipeline import run

log = logging.getLogger("sqltojson")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Convert relational data into nested JSON documents.")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to configuration file.")
    parser.add_argument("--workers", type=int, default=0, help="Number of workers override.")
    parser.add_argument("--connections", type=int, default=0, help="Max number of connections override.")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    # Read and validate config (exits on error)
    cfg = get_config(args.config)

    # Override
    if args.workers > 0:
        cfg["workers"] = args.workers
    if args.connections > 0:
        cfg["connections"] = args.connections

    logging.basicConfig(
        level=cfg["log_level"],
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        engine = get_engine(cfg["url"], cfg["connections"])
        check_connection(engine)
    except SQLAlchemyError as e:
        log.error(f"Error with database connection: {e}")
        return 1

    try:
        summary = run(cfg, engine=engine)
    except Exception as e:
        log.exception(f"❌ Run failed: {e}")
        return 1
    finally:
        engine.dispose()

    if summary.cancelled:
        log.info(f"Run cancelled after {summary.documents} documents.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
