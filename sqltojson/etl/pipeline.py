# =========================================
# 📄 File: sqltojson/etl/pipeline.py
# Purpose: Orchestrate one run
#   reader -> task queue -> workers -> output -> data writer
#                                   \-> stats  -> stats writer
# - One cancellation event shared by every thread (set by SIGINT/SIGTERM
#   or by a fatal worker error)
# - Shutdown order: workers, then output/stats channels, then writers,
#   and only then the mapping file
# =========================================

import logging
import signal
import sys
import threading
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Any, Dict, IO, Iterator, List, Optional

from sqltojson.etl.channels import Channel
from sqltojson.etl.db import get_engine
from sqltojson.etl.schema import Schema
from sqltojson.etl.source_reader import read_source
from sqltojson.etl.workers import (
    DEFAULT_MAX_RETRIES,
    MAX_JITTER_SECS,
    RETRY_BACKOFF_SECS,
    Worker,
)
from sqltojson.etl.writers import data_writer, stats_writer, write_mapping

log = logging.getLogger(__name__)

STDOUT_TOKEN = "-"


@dataclass
class RunSummary:
    queued: int = 0
    documents: int = 0
    elapsed: float = 0.0
    cancelled: bool = False


@contextmanager
def signal_bridge(cancel: threading.Event) -> Iterator[threading.Event]:
    """
    Turn SIGINT/SIGTERM into ``cancel.set()`` for the duration of the block.

    Handlers can only be installed from the main thread; elsewhere the
    event is yielded untouched.
    """
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}

    def _handler(signum, frame):
        log.info("Signal caught. Canceling.")
        cancel.set()

    for sig in previous:
        signal.signal(sig, _handler)
    try:
        yield cancel
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _open_output(stack: ExitStack, path: str) -> IO[str]:
    if path == STDOUT_TOKEN:
        return sys.stdout
    return stack.enter_context(open(path, "w", encoding="utf-8"))


def _thread(name: str, target, *args) -> threading.Thread:
    t = threading.Thread(target=target, args=args, name=name, daemon=True)
    t.start()
    return t


def run(
    cfg: Dict[str, Any],
    engine=None,
    cancel: Optional[threading.Event] = None,
    stats_output: Optional[IO[str]] = None,
    backoff: float = RETRY_BACKOFF_SECS,
    max_jitter: float = MAX_JITTER_SECS,
) -> RunSummary:
    """
    Build every root record of ``cfg["schema"]`` and write the data and
    mapping files.

    Raises the first fatal error (retry exhaustion, root query failure)
    after all threads have stopped; the mapping is not written in that case.
    """
    started = time.monotonic()
    schema: Schema = cfg["schema"]
    workers = cfg.get("workers", 10)
    max_retries = cfg.get("max_retries", DEFAULT_MAX_RETRIES)
    files = cfg.get("files", {})

    owns_engine = engine is None
    if owns_engine:
        engine = get_engine(cfg["url"], cfg.get("connections", workers))

    cancel = cancel if cancel is not None else threading.Event()
    summary = RunSummary()
    errors: List[BaseException] = []

    try:
        with ExitStack() as stack:
            stack.enter_context(signal_bridge(cancel))

            # All channels are bounded by the pool size
            stats = Channel(workers, cancel)
            queue = Channel(workers, cancel)
            output = Channel(workers, cancel)

            # Writers are done once their channels are closed and drained
            results: Dict[str, Any] = {}

            def _guarded(name, fn, *args):
                # A dead writer would leave workers blocked on a full channel
                try:
                    results[name] = fn(*args)
                except Exception as e:
                    log.exception(f"{name} writer failed: {e}")
                    errors.append(e)
                    cancel.set()

            def _stats():
                _guarded("stats", stats_writer, stats_output or sys.stderr, stats)

            data_file = _open_output(stack, files.get("data", "data.json"))

            def _data():
                _guarded("documents", data_writer, data_file, cfg["index"], cfg["type"], output)

            writer_threads = [_thread("stats", _stats), _thread("data", _data)]

            log.info(f"Starting {workers} workers")
            pool = [
                Worker(
                    i + 1, engine, queue, output, stats, cancel,
                    max_retries=max_retries, backoff=backoff, max_jitter=max_jitter,
                )
                for i in range(workers)
            ]
            worker_threads = [_thread(f"worker-{w.id}", w.start) for w in pool]

            def _read():
                try:
                    summary.queued = read_source(engine, schema, queue, cancel)
                except Exception as e:
                    log.error(f"Source reader failed: {e}")
                    errors.append(e)
                    cancel.set()
                finally:
                    queue.close()

            reader = _thread("reader", _read)

            for t in worker_threads:
                t.join()
            log.info("Workers done.")

            output.close()
            stats.close()

            for t in writer_threads:
                t.join()
            reader.join()
            log.info("Data file done.")

            errors.extend(w.error for w in pool if w.error is not None)
            summary.documents = results.get("documents", 0)
            summary.cancelled = cancel.is_set()

            if errors:
                raise errors[0]

            mapping_file = _open_output(stack, files.get("mapping", "mapping.json"))
            write_mapping(schema, mapping_file)
            log.info("Wrote mapping file.")
    finally:
        if owns_engine:
            engine.dispose()

    summary.elapsed = time.monotonic() - started
    log.info(f"Took {summary.elapsed:.2f}s.")
    return summary
