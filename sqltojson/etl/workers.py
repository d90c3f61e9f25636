# =========================================
# 📄 File: sqltojson/etl/workers.py
# Purpose: Worker that pulls build tasks off the queue and builds them
# - Random jitter before each build to spread load on the source DB
# - Fixed-backoff retries; running out of attempts is fatal for the run
# - Completed records go to the output channel, durations to stats
# =========================================

import logging
import random
import threading
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from sqltojson.etl import builder
from sqltojson.etl.channels import Channel

log = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
RETRY_BACKOFF_SECS = 2.0
MAX_JITTER_SECS = 0.1


class BuildRetriesExceeded(RuntimeError):
    """A root record could not be built within the allowed attempts."""


class Worker:
    """One member of the worker pool."""

    def __init__(
        self,
        id: int,
        engine,
        queue: Channel,
        output: Channel,
        stats: Channel,
        cancel: threading.Event,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: float = RETRY_BACKOFF_SECS,
        max_jitter: float = MAX_JITTER_SECS,
    ):
        self.id = id
        self.engine = engine
        self.queue = queue
        self.output = output
        self.stats = stats
        self.cancel = cancel
        self.max_retries = max_retries
        self.backoff = backoff
        self.max_jitter = max_jitter
        self.error: Optional[BaseException] = None  # Set when the worker dies
        self.built = 0

    def start(self) -> None:
        """
        Consume tasks until the queue is closed or the run is cancelled.

        On retry exhaustion the error is stored on the worker and the shared
        cancel event is set, which stops every other component.
        """
        try:
            self._run()
        except BuildRetriesExceeded as e:
            log.error(f"Worker #{self.id}: {e}")
            self.error = e
            self.cancel.set()
        except Exception as e:
            log.exception(f"Worker #{self.id} crashed: {e}")
            self.error = e
            self.cancel.set()

        if self.cancel.is_set():
            log.info(f"Stopping worker #{self.id}.")

    def _run(self) -> None:
        for task in self.queue:
            # Jitter
            if self.max_jitter > 0:
                time.sleep(random.uniform(0, self.max_jitter))

            result = self._build_with_retries(task)
            if result is None:  # cancelled mid-retry
                return

            record, elapsed = result

            if not self.output.put(record):
                return
            if not self.stats.put(elapsed):
                return
            self.built += 1

    def _build_with_retries(self, task: builder.BuildTask):
        """Return (record, seconds) or None if cancelled while backing off."""
        attempt = 0

        while True:
            # Every attempt starts from the untouched root row
            record = dict(task.record)
            t0 = time.monotonic()

            try:
                with self.engine.connect() as conn:
                    builder.build(conn, task.schema, record)
            except SQLAlchemyError as e:
                attempt += 1
                if attempt >= self.max_retries:
                    raise BuildRetriesExceeded(
                        f"Reached max retries ({self.max_retries}) building "
                        f"'{task.schema.type}' record: {e}"
                    ) from e
                log.warning(
                    f"Worker #{self.id}: build failed (attempt {attempt}/{self.max_retries}): {e}. "
                    f"Retrying in {self.backoff:.1f}s..."
                )
                # Event.wait doubles as a cancellable sleep
                if self.cancel.wait(self.backoff):
                    return None
                continue

            return record, time.monotonic() - t0
