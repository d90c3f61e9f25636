# =========================================
# 📄 File: sqltojson/etl/channels.py
# Purpose: Bounded, closable queue whose blocking calls give up as soon as
#          the run's cancellation event is set
# =========================================

import queue
import threading
from typing import Any, Iterator

_CLOSED = object()  # Sentinel marking the end of the stream

POLL_INTERVAL = 0.05  # Seconds between cancellation checks while blocked


class Channel:
    """
    Bounded FIFO shared between threads.

    ``put`` returns False instead of blocking once ``cancel`` is set, and
    iterating stops when the channel is closed and drained or the run is
    cancelled. Any number of producers and consumers may use it.
    """

    def __init__(self, maxsize: int, cancel: threading.Event, poll_interval: float = POLL_INTERVAL):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max(1, maxsize))
        self._cancel = cancel
        self._poll = poll_interval
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def put(self, item: Any) -> bool:
        """Send ``item``; False if the run was cancelled before it fit."""
        if self._closed.is_set():
            raise ValueError("put on closed channel")
        return self._put(item)

    def _put(self, item: Any) -> bool:
        while not self._cancel.is_set():
            try:
                self._queue.put(item, timeout=self._poll)
                return True
            except queue.Full:
                continue
        return False

    def close(self) -> None:
        """Signal consumers that no more items will be sent."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._put(_CLOSED)

    def __iter__(self) -> Iterator[Any]:
        while not self._cancel.is_set():
            try:
                item = self._queue.get(timeout=self._poll)
            except queue.Empty:
                continue

            if item is _CLOSED:
                # Leave the sentinel for the other consumers
                self._queue.put_nowait(_CLOSED)
                return

            if self._cancel.is_set():
                return

            yield item

    def __len__(self):
        return self._queue.qsize()
