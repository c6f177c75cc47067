"""Single-consumer queue between the coalescers and the processing pipeline.

Coalescers post ``Release`` messages from whatever thread they run on; one
worker thread takes them off in order and calls the handler. Slow disk I/O in
the handler therefore never stalls the observer or the coalescer timers.
"""
from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, NamedTuple, Optional

from coalescing.base import RemovalReason


class Release(NamedTuple):
    path: str
    reason: RemovalReason


_STOP = object()


class ReleaseQueue:
    def __init__(self, handler: Callable[[str], object], logger: Optional[logging.Logger] = None) -> None:
        self.handler = handler
        self.logger = logger or logging.getLogger("folder_watcher")
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def put(self, path: str, reason: RemovalReason) -> None:
        self._queue.put(Release(path, reason))

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="release-worker", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.logger.info("Releasing %s (%s)", item.path, item.reason.value)
                self.handler(item.path)
            except Exception:
                self.logger.exception("Error processing file %s", item.path)
            finally:
                self._queue.task_done()

    def join(self) -> None:
        """Block until every release posted so far has been handled."""
        self._queue.join()

    def stop(self) -> None:
        """Handle what is already queued, then stop the worker."""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None
