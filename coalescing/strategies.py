"""The three coalescing strategies and a factory to pick one by name.

- ImmediateCoalescer: no coalescing, one release per notification.
- PolledDictionaryCoalescer: insert-if-absent set drained on a fixed timer.
- ExpiringCacheCoalescer: sliding expiration, released once a path goes quiet.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from coalescing.base import Coalescer, PendingEntry, ReleaseCallback, RemovalReason, Strategy

DEFAULT_POLL_INTERVAL_MS = 1000
DEFAULT_SLIDING_EXPIRATION_MS = 2000

Clock = Callable[[], float]


class ImmediateCoalescer(Coalescer):
    strategy = Strategy.IMMEDIATE

    def submit(self, path: str) -> None:
        self.release(path, RemovalReason.IMMEDIATE)


class PolledDictionaryCoalescer(Coalescer):
    """Collects paths in a dict and releases them all on every timer tick.

    The drain swaps the whole dict out under the lock, so a concurrent
    ``submit`` lands either in the drain in progress or in the next one.
    """

    strategy = Strategy.POLLED_DICTIONARY

    def __init__(
        self,
        release: ReleaseCallback,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(release, logger)
        if poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        self.poll_interval = poll_interval_ms / 1000.0
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingEntry] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def submit(self, path: str) -> None:
        with self._lock:
            if path in self._pending:
                return
            self._pending[path] = PendingEntry(path=path, inserted_at=self._clock())
        self.logger.debug("Queued %s for the next drain", path)

    def drain(self) -> List[str]:
        """Remove every pending path and release each one exactly once."""
        with self._lock:
            drained, self._pending = self._pending, {}
        for entry in drained.values():
            entry.removal_reason = RemovalReason.DRAINED
            try:
                self.release(entry.path, RemovalReason.DRAINED)
            except Exception:
                self.logger.exception("Error releasing %s", entry.path)
        return list(drained)

    def evict(self, path: str) -> bool:
        with self._lock:
            entry = self._pending.pop(path, None)
        if entry is None:
            return False
        entry.removal_reason = RemovalReason.MANUALLY_REMOVED
        self.logger.warning("%s was removed before the drain; it will not be processed", path)
        return True

    def pending_paths(self) -> List[str]:
        with self._lock:
            return list(self._pending)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="coalescer-drain", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            self.drain()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        with self._lock:
            leftover, self._pending = self._pending, {}
        for entry in leftover.values():
            entry.removal_reason = RemovalReason.MANUALLY_REMOVED
            self.logger.warning("Discarding pending %s on shutdown", entry.path)


class ExpiringCacheCoalescer(Coalescer):
    """Releases a path once no notification has refreshed it for a full window.

    Every ``submit`` for a path that is already pending pushes its expiry out
    again. A manager thread sleeps until the earliest expiry and calls
    ``expire_due``. Only expiry releases a path; eviction and replacement are
    logged and dropped.
    """

    strategy = Strategy.EXPIRING_CACHE

    def __init__(
        self,
        release: ReleaseCallback,
        sliding_expiration_ms: int = DEFAULT_SLIDING_EXPIRATION_MS,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(release, logger)
        if sliding_expiration_ms <= 0:
            raise ValueError("sliding_expiration_ms must be positive")
        self.window = sliding_expiration_ms / 1000.0
        self._clock = clock or time.monotonic
        self._cond = threading.Condition()
        self._entries: Dict[str, PendingEntry] = {}
        self._stopping = False
        self._thread: Optional[threading.Thread] = None

    def submit(self, path: str) -> None:
        now = self._clock()
        with self._cond:
            entry = self._entries.get(path)
            if entry is not None:
                entry.refresh(now, self.window)
                return
            entry = PendingEntry(path=path, inserted_at=now)
            entry.refresh(now, self.window)
            self._entries[path] = entry
            self._cond.notify()

    def replace(self, path: str) -> None:
        """Overwrite the entry for `path` with a fresh one."""
        now = self._clock()
        with self._cond:
            old = self._entries.pop(path, None)
            entry = PendingEntry(path=path, inserted_at=now)
            entry.refresh(now, self.window)
            self._entries[path] = entry
            self._cond.notify()
        if old is not None:
            self._on_removed(old, RemovalReason.REPLACED)

    def evict(self, path: str) -> bool:
        with self._cond:
            entry = self._entries.pop(path, None)
        if entry is None:
            return False
        self._on_removed(entry, RemovalReason.MANUALLY_REMOVED)
        return True

    def pending_paths(self) -> List[str]:
        with self._cond:
            return list(self._entries)

    def expire_due(self) -> List[str]:
        """Remove and release every entry whose window has elapsed."""
        now = self._clock()
        with self._cond:
            due = [entry for entry in self._entries.values() if entry.expired(now)]
            for entry in due:
                del self._entries[entry.path]
        for entry in due:
            self._on_removed(entry, RemovalReason.EXPIRED)
        return [entry.path for entry in due]

    def _on_removed(self, entry: PendingEntry, reason: RemovalReason) -> None:
        entry.removal_reason = reason
        self.logger.info("Cache item removed: %s because %s", entry.path, reason.value)
        if reason is not RemovalReason.EXPIRED:
            self.logger.warning("%s was removed unexpectedly and will not be processed", entry.path)
            return
        try:
            self.release(entry.path, reason)
        except Exception:
            self.logger.exception("Error releasing %s", entry.path)

    def _next_timeout(self) -> Optional[float]:
        # caller holds self._cond
        if not self._entries:
            return None
        earliest = min(entry.expires_at for entry in self._entries.values())
        return max(0.0, earliest - self._clock())

    def start(self) -> None:
        if self._thread is not None:
            return
        with self._cond:
            self._stopping = False
        self._thread = threading.Thread(target=self._run, name="coalescer-expiry", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
                timeout = self._next_timeout()
                if timeout is None or timeout > 0:
                    self._cond.wait(timeout)
                if self._stopping:
                    return
            self.expire_due()

    def stop(self) -> None:
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        with self._cond:
            leftover, self._entries = self._entries, {}
        for entry in leftover.values():
            self._on_removed(entry, RemovalReason.MANUALLY_REMOVED)


def create_coalescer(
    strategy: "str | Strategy",
    release: ReleaseCallback,
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    sliding_expiration_ms: int = DEFAULT_SLIDING_EXPIRATION_MS,
    logger: Optional[logging.Logger] = None,
    clock: Optional[Clock] = None,
) -> Coalescer:
    strategy = Strategy.parse(strategy)
    if strategy is Strategy.IMMEDIATE:
        return ImmediateCoalescer(release, logger=logger)
    if strategy is Strategy.POLLED_DICTIONARY:
        return PolledDictionaryCoalescer(release, poll_interval_ms=poll_interval_ms, logger=logger, clock=clock)
    return ExpiringCacheCoalescer(release, sliding_expiration_ms=sliding_expiration_ms, logger=logger, clock=clock)
