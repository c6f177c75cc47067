"""Event coalescing for FolderWatcher.

Collapses duplicated filesystem notifications into one release per path so
the processing pipeline runs once per settled change.
"""
from coalescing.base import Coalescer, PendingEntry, RemovalReason, Strategy
from coalescing.release_queue import Release, ReleaseQueue
from coalescing.strategies import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_SLIDING_EXPIRATION_MS,
    ExpiringCacheCoalescer,
    ImmediateCoalescer,
    PolledDictionaryCoalescer,
    create_coalescer,
)

__all__ = [
    "Coalescer",
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_SLIDING_EXPIRATION_MS",
    "ExpiringCacheCoalescer",
    "ImmediateCoalescer",
    "PendingEntry",
    "PolledDictionaryCoalescer",
    "Release",
    "ReleaseQueue",
    "RemovalReason",
    "Strategy",
    "create_coalescer",
]
