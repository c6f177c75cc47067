"""Shared types for the coalescing strategies.

A coalescer absorbs duplicated filesystem notifications and hands each path
to a ``release`` callback once it has settled. What "settled" means depends
on the strategy; the callback signature does not.
"""
from __future__ import annotations

import abc
import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional


class Strategy(str, enum.Enum):
    IMMEDIATE = "immediate"
    POLLED_DICTIONARY = "polled"
    EXPIRING_CACHE = "expiring"

    @classmethod
    def parse(cls, value: "str | Strategy") -> "Strategy":
        """Accept ``polled``, ``PolledDictionary`` or the numeric selector ``2``."""
        if isinstance(value, Strategy):
            return value
        key = str(value).strip()
        aliases = {
            "1": cls.IMMEDIATE,
            "2": cls.POLLED_DICTIONARY,
            "3": cls.EXPIRING_CACHE,
            "immediate": cls.IMMEDIATE,
            "polleddictionary": cls.POLLED_DICTIONARY,
            "expiringcache": cls.EXPIRING_CACHE,
        }
        for member in cls:
            aliases[member.value] = member
        try:
            return aliases[key.lower()]
        except KeyError:
            raise ValueError(f"unknown coalescing strategy: {value!r}") from None


class RemovalReason(enum.Enum):
    EXPIRED = "expired"
    REPLACED = "replaced"
    MANUALLY_REMOVED = "manually_removed"
    DRAINED = "drained"
    IMMEDIATE = "immediate"


ReleaseCallback = Callable[[str, RemovalReason], None]


@dataclass
class PendingEntry:
    """A path waiting to be released. At most one exists per path."""

    path: str
    inserted_at: float
    expires_at: Optional[float] = None
    removal_reason: Optional[RemovalReason] = None

    def refresh(self, now: float, window: float) -> None:
        self.expires_at = now + window

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class Coalescer(abc.ABC):
    strategy: Strategy

    def __init__(self, release: ReleaseCallback, logger: Optional[logging.Logger] = None) -> None:
        self.release = release
        self.logger = logger or logging.getLogger("folder_watcher")

    @abc.abstractmethod
    def submit(self, path: str) -> None:
        """Record a notification for `path`. Must return without waiting on I/O."""

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def evict(self, path: str) -> bool:
        """Drop `path` without releasing it. Returns True if it was pending."""
        return False

    def pending_paths(self) -> List[str]:
        return []

    def __enter__(self) -> "Coalescer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.stop()
        return False
