"""Maps a file extension to the handler that processes files of that type.

Handlers receive the quarantined path and return nothing. Unknown types are
reported as ``Outcome.UNSUPPORTED``; the dispatcher never raises for them.
"""
from __future__ import annotations

import enum
import logging
from typing import Callable, Dict, Optional

Handler = Callable[[str], None]


class Outcome(enum.Enum):
    HANDLED = "handled"
    UNSUPPORTED = "unsupported"


def normalize_extension(extension: str) -> str:
    ext = extension.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


def process_text_file(path: str, logger: Optional[logging.Logger] = None) -> None:
    """Read a text file and log a short summary of its contents."""
    logger = logger or logging.getLogger("folder_watcher")
    logger.info("Processing text file %s", path)
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        content = f.read()
    logger.info("Read %d lines (%d characters) from %s", len(content.splitlines()), len(content), path)


class TypeDispatcher:
    def __init__(
        self,
        handlers: Optional[Dict[str, Handler]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("folder_watcher")
        self._handlers: Dict[str, Handler] = {}
        for extension, handler in (handlers or {}).items():
            self.register(extension, handler)

    def register(self, extension: str, handler: Handler) -> None:
        ext = normalize_extension(extension)
        if not ext:
            raise ValueError("extension must not be empty")
        self._handlers[ext] = handler

    def supports(self, extension: str) -> bool:
        return normalize_extension(extension) in self._handlers

    def extensions(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, extension: str, path: str) -> Outcome:
        handler = self._handlers.get(normalize_extension(extension))
        if handler is None:
            self.logger.warning("%s is an unsupported file type: %s", extension or "(no extension)", path)
            return Outcome.UNSUPPORTED
        handler(path)
        return Outcome.HANDLED


def default_dispatcher(logger: Optional[logging.Logger] = None) -> TypeDispatcher:
    """Dispatcher with the built-in handlers (plain text only)."""
    logger = logger or logging.getLogger("folder_watcher")
    return TypeDispatcher({".txt": lambda path: process_text_file(path, logger)}, logger=logger)
