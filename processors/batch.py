"""One-shot processing of a single file or of a directory's files, without a watcher."""
from __future__ import annotations

import fnmatch
import logging
import os
from typing import List, Optional

from processors.dispatcher import TypeDispatcher
from processors.errors import InputNotFoundError
from processors.file_processor import FileTask, process_file

FILE_TYPE_PATTERNS = {
    "TEXT": "*.txt",
}


def process_single_file(
    path: str,
    dispatcher: Optional[TypeDispatcher] = None,
    logger: Optional[logging.Logger] = None,
) -> FileTask:
    logger = logger or logging.getLogger("folder_watcher")
    logger.info("Single file %s selected", path)
    return process_file(path, dispatcher=dispatcher, logger=logger)


def process_directory(
    directory: str,
    file_type: str,
    dispatcher: Optional[TypeDispatcher] = None,
    logger: Optional[logging.Logger] = None,
) -> List[FileTask]:
    """Process every top-level file in `directory` matching `file_type`.

    - `file_type` is a key of FILE_TYPE_PATTERNS (case-insensitive).
    - Raises ValueError for an unknown type and InputNotFoundError when the
      directory does not exist.
    """
    logger = logger or logging.getLogger("folder_watcher")
    pattern = FILE_TYPE_PATTERNS.get(file_type.upper())
    if pattern is None:
        raise ValueError(f"{file_type} is not supported")
    if not os.path.isdir(directory):
        raise InputNotFoundError(directory)

    logger.info("Directory %s selected for %s files", directory, file_type.upper())
    paths = sorted(
        entry.path
        for entry in os.scandir(directory)
        if entry.is_file() and fnmatch.fnmatch(entry.name.lower(), pattern)
    )
    return [process_file(path, dispatcher=dispatcher, logger=logger) for path in paths]
