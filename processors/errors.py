"""Errors raised by the file-processing pipeline.

Every error is terminal for the task that raised it; nothing is retried.
An unsupported file type is not an error (see ``dispatcher.Outcome``).
"""
from __future__ import annotations


class ProcessingError(Exception):
    """Base class for pipeline failures. Carries the path being processed."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(message)
        self.path = path


class InputNotFoundError(ProcessingError):
    """The input file vanished before it could be backed up."""

    def __init__(self, path: str) -> None:
        super().__init__(path, f"file {path} does not exist")


class AlreadyInFlightError(ProcessingError):
    """A file of the same name is already sitting in quarantine."""

    def __init__(self, path: str, quarantine_path: str) -> None:
        super().__init__(path, f"a file with the name {quarantine_path} is already being processed")
        self.quarantine_path = quarantine_path


class DirectoryCreateError(ProcessingError):
    def __init__(self, path: str, directory: str, cause: OSError) -> None:
        super().__init__(path, f"could not create {directory}: {cause}")
        self.directory = directory


class FileIOError(ProcessingError):
    """A copy, move or delete failed part way through the pipeline."""


class HandlerError(ProcessingError):
    """A type handler raised something other than an OSError."""
