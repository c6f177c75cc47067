"""File processing pipeline for FolderWatcher.

A file is driven through a fixed sequence of stages:

    START -> BACKED_UP -> QUARANTINED -> DISPATCHED -> ARCHIVED -> CLEANED_UP

with ``FAILED`` reachable from any of them. All output directories are created
next to the watched folder, under the parent of the folder holding the input:

    <root>/backup/<name>.<ext>              latest snapshot, overwritten
    <root>/processing/<name>.<ext>/<name>.<ext>   transient quarantine
    <root>/complete/<name>-<uuid>.<ext>     archived result

A failed step halts the task without rolling back earlier steps. The backup
copy and anything already moved stay where they are for manual recovery.
"""
from __future__ import annotations

import enum
import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from typing import Optional

from processors.dispatcher import Outcome, TypeDispatcher, default_dispatcher
from processors.errors import (
    AlreadyInFlightError,
    DirectoryCreateError,
    FileIOError,
    HandlerError,
    InputNotFoundError,
    ProcessingError,
)

BACKUP_DIR_NAME = "backup"
PROCESSING_DIR_NAME = "processing"
COMPLETE_DIR_NAME = "complete"


class Stage(enum.IntEnum):
    START = 0
    BACKED_UP = 1
    QUARANTINED = 2
    DISPATCHED = 3
    ARCHIVED = 4
    CLEANED_UP = 5
    FAILED = 6


@dataclass
class FileTask:
    """One file's journey through the pipeline. Lives for a single ``process`` call."""

    input_path: str
    root_directory: str = ""
    stage: Stage = Stage.START
    backup_path: Optional[str] = None
    quarantine_path: Optional[str] = None
    archive_path: Optional[str] = None
    extension: str = ""
    outcome: Optional[Outcome] = None
    error: Optional[ProcessingError] = None

    @property
    def finished(self) -> bool:
        return self.stage in (Stage.CLEANED_UP, Stage.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.stage is Stage.CLEANED_UP

    def advance(self, stage: Stage) -> None:
        if self.finished or stage is Stage.FAILED or stage != self.stage + 1:
            raise ValueError(f"cannot move task for {self.input_path} from {self.stage.name} to {stage.name}")
        self.stage = stage

    def fail(self, error: ProcessingError) -> None:
        if self.finished:
            raise ValueError(f"task for {self.input_path} already finished as {self.stage.name}")
        self.error = error
        self.stage = Stage.FAILED


def archive_name(filename: str) -> str:
    """Return ``<stem>-<uuid><ext>`` for ``filename``; unique on every call."""
    stem, ext = os.path.splitext(filename)
    return f"{stem}-{uuid.uuid4()}{ext}"


class FileProcessor:
    def __init__(
        self,
        input_path: str,
        dispatcher: Optional[TypeDispatcher] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("folder_watcher")
        self.dispatcher = dispatcher or default_dispatcher(self.logger)
        self.task = FileTask(input_path=os.path.abspath(input_path))

    def process(self) -> FileTask:
        """Run every stage in order and return the finished task.

        Pipeline failures are recorded on ``task.error`` rather than raised.
        """
        task = self.task
        self.logger.info("Begin process of %s", task.input_path)
        try:
            self._backup(task)
            self._quarantine(task)
            self._dispatch(task)
            self._archive(task)
            self._cleanup(task)
        except ProcessingError as exc:
            self.logger.error("Processing of %s failed after %s: %s", task.input_path, task.stage.name, exc)
            task.fail(exc)
        else:
            self.logger.info("Completed %s -> %s", task.input_path, task.archive_path)
        return task

    def _ensure_dir(self, task: FileTask, name: str) -> str:
        directory = os.path.join(task.root_directory, name)
        if not os.path.isdir(directory):
            self.logger.info("Creating %s", directory)
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            raise DirectoryCreateError(task.input_path, directory, exc) from exc
        return directory

    def _backup(self, task: FileTask) -> None:
        if not os.path.isfile(task.input_path):
            raise InputNotFoundError(task.input_path)

        task.root_directory = os.path.dirname(os.path.dirname(task.input_path))
        task.extension = os.path.splitext(task.input_path)[1]
        backup_dir = self._ensure_dir(task, BACKUP_DIR_NAME)

        backup_path = os.path.join(backup_dir, os.path.basename(task.input_path))
        self.logger.info("Copying %s to %s", task.input_path, backup_path)
        try:
            shutil.copy2(task.input_path, backup_path)
        except FileNotFoundError as exc:
            raise InputNotFoundError(task.input_path) from exc
        except OSError as exc:
            raise FileIOError(task.input_path, f"backup of {task.input_path} failed: {exc}") from exc
        task.backup_path = backup_path
        task.advance(Stage.BACKED_UP)

    def _quarantine(self, task: FileTask) -> None:
        processing_dir = self._ensure_dir(task, PROCESSING_DIR_NAME)
        filename = os.path.basename(task.input_path)

        # mkdir is atomic: exactly one task can claim a given filename
        claim_dir = os.path.join(processing_dir, filename)
        try:
            os.mkdir(claim_dir)
        except FileExistsError as exc:
            raise AlreadyInFlightError(task.input_path, claim_dir) from exc
        except OSError as exc:
            raise DirectoryCreateError(task.input_path, claim_dir, exc) from exc

        quarantine_path = os.path.join(claim_dir, filename)
        self.logger.info("Moving %s to %s", task.input_path, quarantine_path)
        try:
            shutil.move(task.input_path, quarantine_path)
        except OSError as exc:
            self._release_claim(claim_dir)
            if isinstance(exc, FileNotFoundError):
                raise InputNotFoundError(task.input_path) from exc
            raise FileIOError(task.input_path, f"could not quarantine {task.input_path}: {exc}") from exc
        task.quarantine_path = quarantine_path
        task.advance(Stage.QUARANTINED)

    def _release_claim(self, claim_dir: str) -> None:
        try:
            os.rmdir(claim_dir)
        except OSError as exc:
            self.logger.warning("Could not release quarantine claim %s: %s", claim_dir, exc)

    def _dispatch(self, task: FileTask) -> None:
        try:
            task.outcome = self.dispatcher.dispatch(task.extension, task.quarantine_path)
        except OSError as exc:
            raise FileIOError(task.input_path, f"handler for {task.extension} failed: {exc}") from exc
        except Exception as exc:
            raise HandlerError(task.input_path, f"handler for {task.extension} failed: {exc!r}") from exc
        task.advance(Stage.DISPATCHED)

    def _archive(self, task: FileTask) -> None:
        complete_dir = self._ensure_dir(task, COMPLETE_DIR_NAME)
        archive_path = os.path.join(complete_dir, archive_name(os.path.basename(task.input_path)))
        self.logger.info("Moving %s to %s", task.quarantine_path, archive_path)
        try:
            shutil.move(task.quarantine_path, archive_path)
        except OSError as exc:
            raise FileIOError(task.input_path, f"could not archive {task.quarantine_path}: {exc}") from exc
        task.archive_path = archive_path
        task.advance(Stage.ARCHIVED)

    def _cleanup(self, task: FileTask) -> None:
        # Non-recursive: fails if anything besides our own file landed here
        claim_dir = os.path.dirname(task.quarantine_path)
        try:
            os.rmdir(claim_dir)
        except OSError as exc:
            raise FileIOError(task.input_path, f"could not remove quarantine directory {claim_dir}: {exc}") from exc
        task.advance(Stage.CLEANED_UP)


def process_file(
    path: str,
    dispatcher: Optional[TypeDispatcher] = None,
    logger: Optional[logging.Logger] = None,
) -> FileTask:
    """Run ``path`` through the whole pipeline and return its finished task."""
    return FileProcessor(path, dispatcher=dispatcher, logger=logger).process()
