"""Processors package for FolderWatcher.

Keep file-processing logic (backup, quarantine, dispatch, archive) here so the watcher remains small and testable.
"""

__all__ = ["batch", "dispatcher", "errors", "file_processor"]
