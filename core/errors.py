"""Exception hierarchy for the offline queue."""
from __future__ import annotations

from typing import Optional


class OfflineSyncError(Exception):
    """Base class for every error raised by the offline queue."""


class StorageError(OfflineSyncError):
    """The key-value storage backend failed."""

    def __init__(self, message: str, *, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key


class StorageReadError(StorageError):
    pass


class StorageWriteError(StorageError):
    pass


class RecordDecodeError(OfflineSyncError):
    """A stored operation record could not be turned back into an operation."""


__all__ = [
    "OfflineSyncError",
    "RecordDecodeError",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
]
