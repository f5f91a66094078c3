"""Record types and ORM models used by the offline queue."""
from .kv_entry import KeyValueEntry
from .operation import OperationType, QueuedOperation, SyncReport, SyncStatus

__all__ = ["KeyValueEntry", "OperationType", "QueuedOperation", "SyncReport", "SyncStatus"]
