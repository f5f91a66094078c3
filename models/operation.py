"""Queued operation records and sync status snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from core.errors import RecordDecodeError
from datetime_utils import parse_rfc3339, to_rfc3339_utc


class OperationType(str, Enum):
    PRODUCT_CREATE = "product_create"
    PRODUCT_UPDATE = "product_update"
    EVENT_LOG = "event_log"
    VERIFICATION_REQUEST = "verification_request"

    @classmethod
    def coerce(cls, value: "OperationType | str") -> "OperationType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unsupported operation type: {value!r}") from None


@dataclass
class QueuedOperation:
    """A unit of deferred mutating work waiting to be replayed."""

    id: str
    type: OperationType
    payload: Any
    queued_at: datetime
    retry_count: int = 0
    max_retries: int = 3
    priority: int = 0
    requires_network: bool = True
    last_error: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[int, datetime]:
        # higher priority first, then FIFO inside a priority band
        return (-self.priority, self.queued_at)

    @property
    def exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload,
            "queuedAt": to_rfc3339_utc(self.queued_at, precise=True),
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "priority": self.priority,
            "requiresNetwork": self.requires_network,
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "QueuedOperation":
        if not isinstance(data, dict):
            raise RecordDecodeError(f"Expected an object, got {type(data).__name__}")
        op_id = data.get("id")
        if not op_id:
            raise RecordDecodeError("Record has no id")
        try:
            op_type = OperationType(data.get("type"))
        except ValueError:
            raise RecordDecodeError(f"Record {op_id} has unknown type {data.get('type')!r}") from None
        queued_at = parse_rfc3339(data.get("queuedAt"))
        if queued_at is None:
            raise RecordDecodeError(f"Record {op_id} has no valid queuedAt")
        try:
            return cls(
                id=str(op_id),
                type=op_type,
                payload=data.get("payload"),
                queued_at=queued_at,
                retry_count=int(data.get("retryCount", 0)),
                max_retries=int(data.get("maxRetries", 3)),
                priority=int(data.get("priority", 0)),
                requires_network=bool(data.get("requiresNetwork", True)),
                last_error=data.get("lastError"),
            )
        except (TypeError, ValueError) as exc:
            raise RecordDecodeError(f"Record {op_id} is malformed: {exc}") from exc


@dataclass
class SyncStatus:
    syncing: bool = False
    queued_operations: int = 0
    last_sync: Optional[datetime] = None
    last_error: Optional[str] = None
    is_online: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "syncing": self.syncing,
            "queuedOperations": self.queued_operations,
            "lastSync": to_rfc3339_utc(self.last_sync),
            "lastError": self.last_error,
            "isOnline": self.is_online,
        }


@dataclass
class SyncReport:
    """Outcome counters of one ``sync()`` call."""

    ran: bool = False
    attempted: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    failed_ids: List[str] = field(default_factory=list)


__all__ = ["OperationType", "QueuedOperation", "SyncReport", "SyncStatus"]
