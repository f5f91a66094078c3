from __future__ import annotations

import logging
from typing import List, Optional

from core.errors import RecordDecodeError
from core.settings import QUEUE
from models.operation import QueuedOperation
from storage.kv import Storage


logger = logging.getLogger("offline_sync.store")


class OperationRecordStore:
    """Durable queued/failed operation records on top of a ``Storage``.

    Active records live under ``queue:<id>``, quarantined ones under
    ``failed:<id>``. Moves between the two write the destination before
    removing the source, so an interrupted move can leave a record in both
    stores but never in neither.
    """

    def __init__(
        self,
        storage: Storage,
        *,
        queue_prefix: str = QUEUE.queue_prefix,
        failed_prefix: str = QUEUE.failed_prefix,
    ) -> None:
        self.storage = storage
        self.queue_prefix = queue_prefix
        self.failed_prefix = failed_prefix

    def _queue_key(self, op_id: str) -> str:
        return f"{self.queue_prefix}{op_id}"

    def _failed_key(self, op_id: str) -> str:
        return f"{self.failed_prefix}{op_id}"

    async def _load(self, key: str) -> Optional[QueuedOperation]:
        data = await self.storage.get(key)
        if data is None:
            return None
        try:
            return QueuedOperation.from_dict(data)
        except RecordDecodeError as exc:
            logger.warning("Skipping unreadable record %s: %s", key, exc)
            return None

    async def _load_prefix(self, prefix: str) -> List[QueuedOperation]:
        result: List[QueuedOperation] = []
        for key in await self.storage.keys(f"{prefix}*"):
            record = await self._load(key)
            if record is not None:
                result.append(record)
        return result

    # ----- active queue -----
    async def put(self, record: QueuedOperation) -> None:
        await self.storage.set(self._queue_key(record.id), record.to_dict())

    async def get_queued(self, op_id: str) -> Optional[QueuedOperation]:
        return await self._load(self._queue_key(op_id))

    async def get_all_queued(self) -> List[QueuedOperation]:
        return await self._load_prefix(self.queue_prefix)

    async def queued_ids(self) -> List[str]:
        keys = await self.storage.keys(f"{self.queue_prefix}*")
        return [key[len(self.queue_prefix):] for key in keys]

    async def count_queued(self) -> int:
        return len(await self.storage.keys(f"{self.queue_prefix}*"))

    async def remove(self, op_id: str) -> None:
        await self.storage.remove(self._queue_key(op_id))

    async def clear_queued(self) -> int:
        keys = await self.storage.keys(f"{self.queue_prefix}*")
        for key in keys:
            await self.storage.remove(key)
        return len(keys)

    # ----- failed store -----
    async def get_failed(self, op_id: str) -> Optional[QueuedOperation]:
        return await self._load(self._failed_key(op_id))

    async def get_all_failed(self) -> List[QueuedOperation]:
        return await self._load_prefix(self.failed_prefix)

    async def remove_failed(self, op_id: str) -> None:
        await self.storage.remove(self._failed_key(op_id))

    async def clear_failed(self) -> int:
        keys = await self.storage.keys(f"{self.failed_prefix}*")
        for key in keys:
            await self.storage.remove(key)
        return len(keys)

    # ----- moves -----
    async def move_to_failed(self, record: QueuedOperation) -> None:
        await self.storage.set(self._failed_key(record.id), record.to_dict())
        await self.storage.remove(self._queue_key(record.id))

    async def restore(self, record: QueuedOperation) -> None:
        await self.storage.set(self._queue_key(record.id), record.to_dict())
        await self.storage.remove(self._failed_key(record.id))

    async def reconcile(self) -> List[str]:
        """Finish interrupted ``move_to_failed`` calls; returns the ids fixed."""

        failed_keys = await self.storage.keys(f"{self.failed_prefix}*")
        failed_ids = {key[len(self.failed_prefix):] for key in failed_keys}
        fixed: List[str] = []
        for op_id in await self.queued_ids():
            if op_id in failed_ids:
                await self.storage.remove(self._queue_key(op_id))
                fixed.append(op_id)
        if fixed:
            logger.warning("Dropped %d active records already quarantined: %s", len(fixed), fixed)
        return fixed


__all__ = ["OperationRecordStore"]
