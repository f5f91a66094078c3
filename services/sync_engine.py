from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Iterable, List, Optional, Set

from core.errors import StorageError
from core.settings import QUEUE, SYNC_LOG_PATH
from datetime_utils import next_after, utc_now
from models.operation import OperationType, QueuedOperation, SyncReport, SyncStatus
from services.connectivity import ConnectivityObserver
from services.handlers import HandlerRegistry, SyncHandler
from services.operation_store import OperationRecordStore
from storage.config import SyncConfig
from storage.kv import Storage


def _ensure_logger() -> logging.Logger:
    logger = logging.getLogger("offline_sync.sync")
    if not logger.handlers:
        SYNC_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(SYNC_LOG_PATH, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _describe(exc: BaseException) -> str:
    message = str(exc) or type(exc).__name__
    return message[: QUEUE.error_message_limit]


class SyncEngine:
    """Durable offline queue replayed through registered handlers.

    One replay pass runs at a time. Passes are started explicitly with
    :meth:`sync`, or in the background after :meth:`enqueue` and on every
    offline to online transition reported by the connectivity observer.
    """

    def __init__(
        self,
        storage: Storage,
        connectivity: ConnectivityObserver,
        *,
        config: Optional[SyncConfig] = None,
        store: Optional[OperationRecordStore] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store or OperationRecordStore(storage)
        self.connectivity = connectivity
        self.config = config or SyncConfig()
        self.handlers = HandlerRegistry()
        self.logger = logger or _ensure_logger()
        self._status = SyncStatus(is_online=bool(connectivity.is_online))
        self._last_queued_at: Optional[datetime] = None
        self._background: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = _running_loop()
        self._pending_sync = False
        self._unsubscribe: Optional[Callable[[], None]] = connectivity.subscribe(
            self._on_connectivity_change
        )

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._status.is_online = bool(self.connectivity.is_online)
        if self._unsubscribe is None:
            self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)
        await self.store.reconcile()
        await self._update_queue_count()
        self.logger.info(
            "Sync engine started: %d queued, %s",
            self._status.queued_operations,
            "online" if self._status.is_online else "offline",
        )
        if self._status.is_online and (self._status.queued_operations or self._pending_sync):
            self._schedule_sync()
        self._pending_sync = False

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.wait_idle()
        self.logger.info("Sync engine closed")

    async def wait_idle(self) -> None:
        """Wait until every background pass scheduled so far has finished."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def __aenter__(self) -> "SyncEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    def on_sync(
        self,
        callback: SyncHandler,
        *,
        types: Optional[Iterable["OperationType | str"]] = None,
    ) -> Callable[[], None]:
        return self.handlers.register(callback, types=types)

    async def enqueue(
        self,
        type: "OperationType | str",
        payload: Any,
        *,
        priority: Optional[int] = None,
        max_retries: Optional[int] = None,
        requires_network: Optional[bool] = None,
    ) -> str:
        op_type = OperationType.coerce(type)
        retries = self.config.default_max_retries if max_retries is None else int(max_retries)
        if retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {retries}")

        queued_at = next_after(self._last_queued_at)
        self._last_queued_at = queued_at
        operation = QueuedOperation(
            id=uuid.uuid4().hex,
            type=op_type,
            payload=payload,
            queued_at=queued_at,
            retry_count=0,
            max_retries=retries,
            priority=self.config.default_priority if priority is None else int(priority),
            requires_network=True if requires_network is None else bool(requires_network),
        )
        await self.store.put(operation)
        await self._update_queue_count()
        self.logger.debug("Queued %s operation %s", op_type.value, operation.id)

        if self.config.auto_sync and self._status.is_online and not self._status.syncing:
            self._schedule_sync()
        return operation.id

    async def sync(self) -> SyncReport:
        report = SyncReport()
        if self._status.syncing or not self._status.is_online:
            self.logger.debug(
                "Sync skipped (syncing=%s, online=%s)", self._status.syncing, self._status.is_online
            )
            return report

        report.ran = True
        self._status.syncing = True
        self._status.last_error = None
        try:
            operations = await self.get_queued_operations()
            self.logger.info("Sync pass started with %d operations", len(operations))
            for operation in operations:
                if operation.requires_network and not self._status.is_online:
                    report.skipped += 1
                    continue
                # removed or cleared by the caller while the pass was running
                current = await self.store.get_queued(operation.id)
                if current is None:
                    continue

                report.attempted += 1
                try:
                    await self.handlers.dispatch(current)
                except Exception as exc:
                    await self._record_failure(current, exc, report)
                    continue
                await self.store.remove(current.id)
                report.succeeded += 1

            self._status.last_sync = utc_now()
            self.logger.info(
                "Sync pass finished: %d ok, %d retried, %d failed, %d skipped",
                report.succeeded,
                report.retried,
                report.failed,
                report.skipped,
            )
        except Exception as exc:
            self._status.last_error = _describe(exc)
            self.logger.exception("Sync pass aborted: %s", exc)
        finally:
            self._status.syncing = False
            await self._update_queue_count()
        return report

    async def get_queued_operations(self) -> List[QueuedOperation]:
        operations = await self.store.get_all_queued()
        return sorted(operations, key=lambda op: op.sort_key)

    async def get_failed_operations(self) -> List[QueuedOperation]:
        operations = await self.store.get_all_failed()
        return sorted(operations, key=lambda op: op.sort_key)

    async def retry_failed_operation(self, op_id: str) -> bool:
        record = await self.store.get_failed(op_id)
        if record is None:
            self.logger.debug("No failed operation %s to retry", op_id)
            return False
        record.retry_count = 0
        await self.store.restore(record)
        await self._update_queue_count()
        self.logger.info("Failed operation %s moved back to the queue", op_id)
        return True

    async def remove_operation(self, op_id: str) -> None:
        await self.store.remove(op_id)
        await self._update_queue_count()

    async def clear_queue(self) -> None:
        removed = await self.store.clear_queued()
        await self._update_queue_count()
        self.logger.info("Queue cleared (%d operations)", removed)

    async def clear_failed(self) -> None:
        removed = await self.store.clear_failed()
        self.logger.info("Failed store cleared (%d operations)", removed)

    def get_sync_status(self) -> SyncStatus:
        return replace(self._status)

    # ------------------------------------------------------------------
    # Helpers
    async def _record_failure(
        self, operation: QueuedOperation, exc: Exception, report: SyncReport
    ) -> None:
        operation.retry_count += 1
        operation.last_error = _describe(exc)
        if operation.exhausted:
            await self.store.move_to_failed(operation)
            report.failed += 1
            report.failed_ids.append(operation.id)
            self.logger.error(
                "Operation %s (%s) moved to failed after %d attempts: %s",
                operation.id,
                operation.type.value,
                operation.retry_count,
                operation.last_error,
            )
        else:
            await self.store.put(operation)
            report.retried += 1
            self.logger.warning(
                "Operation %s (%s) failed, attempt %d/%d: %s",
                operation.id,
                operation.type.value,
                operation.retry_count,
                operation.max_retries,
                operation.last_error,
            )

    async def _update_queue_count(self) -> None:
        try:
            self._status.queued_operations = await self.store.count_queued()
        except StorageError as exc:
            self.logger.error("Could not count queued operations: %s", exc)

    def _bound_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        if self._loop is not None and self._loop.is_closed():
            self._loop = None
        return self._loop

    def _on_connectivity_change(self, online: bool) -> None:
        # observers may report from their own thread; state lives on the loop
        loop = self._bound_loop()
        if loop is not None and _running_loop() is not loop:
            loop.call_soon_threadsafe(self._apply_connectivity, online)
        else:
            self._apply_connectivity(online)

    def _apply_connectivity(self, online: bool) -> None:
        self._status.is_online = online
        if online:
            self.logger.info("Connectivity restored, scheduling sync")
            self._schedule_sync()
        else:
            self.logger.info("Connectivity lost, queue kept for later")

    def _schedule_sync(self) -> None:
        running = _running_loop()
        loop = self._bound_loop() or running
        if loop is None:
            self._pending_sync = True
            self.logger.debug("No event loop bound, sync deferred until start()")
            return
        self._loop = loop
        if running is loop:
            self._spawn_sync()
        else:
            loop.call_soon_threadsafe(self._spawn_sync)

    def _spawn_sync(self) -> None:
        self._pending_sync = False
        task = asyncio.get_running_loop().create_task(self.sync())
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._status.last_error = _describe(exc)
            self.logger.error("Background sync crashed: %s", exc, exc_info=exc)


__all__ = ["SyncEngine"]
