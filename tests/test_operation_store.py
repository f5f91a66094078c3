from datetime import datetime, timezone

import pytest

from models.operation import OperationType, QueuedOperation
from services.operation_store import OperationRecordStore
from storage.kv import MemoryStorage


def _record(op_id="op-1", **overrides):
    values = dict(
        id=op_id,
        type=OperationType.EVENT_LOG,
        payload={"event": "harvest"},
        queued_at=datetime(2024, 5, 1, 12, 0, 0, 250, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return QueuedOperation(**values)


@pytest.fixture()
def store():
    return OperationRecordStore(MemoryStorage())


@pytest.mark.asyncio
async def test_put_and_load_round_trip(store):
    record = _record(priority=4, max_retries=5, requires_network=False)
    await store.put(record)

    loaded = await store.get_queued("op-1")
    assert loaded == record
    assert await store.get_all_queued() == [record]
    assert await store.count_queued() == 1
    assert await store.storage.keys("queue:*") == ["queue:op-1"]


@pytest.mark.asyncio
async def test_remove_is_idempotent(store):
    await store.put(_record())
    await store.remove("op-1")
    await store.remove("op-1")
    await store.remove("never-existed")
    assert await store.get_all_queued() == []


@pytest.mark.asyncio
async def test_move_to_failed_leaves_single_copy(store):
    record = _record(retry_count=3)
    await store.put(record)
    await store.move_to_failed(record)

    assert await store.get_queued("op-1") is None
    assert await store.get_failed("op-1") == record
    assert await store.count_queued() == 0


@pytest.mark.asyncio
async def test_restore_moves_back(store):
    record = _record()
    await store.move_to_failed(record)
    await store.restore(record)

    assert await store.get_failed("op-1") is None
    assert await store.get_queued("op-1") == record


@pytest.mark.asyncio
async def test_reconcile_finishes_interrupted_move(store):
    # failed copy written, active copy never removed
    record = _record(retry_count=3)
    await store.put(record)
    await store.storage.set("failed:op-1", record.to_dict())
    await store.put(_record("op-2"))

    assert await store.reconcile() == ["op-1"]
    assert [r.id for r in await store.get_all_queued()] == ["op-2"]
    assert [r.id for r in await store.get_all_failed()] == ["op-1"]


@pytest.mark.asyncio
async def test_unreadable_records_are_skipped(store):
    await store.put(_record("good"))
    await store.storage.set(
        "queue:bad-type",
        {"id": "bad-type", "type": "teleport", "queuedAt": "2024-01-01T00:00:00Z"},
    )
    await store.storage.set("queue:no-date", {"id": "no-date", "type": "event_log"})
    await store.storage.set("queue:not-a-dict", [1, 2, 3])

    assert [r.id for r in await store.get_all_queued()] == ["good"]


@pytest.mark.asyncio
async def test_clear_helpers(store):
    await store.put(_record("a"))
    await store.put(_record("b"))
    await store.move_to_failed(_record("c"))

    assert await store.clear_queued() == 2
    assert await store.clear_failed() == 1
    assert await store.storage.keys() == []


def test_from_dict_defaults_missing_fields():
    record = QueuedOperation.from_dict(
        {"id": "x", "type": "product_create", "queuedAt": "2024-01-01T00:00:00.000001Z"}
    )
    assert record.retry_count == 0
    assert record.max_retries == 3
    assert record.priority == 0
    assert record.requires_network is True
    assert record.payload is None
    assert record.last_error is None
