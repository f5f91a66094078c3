import pytest
from sqlalchemy import inspect
from sqlmodel import Session

from core.errors import StorageWriteError
from models.kv_entry import KeyValueEntry
from storage.db import create_db_engine, init_db
from storage.kv import MemoryStorage, SQLiteStorage, Storage, compile_pattern


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        return MemoryStorage()
    return SQLiteStorage.open(tmp_path / "kv.db")


def test_pattern_only_expands_star():
    matcher = compile_pattern("queue:*")
    assert matcher.match("queue:abc")
    assert not matcher.match("failed:abc")
    assert not compile_pattern("a.c*").match("abc")
    assert compile_pattern(None) is None


def test_implementations_satisfy_protocol(storage):
    assert isinstance(storage, Storage)


@pytest.mark.asyncio
async def test_set_get_remove(storage):
    await storage.set("queue:1", {"a": 1, "nested": [1, 2]})
    assert await storage.get("queue:1") == {"a": 1, "nested": [1, 2]}
    assert await storage.has("queue:1") is True

    await storage.remove("queue:1")
    await storage.remove("queue:1")
    assert await storage.get("queue:1") is None
    assert await storage.has("queue:1") is False


@pytest.mark.asyncio
async def test_prefix_scan(storage):
    await storage.set("queue:b", 1)
    await storage.set("queue:a", 2)
    await storage.set("failed:c", 3)
    await storage.set("QUEUE:d", 4)

    assert await storage.keys("queue:*") == ["queue:a", "queue:b"]
    assert await storage.keys("failed:*") == ["failed:c"]
    assert len(await storage.keys()) == 4


@pytest.mark.asyncio
async def test_upsert_overwrites(storage):
    await storage.set("queue:1", {"retryCount": 0})
    await storage.set("queue:1", {"retryCount": 1})
    assert await storage.get("queue:1") == {"retryCount": 1}
    assert await storage.keys("queue:*") == ["queue:1"]


@pytest.mark.asyncio
async def test_ttl_expiry(storage):
    await storage.set("cache:stale", "x", ttl=0)
    await storage.set("cache:fresh", "y", ttl=3600)
    assert await storage.get("cache:stale") is None
    assert await storage.get("cache:fresh") == "y"
    assert await storage.keys("cache:*") == ["cache:fresh"]


@pytest.mark.asyncio
async def test_clear(storage):
    await storage.set("queue:1", 1)
    await storage.set("failed:2", 2)
    await storage.clear()
    assert await storage.keys() == []


@pytest.mark.asyncio
async def test_unserialisable_value_is_a_write_error(storage):
    with pytest.raises(StorageWriteError):
        await storage.set("queue:1", object())


@pytest.mark.asyncio
async def test_memory_storage_returns_copies():
    storage = MemoryStorage()
    value = {"a": [1]}
    await storage.set("k", value)
    value["a"].append(2)
    loaded = await storage.get("k")
    loaded["a"].append(3)
    assert await storage.get("k") == {"a": [1]}


@pytest.mark.asyncio
async def test_sqlite_namespaces_are_isolated(tmp_path):
    engine = create_db_engine(tmp_path / "shared.db")
    init_db(engine)
    first = SQLiteStorage(lambda: Session(engine), namespace="offline:")
    second = SQLiteStorage(lambda: Session(engine), namespace="cache:")

    await first.set("queue:1", "a")
    await second.set("queue:1", "b")
    await second.clear()

    assert await first.get("queue:1") == "a"
    assert await second.keys() == []


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path):
    path = tmp_path / "durable.db"
    await SQLiteStorage.open(path).set("queue:1", {"payload": {"a": 1}})

    reopened = SQLiteStorage.open(path)
    assert await reopened.get("queue:1") == {"payload": {"a": 1}}


@pytest.mark.asyncio
async def test_sqlite_drops_corrupt_rows(tmp_path):
    engine = create_db_engine(tmp_path / "corrupt.db")
    init_db(engine)
    storage = SQLiteStorage(lambda: Session(engine))
    with Session(engine) as session:
        session.add(KeyValueEntry(namespace=storage.namespace, key="queue:bad", value="{not json"))
        session.commit()

    assert await storage.get("queue:bad") is None
    assert await storage.keys("queue:*") == []


@pytest.mark.asyncio
async def test_sqlite_purge_expired(tmp_path):
    storage = SQLiteStorage.open(tmp_path / "ttl.db")
    await storage.set("a", 1, ttl=0)
    await storage.set("b", 2, ttl=0)
    await storage.set("c", 3)
    assert await storage.purge_expired() == 2
    assert await storage.keys() == ["c"]


def test_init_db_creates_only_declared_schema(tmp_path):
    engine = create_db_engine(tmp_path / "schema.db")
    init_db(engine)
    init_db(engine)

    inspector = inspect(engine)
    columns = {column["name"] for column in inspector.get_columns("keyvalueentry")}
    indexes = [index["name"] for index in inspector.get_indexes("keyvalueentry")]

    assert columns == {"namespace", "key", "value", "created_at", "expires_at"}
    # the composite primary key already covers (namespace, key) lookups
    assert indexes == ["ix_keyvalueentry_expires_at"]
