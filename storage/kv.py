"""Namespaced, persistent key-value storage used by the offline queue."""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Pattern, Protocol, Tuple, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.errors import StorageReadError, StorageWriteError
from core.settings import QUEUE
from datetime_utils import ensure_utc, utc_now
from models.kv_entry import KeyValueEntry
from storage.db import create_db_engine, get_engine, get_session, init_db


logger = logging.getLogger("offline_sync.storage")


@runtime_checkable
class Storage(Protocol):
    """Async key-value store; ``*`` in ``keys()`` patterns matches any run of characters."""

    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def keys(self, pattern: Optional[str] = None) -> List[str]: ...

    async def has(self, key: str) -> bool: ...

    async def clear(self) -> None: ...


def compile_pattern(pattern: Optional[str]) -> Optional[Pattern[str]]:
    if not pattern:
        return None
    parts = (re.escape(part) for part in pattern.split("*"))
    return re.compile("^" + ".*".join(parts) + "$")


def literal_prefix(pattern: Optional[str]) -> str:
    if not pattern:
        return ""
    return pattern.split("*", 1)[0]


def _expires_at(ttl: Optional[float]) -> Optional[datetime]:
    if ttl is None:
        return None
    return utc_now() + timedelta(seconds=ttl)


def _is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return ensure_utc(expires_at) <= (now or utc_now())


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise StorageWriteError(f"Value for {key!r} is not serializable: {exc}", key=key) from exc


class SQLiteStorage:
    """``Storage`` backed by the ``keyvalueentry`` table of a SQLite database.

    Queries run synchronously on the calling event loop. Storage calls are
    serialized that way, at the cost of briefly stalling other tasks such as
    a connectivity probe while a query is running.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        namespace: str = QUEUE.namespace,
    ) -> None:
        self._session_factory = session_factory
        self.namespace = namespace

    @classmethod
    def open(cls, path: Optional[Path] = None, *, namespace: str = QUEUE.namespace) -> "SQLiteStorage":
        """Create the schema at ``path`` (default database when omitted) and bind to it."""

        engine = create_db_engine(path) if path is not None else get_engine()
        init_db(engine)
        return cls(lambda: get_session(engine), namespace=namespace)

    async def get(self, key: str) -> Any:
        try:
            with self._session_factory() as session:
                row = session.get(KeyValueEntry, (self.namespace, key))
                if row is None:
                    return None
                if _is_expired(row.expires_at):
                    session.delete(row)
                    session.commit()
                    return None
                raw = row.value
        except SQLAlchemyError as exc:
            raise StorageReadError(f"Failed to read {key!r}: {exc}", key=key) from exc

        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Dropping undecodable value stored under %s", key)
            await self.remove(key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        payload = _encode(key, value)
        try:
            with self._session_factory() as session:
                row = session.get(KeyValueEntry, (self.namespace, key))
                if row is None:
                    row = KeyValueEntry(namespace=self.namespace, key=key, value=payload)
                else:
                    row.value = payload
                    row.created_at = utc_now()
                row.expires_at = _expires_at(ttl)
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageWriteError(f"Failed to write {key!r}: {exc}", key=key) from exc

    async def remove(self, key: str) -> None:
        try:
            with self._session_factory() as session:
                row = session.get(KeyValueEntry, (self.namespace, key))
                if row is not None:
                    session.delete(row)
                    session.commit()
        except SQLAlchemyError as exc:
            raise StorageWriteError(f"Failed to remove {key!r}: {exc}", key=key) from exc

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        matcher = compile_pattern(pattern)
        prefix = literal_prefix(pattern)
        now = utc_now()
        try:
            with self._session_factory() as session:
                stmt = select(KeyValueEntry).where(KeyValueEntry.namespace == self.namespace)
                if prefix:
                    stmt = stmt.where(KeyValueEntry.key.startswith(prefix, autoescape=True))
                rows = list(session.exec(stmt.order_by(KeyValueEntry.key)))
        except SQLAlchemyError as exc:
            raise StorageReadError(f"Failed to list keys for {pattern!r}: {exc}") from exc

        result: List[str] = []
        for row in rows:
            if _is_expired(row.expires_at, now):
                continue
            # LIKE is case-insensitive in SQLite, the regex is not
            if matcher is None or matcher.match(row.key):
                result.append(row.key)
        return result

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def clear(self) -> None:
        try:
            with self._session_factory() as session:
                stmt = select(KeyValueEntry).where(KeyValueEntry.namespace == self.namespace)
                for row in session.exec(stmt).all():
                    session.delete(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageWriteError(f"Failed to clear namespace {self.namespace!r}: {exc}") from exc

    async def purge_expired(self) -> int:
        """Delete expired rows of this namespace and return how many were removed."""

        now = utc_now()
        removed = 0
        try:
            with self._session_factory() as session:
                stmt = select(KeyValueEntry).where(
                    KeyValueEntry.namespace == self.namespace,
                    KeyValueEntry.expires_at.is_not(None),
                )
                for row in session.exec(stmt).all():
                    if _is_expired(row.expires_at, now):
                        session.delete(row)
                        removed += 1
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageWriteError(f"Failed to purge namespace {self.namespace!r}: {exc}") from exc
        return removed


class MemoryStorage:
    """In-process ``Storage``; values are JSON round-tripped so callers get copies."""

    def __init__(self) -> None:
        self._items: Dict[str, Tuple[str, Optional[datetime]]] = {}

    async def get(self, key: str) -> Any:
        item = self._items.get(key)
        if item is None:
            return None
        raw, expires_at = item
        if _is_expired(expires_at):
            self._items.pop(key, None)
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._items[key] = (_encode(key, value), _expires_at(ttl))

    async def remove(self, key: str) -> None:
        self._items.pop(key, None)

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        matcher = compile_pattern(pattern)
        now = utc_now()
        return sorted(
            key
            for key, (_, expires_at) in self._items.items()
            if not _is_expired(expires_at, now) and (matcher is None or matcher.match(key))
        )

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def clear(self) -> None:
        self._items.clear()


__all__ = [
    "MemoryStorage",
    "SQLiteStorage",
    "Storage",
    "compile_pattern",
    "literal_prefix",
]
