"""SQLModel table backing the namespaced key-value storage."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class KeyValueEntry(SQLModel, table=True):
    namespace: str = Field(primary_key=True)
    key: str = Field(primary_key=True)
    value: str
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = Field(default=None, index=True)


__all__ = ["KeyValueEntry"]
