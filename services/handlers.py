"""Caller-supplied callbacks run against every replayed operation."""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, FrozenSet, Iterable, List, Optional, Union

from models.operation import OperationType, QueuedOperation


SyncHandler = Callable[[QueuedOperation], Union[Awaitable[Any], Any]]


@dataclass(frozen=True, eq=False)
class _Registration:
    callback: SyncHandler
    types: Optional[FrozenSet[OperationType]] = None

    def accepts(self, operation: QueuedOperation) -> bool:
        return self.types is None or operation.type in self.types


class HandlerRegistry:
    """Ordered set of sync handlers.

    Without a ``types`` filter a handler sees every operation and is expected
    to ignore the types it does not own.
    """

    def __init__(self) -> None:
        self._registrations: List[_Registration] = []

    def __len__(self) -> int:
        return len(self._registrations)

    def register(
        self,
        callback: SyncHandler,
        *,
        types: Optional[Iterable["OperationType | str"]] = None,
    ) -> Callable[[], None]:
        type_filter = None
        if types is not None:
            type_filter = frozenset(OperationType.coerce(t) for t in types)
        registration = _Registration(callback, type_filter)
        self._registrations.append(registration)

        def unregister() -> None:
            try:
                self._registrations.remove(registration)
            except ValueError:
                pass

        return unregister

    def handlers_for(self, operation: QueuedOperation) -> List[SyncHandler]:
        return [r.callback for r in self._registrations if r.accepts(operation)]

    async def dispatch(self, operation: QueuedOperation) -> None:
        """Run the matching handlers one after another; the first error propagates."""

        for callback in self.handlers_for(operation):
            result = callback(operation)
            if inspect.isawaitable(result):
                await result


__all__ = ["HandlerRegistry", "SyncHandler"]
