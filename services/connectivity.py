"""Connectivity observers reporting online/offline transitions."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Protocol, runtime_checkable

from core.settings import CONNECTIVITY
from storage.config import SyncConfig


logger = logging.getLogger("offline_sync.connectivity")

ConnectivityListener = Callable[[bool], None]


@runtime_checkable
class ConnectivityObserver(Protocol):
    @property
    def is_online(self) -> bool: ...

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]: ...


class _BaseConnectivity:
    def __init__(self, online: bool = False) -> None:
        self._online = online
        self._listeners: List[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def _transition(self, online: bool) -> bool:
        if online == self._online:
            return False
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener %r failed", listener)
        return True


class ManualConnectivity(_BaseConnectivity):
    """Observer driven by the host application (OS hooks, UI toggles, tests)."""

    def set_online(self, online: bool) -> bool:
        """Record the new state; returns ``True`` when it was a transition."""

        return self._transition(bool(online))


class ProbeConnectivity(_BaseConnectivity):
    """Polls a TCP endpoint and reports reachability changes."""

    def __init__(
        self,
        host: str = CONNECTIVITY.probe_host,
        port: int = CONNECTIVITY.probe_port,
        *,
        interval: float = CONNECTIVITY.interval_sec,
        timeout: float = CONNECTIVITY.timeout_sec,
        online: bool = False,
    ) -> None:
        super().__init__(online)
        self.host = host
        self.port = port
        self.interval = interval
        self.timeout = timeout
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: SyncConfig) -> "ProbeConnectivity":
        return cls(config.probe_host, config.probe_port, interval=config.probe_interval_sec)

    async def probe(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as exc:
            logger.debug("Probe %s:%s failed: %s", self.host, self.port, exc)
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def check(self) -> bool:
        online = await self.probe()
        self._transition(online)
        return online

    async def _loop(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


__all__ = [
    "ConnectivityListener",
    "ConnectivityObserver",
    "ManualConnectivity",
    "ProbeConnectivity",
]
