"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(os.environ if env is None else env)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    override = environ.get("OFFLINE_SYNC_DATA_DIR")
    if override:
        return Path(override).expanduser()

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "OfflineSync"


DATA_DIR = get_default_data_dir(APP_NAME)
LOGS_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, LOGS_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "offline_queue.db"
CONFIG_PATH = DATA_DIR / "config.json"
SYNC_LOG_PATH = LOGS_DIR / "sync.log"
CONSOLE_LOG_PATH = LOGS_DIR / "console.log"


@dataclass(frozen=True)
class QueueSettings:
    namespace: str = "offline:"
    queue_prefix: str = "queue:"
    failed_prefix: str = "failed:"
    default_max_retries: int = 3
    default_priority: int = 0
    auto_sync_on_enqueue: bool = True
    error_message_limit: int = 1000


QUEUE = QueueSettings()


@dataclass(frozen=True)
class ConnectivitySettings:
    probe_host: str = "1.1.1.1"
    probe_port: int = 443
    interval_sec: float = 30.0
    timeout_sec: float = 5.0


CONNECTIVITY = ConnectivitySettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOGS_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "SYNC_LOG_PATH",
    "CONSOLE_LOG_PATH",
    "QUEUE",
    "CONNECTIVITY",
    "QueueSettings",
    "ConnectivitySettings",
    "get_default_data_dir",
]
