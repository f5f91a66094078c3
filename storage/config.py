"""Simple JSON-backed configuration store."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from core.settings import CONFIG_PATH, CONNECTIVITY, QUEUE


@dataclass
class SyncConfig:
    """User overrides persisted to ``config.json``."""

    default_max_retries: int = QUEUE.default_max_retries
    default_priority: int = QUEUE.default_priority
    auto_sync: bool = QUEUE.auto_sync_on_enqueue
    probe_host: str = CONNECTIVITY.probe_host
    probe_port: int = CONNECTIVITY.probe_port
    probe_interval_sec: float = CONNECTIVITY.interval_sec


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _load_raw(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def load_config(path: Optional[Path] = None) -> SyncConfig:
    target = path or CONFIG_PATH
    data = _load_raw(target)
    known = {f.name for f in fields(SyncConfig)}
    cfg = SyncConfig()
    for key, value in data.items():
        if key in known and value is not None:
            setattr(cfg, key, value)
    if cfg.default_max_retries < 0:
        cfg.default_max_retries = QUEUE.default_max_retries
    return cfg


def save_config(config: SyncConfig, path: Optional[Path] = None) -> None:
    target = path or CONFIG_PATH
    _ensure_parent(target)
    payload = json.dumps(asdict(config), ensure_ascii=False, indent=2, sort_keys=True)
    tmp = target.with_suffix(".tmp")
    try:
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(target)
    finally:
        if tmp.exists():
            try:
                tmp.unlink()
            except OSError:
                pass


def update_config(path: Optional[Path] = None, **changes: Any) -> SyncConfig:
    target = path or CONFIG_PATH
    cfg = load_config(target)
    for key, value in changes.items():
        if hasattr(cfg, key):
            setattr(cfg, key, value)
    save_config(cfg, target)
    return cfg


__all__ = ["SyncConfig", "load_config", "save_config", "update_config"]
