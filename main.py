"""Operator console for inspecting and repairing the offline operation queue."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from core.settings import CONFIG_PATH, CONSOLE_LOG_PATH, DB_PATH
from models.operation import QueuedOperation
from services.connectivity import ManualConnectivity
from services.sync_engine import SyncEngine
from storage.config import load_config
from storage.kv import SQLiteStorage


def build_engine(
    db_path: Optional[Path] = None,
    config_path: Optional[Path] = None,
    *,
    online: bool = False,
) -> SyncEngine:
    """Engine over the SQLite queue; offline by default so nothing is replayed."""

    storage = SQLiteStorage.open(db_path or DB_PATH)
    config = load_config(config_path or CONFIG_PATH)
    config.auto_sync = False
    return SyncEngine(
        storage,
        ManualConnectivity(online),
        config=config,
        logger=logging.getLogger("offline_sync.console"),
    )


def _format_operation(op: QueuedOperation) -> str:
    line = (
        f"{op.id}  {op.type.value:<20} prio={op.priority:<3} "
        f"retries={op.retry_count}/{op.max_retries} queued={op.to_dict()['queuedAt']}"
    )
    if op.last_error:
        line += f"  last_error={op.last_error!r}"
    return line


async def run_command(engine: SyncEngine, args: argparse.Namespace) -> List[str]:
    await engine.start()
    try:
        if args.command == "status":
            return [json.dumps(engine.get_sync_status().as_dict(), ensure_ascii=False, indent=2)]
        if args.command == "list":
            return [_format_operation(op) for op in await engine.get_queued_operations()]
        if args.command == "failed":
            return [_format_operation(op) for op in await engine.get_failed_operations()]
        if args.command == "retry":
            if await engine.retry_failed_operation(args.op_id):
                logging.info("Operator re-queued %s", args.op_id)
                return [f"Re-queued {args.op_id}"]
            return [f"No failed operation {args.op_id}"]
        if args.command == "remove":
            await engine.remove_operation(args.op_id)
            logging.info("Operator removed %s", args.op_id)
            return [f"Removed {args.op_id}"]
        if args.command == "clear":
            if args.failed:
                await engine.clear_failed()
                logging.info("Operator cleared the failed store")
                return ["Failed operations cleared"]
            await engine.clear_queue()
            logging.info("Operator cleared the queue")
            return ["Queue cleared"]
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await engine.close()


def _setup_logging(log_path: Path) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(log_path),
        filemode="a",
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__ or "")
    parser.add_argument("--db", type=Path, default=DB_PATH, help="Queue database (default: %(default)s)")
    parser.add_argument(
        "--config", type=Path, default=CONFIG_PATH, help="Config overrides (default: %(default)s)"
    )
    parser.add_argument(
        "--log",
        type=Path,
        default=CONSOLE_LOG_PATH,
        help="Path to a log file (default: %(default)s)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show queue size and sync status")
    sub.add_parser("list", help="List queued operations in replay order")
    sub.add_parser("failed", help="List quarantined operations")
    retry = sub.add_parser("retry", help="Move a failed operation back to the queue")
    retry.add_argument("op_id")
    remove = sub.add_parser("remove", help="Drop a queued operation")
    remove.add_argument("op_id")
    clear = sub.add_parser("clear", help="Drop every queued operation")
    clear.add_argument("--failed", action="store_true", help="Clear the failed store instead")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    _setup_logging(args.log)
    engine = build_engine(args.db, args.config)
    try:
        for line in asyncio.run(run_command(engine, args)):
            print(line)
    except Exception as exc:  # pragma: no cover - defensive
        logging.exception("Console command %s failed: %s", args.command, exc)
        raise


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
