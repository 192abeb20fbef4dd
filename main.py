"""Command-line front end for the offline action queue."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from core.action_kinds import kind_label, kind_options
from core.settings import CONNECTIVITY, DB_PATH, LOG_DIR, SYNC
from datetime_utils import to_rfc3339_utc
from services.api_client import RemoteApiClient
from services.connectivity import ConnectivityMonitor, HttpProbe
from services.pending_actions_queue import PendingActionsQueue
from services.sync_errors import OfflineSyncError
from services.sync_service import OfflineSyncManager
from storage.db import create_queue_engine, init_db, session_factory_for
from storage.device import get_client_id


CLI_LOG_PATH = LOG_DIR / "cli.log"


def build_manager(db_path: Path, api_url: str, *, online: bool = True) -> OfflineSyncManager:
    """Composition root: every collaborator is constructed here and passed down."""

    engine = init_db(create_queue_engine(db_path))
    queue = PendingActionsQueue(session_factory_for(engine))
    client = RemoteApiClient(api_url, client_id=get_client_id())
    monitor = ConnectivityMonitor(initial_online=online)
    return OfflineSyncManager(client, queue, monitor=monitor)


def _print_actions(manager: OfflineSyncManager) -> None:
    actions = manager.actions()
    if not actions:
        print("Queue is empty.")
        return
    for action in actions:
        marker = "terminal" if action.terminal else action.status
        print(
            f"{action.id}  {action.kind:<16} {marker:<9} attempts={action.attempts} "
            f"created={to_rfc3339_utc(action.created_at)}  ({kind_label(action.kind)})"
        )
        if action.last_error:
            print(f"    last error: {action.last_error}")


def _probe(manager: OfflineSyncManager, api_url: str) -> None:
    if not CONNECTIVITY.probe_enabled:
        return
    probe = HttpProbe(manager.monitor, api_url)
    try:
        probe.check()
    finally:
        probe.stop()


def _setup_logging(log_path: Path) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(log_path),
        filemode="a",
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__ or "")
    parser.add_argument("--db", type=Path, default=DB_PATH, help="Queue database (default: %(default)s)")
    parser.add_argument("--api", default=SYNC.api_base_url, help="API base URL (default: %(default)s)")
    parser.add_argument("--log", type=Path, default=CLI_LOG_PATH, help="Log file (default: %(default)s)")

    commands = parser.add_subparsers(dest="command", required=True)
    status = commands.add_parser("status", help="Show queue and connectivity status")
    status.add_argument("--offline", action="store_true", help="Skip the probe and report the API as unreachable")
    commands.add_parser("list", help="List queued actions in replay order")

    enqueue = commands.add_parser("enqueue", help="Queue an action for replay")
    enqueue.add_argument("kind", choices=sorted(kind_options()))
    enqueue.add_argument("payload", help="JSON object with the action payload")

    sync = commands.add_parser("sync", help="Replay queued actions")
    sync.add_argument("--offline", action="store_true", help="Skip the probe and treat the API as unreachable")

    discard = commands.add_parser("discard", help="Drop an action from the queue")
    discard.add_argument("action_id")

    retry = commands.add_parser("retry", help="Return a rejected action to the queue")
    retry.add_argument("action_id")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)
    _setup_logging(args.log)

    manager = build_manager(args.db, args.api, online=not getattr(args, "offline", False))
    try:
        if args.command == "status":
            if not args.offline:
                _probe(manager, args.api)
            print(json.dumps(manager.get_status().as_dict(), indent=2))
        elif args.command == "list":
            _print_actions(manager)
        elif args.command == "enqueue":
            try:
                payload = json.loads(args.payload)
                action = manager.enqueue(args.kind, payload)
            except (json.JSONDecodeError, ValueError, OfflineSyncError) as exc:
                print(f"Cannot queue action: {exc}", file=sys.stderr)
                return 2
            print(action.id)
        elif args.command == "sync":
            if not args.offline:
                _probe(manager, args.api)
            result = manager.sync()
            print(f"{result.outcome.value}: {result.synced} synced")
            if result.failed_action_id:
                print(f"blocked at {result.failed_action_id}")
            for action_id in result.terminal_ids:
                print(f"rejected {action_id}")
            return 0 if result.ok else 1
        elif args.command == "discard":
            if not manager.discard(args.action_id):
                print(f"No such action: {args.action_id}", file=sys.stderr)
                return 1
        elif args.command == "retry":
            if manager.retry(args.action_id) is None:
                print(f"No such action: {args.action_id}", file=sys.stderr)
                return 1
    except Exception as exc:  # pragma: no cover - defensive
        logging.exception("Command %s failed: %s", args.command, exc)
        raise
    finally:
        manager.close()
        manager.client.close()
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
