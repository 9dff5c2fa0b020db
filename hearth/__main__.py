"""CLI entry point for Hearth."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .repository import Repository
from .store import LocalStore
from .sync import ChangeQueue, RemoteAuthority, SyncEvent, SyncManager, SyncStatus
from .sync.manager import LAST_SYNC_KEY

logger = logging.getLogger("hearth")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def _open_store(config: Config) -> tuple[LocalStore, ChangeQueue]:
    store = LocalStore(config.store.db_path)
    store.connect()
    queue = ChangeQueue(store)
    queue.connect()
    return store, queue


def _format_ms(timestamp: int) -> str:
    if not timestamp:
        return "Never"
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")


async def cmd_status(args: argparse.Namespace) -> int:
    """Show local data and sync status."""
    config = load_config(args.config)
    store, queue = _open_store(config)

    try:
        last_sync = int(store.get_state(LAST_SYNC_KEY, 0) or 0)
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "client": {
                "name": config.client.name,
                "client_type": config.client.client_type,
            },
            "store": store.get_stats(),
            "sync": {
                "enabled": config.sync.enabled,
                "server_url": config.sync.server_url or None,
                "reachable": False,
                "pending_changes": queue.count_pending(),
                "last_sync_timestamp": last_sync,
                "last_sync_date": _format_ms(last_sync),
            },
        }

        if config.sync.server_url:
            authority = RemoteAuthority(
                config.sync.server_url,
                auth_token=config.sync.auth_token,
                probe_timeout=config.connectivity.probe_timeout_seconds,
            )
            try:
                status_data["sync"]["reachable"] = await authority.health_check()
            finally:
                await authority.close()
    finally:
        store.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    sync_status = status_data["sync"]
    print("Hearth Status")
    print("=============")
    print(f"Client: {config.client.name} ({config.client.client_type})")
    print(f"Database: {config.store.db_path}")
    print()

    print("Sync:")
    if sync_status["server_url"]:
        reachable = "Reachable" if sync_status["reachable"] else "Not reachable"
        print(f"  Server: {sync_status['server_url']} ({reachable})")
    else:
        print("  Server: not configured")
    print(f"  Pending changes: {sync_status['pending_changes']}")
    print(f"  Last sync: {sync_status['last_sync_date']}")
    print()

    print("Collections:")
    for name, counts in status_data["store"]["collections"].items():
        print(f"  {name}: {counts['live']} live, {counts['deleted']} deleted")

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run a single sync round."""
    config = load_config(args.config)
    if not config.sync.server_url:
        print("Error: sync.server_url is not configured", file=sys.stderr)
        return 1

    store, queue = _open_store(config)
    manager = SyncManager.from_config(config, store, queue)

    try:
        result = await manager.sync("cli")
    finally:
        await manager.authority.close()
        store.close()

    if result.status == SyncStatus.FAILED:
        print(f"Sync failed: {result.error}", file=sys.stderr)
        return 1

    if result.status != SyncStatus.SUCCESS:
        print(f"Sync {result.status.value}: {result.error}")
        return 0

    print(
        f"Sync complete: sent={result.changes_sent}, accepted={result.accepted}, "
        f"rejected={result.rejected}, server_changes={result.server_changes_applied}, "
        f"remaining={result.remaining}"
    )
    return 0


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the sync manager in the foreground."""
    config = load_config(args.config)
    if not config.sync.enabled:
        print("Sync is disabled in configuration", file=sys.stderr)
        return 1
    if not config.sync.server_url:
        print("Error: sync.server_url is not configured", file=sys.stderr)
        return 1

    store, queue = _open_store(config)
    manager = SyncManager.from_config(config, store, queue)

    def log_event(event: SyncEvent) -> None:
        logger.info(f"Sync event: {event.kind.value} {event.data or ''}")

    manager.events.subscribe(log_event)

    print(f"Starting Hearth sync: {config.client.name}")
    print(f"Server: {config.sync.server_url}")
    print(f"Interval: {config.sync.interval_seconds}s")

    try:
        await manager.start()
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await manager.stop()
        store.close()

    return 0


def cmd_pending(args: argparse.Namespace) -> int:
    """List queued changes."""
    config = load_config(args.config)
    store, queue = _open_store(config)

    try:
        entries = queue.pending(limit=args.limit)
        total = queue.count_pending()
    finally:
        store.close()

    if not entries:
        print("No pending changes.")
        return 0

    print(f"{total} pending change(s):\n")
    for entry in entries:
        print(
            f"  #{entry.id:<6} {_format_ms(entry.created_at)}  "
            f"{entry.operation.value:<6} {entry.table_name}/{entry.record_id}"
        )
    if total > len(entries):
        print(f"  ... and {total - len(entries)} more")

    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    """Delete all local data."""
    if not args.yes:
        print("This deletes all local records and unsynced changes.", file=sys.stderr)
        print("Re-run with --yes to confirm.", file=sys.stderr)
        return 1

    config = load_config(args.config)
    store, queue = _open_store(config)
    try:
        Repository(store, queue).reset()
    finally:
        store.close()

    print("All local data cleared.")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="hearth",
        description="Local-first data layer with background sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show local data and sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Run one sync round now")
    sync_parser.set_defaults(func=cmd_sync)

    # Run command
    run_parser = subparsers.add_parser("run", help="Run background sync until interrupted")
    run_parser.set_defaults(func=cmd_run)

    # Pending command
    pending_parser = subparsers.add_parser("pending", help="List queued changes")
    pending_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=20,
        help="Maximum entries to show (default: 20)",
    )
    pending_parser.set_defaults(func=cmd_pending)

    # Reset command
    reset_parser = subparsers.add_parser("reset", help="Delete all local data")
    reset_parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm deletion",
    )
    reset_parser.set_defaults(func=cmd_reset)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if asyncio.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
