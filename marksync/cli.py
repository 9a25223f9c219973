#!/usr/bin/env python3
"""
marksync - bookmark sync engine

Command-line inspection and maintenance of the persisted sync state.
"""
import sys
import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict

from rich.console import Console
from rich.table import Table

from marksync.config import init_config, get_config
from marksync.engine import SyncEngine
from marksync.errors import SyncError, UnsupportedVersionError
from marksync.models import RemovedSyncRecord, SyncInfo
from marksync.remote import ApiClient
from marksync.store import SqlStore, StoreKey

logger = logging.getLogger(__name__)


console = Console()


def output_properties(title: str, data: Dict[str, Any], format: str = "table"):
    """Print a flat mapping as a two-column table or as JSON."""
    if format == "json":
        print(json.dumps(data, indent=2, default=str))
        return

    table = Table(title=title)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    for key, value in data.items():
        table.add_row(key.replace("_", " ").title(), "-" if value is None else str(value))
    console.print(table)


def get_store(args) -> SqlStore:
    return SqlStore(path=args.db) if args.db else SqlStore()


def _build_engine(store: SqlStore, client: ApiClient) -> SyncEngine:
    # No providers and no cipher: these commands never process the queue
    return SyncEngine(store, client, cipher=None, providers=[])


def cmd_status(args):
    """Show the persisted sync state."""
    store = get_store(args)
    try:
        sync_info = SyncInfo.from_dict(store.get_sync(StoreKey.SYNC_INFO))
        encrypted = store.get_sync(StoreKey.BOOKMARKS)
        data = {
            "enabled": bool(store.get_sync(StoreKey.SYNC_ENABLED, False)),
            "sync_id": sync_info.id,
            "service_url": sync_info.service_url or get_config().service_url,
            "data_version": sync_info.version,
            "client_version": get_config().app_version,
            "last_updated": store.get_sync(StoreKey.LAST_UPDATED),
            "cache_size": len(encrypted.encode("utf-8")) if encrypted else 0,
            "removed_sync": store.get_sync(StoreKey.REMOVED_SYNC) is not None,
        }
    finally:
        store.close()

    output_properties("Sync Status", data, args.output)


def cmd_removed(args):
    """Show the snapshot taken when the remote sync went missing."""
    store = get_store(args)
    try:
        raw = store.get_sync(StoreKey.REMOVED_SYNC)
    finally:
        store.close()

    if raw is None:
        console.print("[yellow]No removed sync recorded[/yellow]")
        return

    record = RemovedSyncRecord.from_dict(raw)
    if args.output == "json":
        print(json.dumps(record.to_dict(), indent=2, default=str))
        return

    bookmarks = record.bookmarks
    data = {
        "sync_id": record.sync_info.get("id"),
        "service_url": record.sync_info.get("service_url"),
        "data_version": record.sync_info.get("version"),
        "last_updated": record.last_updated,
        "bookmarks": len(bookmarks) if isinstance(bookmarks, (list, dict)) else 0,
    }
    output_properties("Removed Sync", data, args.output)


async def _check(args) -> Dict[str, Any]:
    store = get_store(args)
    try:
        sync_info = SyncInfo.from_dict(await store.get(StoreKey.SYNC_INFO))
        local_last_updated = await store.get(StoreKey.LAST_UPDATED)
        async with ApiClient(service_url=sync_info.service_url) as client:
            engine = _build_engine(store, client)
            updates_available = await engine.check_for_updates(log=False)
            try:
                await engine.check_sync_version_is_supported()
                version_supported = True
            except UnsupportedVersionError as e:
                logger.warning(e.message)
                version_supported = False
            remote_last_updated = await client.get_last_updated(sync_info.id)
    finally:
        store.close()

    return {
        "sync_id": sync_info.id,
        "local_last_updated": local_last_updated,
        "remote_last_updated": remote_last_updated,
        "updates_available": updates_available,
        "version_supported": version_supported,
    }


def cmd_check(args):
    """Query the remote service for updates and version compatibility."""
    data = asyncio.run(_check(args))
    output_properties("Remote Check", data, args.output)
    if not data["version_supported"]:
        sys.exit(2)


async def _disconnect(args):
    store = get_store(args)
    try:
        async with ApiClient() as client:
            engine = _build_engine(store, client)
            await engine.start()
            await engine.disconnect()
            await engine.close()
    finally:
        store.close()


def cmd_disconnect(args):
    """Disable sync and forget the sync id."""
    asyncio.run(_disconnect(args))
    console.print("[green]Sync disconnected[/green]")


def cmd_config(args):
    """Manage configuration."""
    config = get_config()

    if args.action == "show":
        if args.key:
            value = getattr(config, args.key, None)
            if value is not None:
                print(value)
            else:
                console.print(f"[red]Unknown config key: {args.key}[/red]")
                sys.exit(1)
        elif args.output == "json":
            print(json.dumps(config.to_dict(), indent=2))
        else:
            output_properties("Configuration", config.to_dict())

    elif args.action == "set":
        config.set_value(args.key, args.value)
        config.save()
        console.print(f"[green]Set {args.key} = {getattr(config, args.key)}[/green]")

    elif args.action == "init":
        config_path = Path.home() / ".config" / "marksync" / "config.toml"
        config.save(config_path)
        console.print(f"[green]Created config at {config_path}[/green]")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="marksync - bookmark sync engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  marksync status
  marksync check --output json
  marksync removed
  marksync disconnect
  marksync config show
  marksync config set update_check_period 600

Configuration:
  Default database: ./marksync.db or from config
  Config file: ~/.config/marksync/config.toml
  Environment: MARKSYNC_DATABASE, MARKSYNC_SERVICE_URL, MARKSYNC_LOG_LEVEL
        """
    )

    # Global options
    parser.add_argument("--db", help="Database file (default: marksync.db)")
    parser.add_argument("--config", help="Config file path")
    parser.add_argument("-o", "--output", choices=["table", "json"], help="Output format")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Commands")

    status_parser = subparsers.add_parser("status", help="Show sync state")
    status_parser.set_defaults(func=cmd_status)

    removed_parser = subparsers.add_parser("removed", help="Show the removed-sync snapshot")
    removed_parser.set_defaults(func=cmd_removed)

    check_parser = subparsers.add_parser("check", help="Check the remote service for updates")
    check_parser.set_defaults(func=cmd_check)

    disconnect_parser = subparsers.add_parser("disconnect", help="Disable sync and forget the sync id")
    disconnect_parser.set_defaults(func=cmd_disconnect)

    config_parser = subparsers.add_parser("config", help="Manage configuration")
    config_parser.add_argument("action", choices=["show", "set", "init"], help="Config action")
    config_parser.add_argument("key", nargs="?", help="Config key")
    config_parser.add_argument("value", nargs="?", help="Config value (for set)")
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args()

    # Initialize configuration with CLI overrides
    config_args = {}
    if args.output:
        config_args["output_format"] = args.output
    if args.config:
        config_args["config_file"] = Path(args.config)

    config = init_config(database=args.db, **config_args)

    if not args.output:
        args.output = config.output_format

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    # Execute command
    try:
        args.func(args)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except SyncError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
