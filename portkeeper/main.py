#!/usr/bin/env python3
"""
PortKeeper - listening port inventory and process control

Command-line host for the port registry:
- List listening ports with their owning processes
- Kill processes by port or PID (graceful, then forced)
- Manage favorite and watched ports
- Monitor watched ports for start/stop events
"""

import argparse
import logging
import sys
import threading
from typing import Optional

from . import __version__
from .config import APP_NAME
from .core import (
    ConsoleNotificationSink, LoggingNotificationSink, NotificationSink, PortFilter,
    PortRecord, PortRegistry, PortView, ProcessTerminator, SettingsStore, create_scanner,
)
from .utils.logging_config import get_log_file_path, get_logger, setup_logging

logger = get_logger('main')


def build_registry(settings_path: Optional[str] = None,
                   notifier: Optional[NotificationSink] = None) -> PortRegistry:
    """Wire scanner, terminator, settings and notifier into a registry."""
    scanner = create_scanner()
    return PortRegistry(
        scanner=scanner,
        terminator=ProcessTerminator(scanner),
        settings=SettingsStore(settings_path),
        notifier=notifier or LoggingNotificationSink(),
    )


def format_row(record: PortRecord, favorites: frozenset[int], watched: set[int]) -> str:
    marks = ("*" if record.port in favorites else " ") + ("w" if record.port in watched else " ")
    pid = str(record.pid) if record.is_active else "-"
    return (f"{marks} {record.display_port:<7} {pid:>7}  {record.process_name[:24]:<24} "
            f"{record.process_type.display_name:<12} {record.address:<16} {record.user[:16]:<16} "
            f"{record.command}")


def cmd_list(registry: PortRegistry, args: argparse.Namespace) -> int:
    registry.refresh()
    port_filter = PortFilter(
        search_text=args.search or "",
        min_port=args.min_port,
        max_port=args.max_port,
    )
    view = PortView(args.view)
    favorites = registry.favorites
    watched = {w.port for w in registry.watched_ports}

    header = (f"   {'PORT':<7} {'PID':>7}  {'PROCESS':<24} {'TYPE':<12} {'ADDRESS':<16} "
              f"{'USER':<16} COMMAND")

    if args.group:
        groups = registry.grouped_by_process(view, port_filter)
        for group in groups:
            ports = ", ".join(r.display_port for r in group.ports)
            print(f"{group.process_name} (PID {group.pid}): {ports}")
        print(f"\n{len(groups)} process(es)")
        return 0

    rows = registry.ports_for_view(view, port_filter)
    print(header)
    for record in rows:
        print(format_row(record, favorites, watched))
    print(f"\n{len(rows)} port(s)")
    return 0


def cmd_kill(registry: PortRegistry, args: argparse.Namespace) -> int:
    killed = registry.kill_all_on_port(args.port)
    if killed:
        print(f"Killed {killed} process(es) on port {args.port}")
        return 0
    print(f"No process killed on port {args.port}")
    return 1


def cmd_kill_pid(registry: PortRegistry, args: argparse.Namespace) -> int:
    success, message = registry.kill_pid(args.pid)
    print(message)
    return 0 if success else 1


def cmd_favorite(registry: PortRegistry, args: argparse.Namespace) -> int:
    if registry.toggle_favorite(args.port):
        print(f"Port {args.port} added to favorites")
    else:
        print(f"Port {args.port} removed from favorites")
    return 0


def cmd_watch(registry: PortRegistry, args: argparse.Namespace) -> int:
    if args.action == "add":
        added = registry.add_watched_port(
            args.port,
            notify_on_start=not args.no_start,
            notify_on_stop=not args.no_stop,
        )
        print(f"Watching port {args.port}" if added else f"Port {args.port} is already watched")
        return 0

    if registry.remove_watched_port(args.port):
        print(f"Stopped watching port {args.port}")
        return 0
    print(f"Port {args.port} is not watched")
    return 1


def cmd_monitor(registry: PortRegistry, args: argparse.Namespace) -> int:
    if args.interval is not None:
        registry.set_refresh_interval(args.interval)

    watched = ", ".join(str(w.port) for w in registry.watched_ports) or "none"
    print(f"Monitoring every {registry.refresh_interval}s (watched: {watched}). Ctrl+C to stop.")

    registry.initialize()
    stop = threading.Event()
    try:
        while not stop.wait(0.5):
            pass
    except KeyboardInterrupt:
        print("\nStopping monitor")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="portkeeper", description=f"{APP_NAME} - manage listening ports")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--settings", help="Path to the settings JSON file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to the console")

    sub = parser.add_subparsers(dest="command", required=True)

    list_parser = sub.add_parser("list", help="List listening ports")
    list_parser.add_argument("--view", choices=[v.value for v in PortView], default=PortView.ALL.value)
    list_parser.add_argument("--search", help="Filter by name, port, PID, address, user or command")
    list_parser.add_argument("--min-port", type=int)
    list_parser.add_argument("--max-port", type=int)
    list_parser.add_argument("--group", action="store_true", help="Group ports by process")
    list_parser.set_defaults(func=cmd_list)

    kill_parser = sub.add_parser("kill", help="Kill every process listening on a port")
    kill_parser.add_argument("port", type=int)
    kill_parser.set_defaults(func=cmd_kill)

    kill_pid_parser = sub.add_parser("kill-pid", help="Kill a process by PID")
    kill_pid_parser.add_argument("pid", type=int)
    kill_pid_parser.set_defaults(func=cmd_kill_pid)

    favorite_parser = sub.add_parser("favorite", help="Toggle a favorite port")
    favorite_parser.add_argument("port", type=int)
    favorite_parser.set_defaults(func=cmd_favorite)

    watch_parser = sub.add_parser("watch", help="Add or remove a watched port")
    watch_parser.add_argument("action", choices=["add", "remove"])
    watch_parser.add_argument("port", type=int)
    watch_parser.add_argument("--no-start", action="store_true", help="Do not notify when the port starts")
    watch_parser.add_argument("--no-stop", action="store_true", help="Do not notify when the port stops")
    watch_parser.set_defaults(func=cmd_watch)

    monitor_parser = sub.add_parser("monitor", help="Refresh continuously and report watched port events")
    monitor_parser.add_argument("--interval", type=int, help="Refresh interval in seconds (saved)")
    monitor_parser.set_defaults(func=cmd_monitor)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for PortKeeper."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Keep INFO records in the log file so they do not interleave with table output
    setup_logging(console_level=logging.DEBUG if args.verbose else logging.WARNING)
    logger.debug(f"{APP_NAME} {__version__} starting: {args.command}")
    if args.verbose:
        logger.debug(f"Log file: {get_log_file_path()}")

    notifier = ConsoleNotificationSink() if args.command == "monitor" else LoggingNotificationSink()
    registry = build_registry(args.settings, notifier)

    try:
        return args.func(registry, args)
    except ValueError as e:
        parser.error(str(e))
    finally:
        registry.shutdown()


if __name__ == "__main__":
    sys.exit(main())
