"""CLI entry point for taskbuddy."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import load_config
from .errors import ApiError, SyncError, UnauthorizedError
from .models import Recurrence, TaskDraft
from .offline import OfflineTaskClient, create_client


LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# Log every request at INFO; only shown when debugging
_HTTP_LOGGERS = ("httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for piping `watch` output into other tools."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging for the CLI.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level = LOG_LEVELS.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    handler.setFormatter(
        JSONFormatter()
        if json_output
        else logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s", "%H:%M:%S")
    )
    logging.basicConfig(level=level, handlers=[handler])

    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(level if level == logging.DEBUG else logging.WARNING)


async def _open_client(args: argparse.Namespace) -> OfflineTaskClient:
    """Build a client, probing the API unless --offline was given."""
    config = load_config(args.config)
    client = create_client(config, online=False)
    if not args.offline:
        # Starts offline so a reachable server counts as a reconnect edge
        await client.monitor.set_online(await client.api.ping())
    return client


def _print_task(task) -> None:
    mark = "x" if task.completed else " "
    when = f" @ {task.scheduled_time}" if task.scheduled_time else ""
    local = " (not synced)" if task.id.is_local else ""
    print(f"  [{mark}] {task.id.value}  {task.title}{when}{local}")


async def cmd_status(args: argparse.Namespace) -> int:
    """Show connectivity and pending sync state."""
    client = await _open_client(args)
    try:
        status = client.engine.get_sync_status()
        status["online"] = client.is_online
        status["base_url"] = client.api.base_url
        status["cached_tasks"] = len(client.get_tasks())

        if args.json_output:
            print(json.dumps(status, indent=2))
        else:
            print("taskbuddy Status")
            print("================")
            print(f"User: {status['user']}")
            print(f"API ({status['base_url']}): {'Online' if status['online'] else 'Offline'}")
            print(f"Cached tasks: {status['cached_tasks']}")
            print(f"Pending operations: {status['pending_operations']}")
            print(f"Last sync: {status['last_sync'] or 'never'}")
    finally:
        client.store.backend.close()
    return 0


async def cmd_tasks(args: argparse.Namespace) -> int:
    """List cached tasks, refreshing from the server when online."""
    client = await _open_client(args)
    try:
        snapshot = await client.refresh()
        if not snapshot.tasks:
            print("No tasks")
        for task in snapshot.tasks:
            _print_task(task)
        progress = snapshot.progress
        print()
        print(
            f"Points: {progress.total_points}  Completed: {progress.completed_tasks}  "
            f"Stickers: {len(progress.unlocked_stickers)}"
        )
    finally:
        client.store.backend.close()
    return 0


async def cmd_add(args: argparse.Namespace) -> int:
    """Create a task."""
    client = await _open_client(args)
    try:
        draft = TaskDraft(
            title=args.title,
            description=args.description,
            scheduled_time=args.time,
            duration_minutes=args.duration,
            sticker_id=args.sticker,
            recurring=Recurrence(args.recurring),
        )
        task = await client.create_task_offline_aware(draft)
        _print_task(task)
    finally:
        client.store.backend.close()
    return 0


async def _with_task(args: argparse.Namespace, action: str) -> int:
    client = await _open_client(args)
    try:
        task_id = client.find_task_id(args.task_id)
        if task_id is None:
            print(f"No cached task with id {args.task_id}", file=sys.stderr)
            return 1

        if action == "complete":
            task = await client.complete_task_offline_aware(task_id)
            if task:
                _print_task(task)
        else:
            await client.delete_task_offline_aware(task_id)
            print(f"Deleted {task_id.value}")

        if not client.is_online:
            print(f"Offline: {client.pending_count()} operations waiting to sync")
    finally:
        client.store.backend.close()
    return 0


async def cmd_complete(args: argparse.Namespace) -> int:
    """Mark a task completed."""
    return await _with_task(args, "complete")


async def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a task."""
    return await _with_task(args, "delete")


async def cmd_timer(args: argparse.Namespace) -> int:
    """Record a finished focus-timer session."""
    client = await _open_client(args)
    try:
        task_id = client.find_task_id(args.task) if args.task else None
        progress = await client.complete_timer_offline_aware(args.minutes, task_id)
        print(f"Timer sessions completed: {progress.timer_sessions_completed}")
    finally:
        client.store.backend.close()
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Replay pending operations and refresh the cache."""
    client = await _open_client(args)
    try:
        if not client.is_online:
            print(f"Offline: {client.pending_count()} operations waiting to sync")
            return 1

        report = await client.full_sync()
        if report is None:
            print("Sync already in progress")
            return 1

        print(
            f"Sync {report.status.value}: synced={report.replay.synced}, "
            f"failed={report.replay.failed}, tasks={report.tasks_cached}"
        )
        if report.error:
            print(f"Error: {report.error}", file=sys.stderr)
            return 1
    finally:
        client.store.backend.close()
    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    """Probe the API and sync on every reconnect until interrupted."""
    config = load_config(args.config)
    client = create_client(config, online=False)
    interval = args.interval or config.sync.probe_interval_seconds

    client.engine.add_listener(
        lambda report: print(
            f"[{report.timestamp:%H:%M:%S}] sync {report.status.value}, "
            f"synced={report.replay.synced}, failed={report.replay.failed}"
        )
    )
    client.monitor.add_callback(
        lambda online: print("Online" if online else "Offline")
    )

    print(f"Watching {client.api.base_url} every {interval}s (Ctrl+C to stop)")
    try:
        await client.monitor.watch(client.api.ping, interval_seconds=interval)
    finally:
        client.store.backend.close()
    return 0


def cmd_login(args: argparse.Namespace) -> int:
    """Switch the active user."""
    config = load_config(args.config)
    client = create_client(config, online=False)
    try:
        client.login(args.user)
        print(f"Active user: {args.user}")
    finally:
        client.store.backend.close()
    return 0


def cmd_logout(args: argparse.Namespace) -> int:
    """Clear the active user and the identifier map."""
    config = load_config(args.config)
    client = create_client(config, online=False)
    try:
        client.logout()
        print("Logged out")
    finally:
        client.store.backend.close()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="taskbuddy",
        description="Offline task cache and sync for the taskbuddy app",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=list(LOG_LEVELS),
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Don't contact the server; queue changes for later",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    tasks_parser = subparsers.add_parser("tasks", help="List tasks")
    tasks_parser.set_defaults(func=cmd_tasks)

    add_parser = subparsers.add_parser("add", help="Create a task")
    add_parser.add_argument("title", help="Task title")
    add_parser.add_argument("--description", default=None)
    add_parser.add_argument("--time", default=None, help="Scheduled time (HH:MM)")
    add_parser.add_argument("--duration", type=int, default=None, help="Duration in minutes")
    add_parser.add_argument("--sticker", default=None, help="Reward sticker id")
    add_parser.add_argument(
        "--recurring",
        choices=[r.value for r in Recurrence],
        default=Recurrence.NONE.value,
    )
    add_parser.set_defaults(func=cmd_add)

    complete_parser = subparsers.add_parser("complete", help="Complete a task")
    complete_parser.add_argument("task_id", help="Task id")
    complete_parser.set_defaults(func=cmd_complete)

    delete_parser = subparsers.add_parser("delete", help="Delete a task")
    delete_parser.add_argument("task_id", help="Task id")
    delete_parser.set_defaults(func=cmd_delete)

    timer_parser = subparsers.add_parser("timer", help="Record a finished timer session")
    timer_parser.add_argument("minutes", type=int, help="Session length in minutes")
    timer_parser.add_argument("--task", default=None, help="Task id the session was for")
    timer_parser.set_defaults(func=cmd_timer)

    sync_parser = subparsers.add_parser("sync", help="Sync pending operations now")
    sync_parser.set_defaults(func=cmd_sync)

    watch_parser = subparsers.add_parser("watch", help="Sync automatically on reconnect")
    watch_parser.add_argument(
        "-i", "--interval",
        type=int,
        default=None,
        help="Seconds between reachability probes",
    )
    watch_parser.set_defaults(func=cmd_watch)

    login_parser = subparsers.add_parser("login", help="Set the active user")
    login_parser.add_argument("user", help="User id")
    login_parser.set_defaults(func=cmd_login)

    logout_parser = subparsers.add_parser("logout", help="Clear the active user")
    logout_parser.set_defaults(func=cmd_logout)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    try:
        if asyncio.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except KeyboardInterrupt:
        print("\nStopped")
        return 0
    except UnauthorizedError:
        print("Not authenticated: log in to the app and try again", file=sys.stderr)
        return 1
    except (ApiError, SyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
