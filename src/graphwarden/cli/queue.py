"""Operator tool for the priority queue and worker heartbeats.

Usage:
    graphwarden-queue add 123 456 --priority high --reason "reported"
    graphwarden-queue lengths
    graphwarden-queue info 123
    graphwarden-queue abort 123
    graphwarden-queue status --type friend
"""

import argparse
import asyncio

from rich.console import Console
from rich.table import Table

from graphwarden.main.config import get_settings
from graphwarden.queue.models import PRIORITY_ORDER, Priority, QueueItem
from graphwarden.redis.connection import create_redis_client, wait_for_redis
from graphwarden.worker.factory import build_priority_queue
from graphwarden.worker.status.monitor import StatusMonitor

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="graphwarden-queue", description=__doc__.splitlines()[0])
    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add", help="Enqueue users")
    add.add_argument("user_ids", nargs="+", type=int)
    add.add_argument(
        "--priority",
        choices=[priority.value for priority in PRIORITY_ORDER],
        default=Priority.NORMAL.value,
    )
    add.add_argument(
        "--check-exists",
        action="store_true",
        help="Skip users the store updated within the freshness window",
    )
    add.add_argument("--reason", default=None)
    add.add_argument("--added-by", default=None)

    subparsers.add_parser("lengths", help="Show lane depths")

    info = subparsers.add_parser("info", help="Show queue status of a user")
    info.add_argument("user_id", type=int)

    abort = subparsers.add_parser("abort", help="Abort processing of a queued user")
    abort.add_argument("user_id", type=int)

    status = subparsers.add_parser("status", help="List live worker heartbeats")
    status.add_argument("--type", dest="worker_type", default=None)
    return parser


async def run_command(args: argparse.Namespace, redis_client) -> None:
    queue = build_priority_queue(redis_client)

    match args.command:
        case "add":
            for user_id in args.user_ids:
                await queue.enqueue(
                    QueueItem(
                        user_id=user_id,
                        priority=Priority(args.priority),
                        check_exists=args.check_exists,
                        reason=args.reason,
                        added_by=args.added_by,
                    )
                )
            console.print(f"Enqueued {len(args.user_ids)} user(s) with {args.priority} priority")
        case "lengths":
            table = Table("Lane", "Depth")
            for priority, depth in (await queue.get_queue_lengths()).items():
                table.add_row(priority.value, str(depth))
            console.print(table)
        case "info":
            info = await queue.get_queue_info(args.user_id)
            console.print(info.model_dump(mode="json"))
        case "abort":
            await queue.abort(args.user_id)
            console.print(f"Abort requested for user {args.user_id}")
        case "status":
            table = Table("Type", "Worker", "Task", "Progress", "Healthy")
            for status in await StatusMonitor(redis_client).list_statuses(args.worker_type):
                table.add_row(
                    status.worker_type,
                    status.worker_id,
                    status.current_task,
                    f"{status.progress}%",
                    "yes" if status.is_healthy else "[red]no[/red]",
                )
            console.print(table)


async def _main(args: argparse.Namespace) -> None:
    settings = get_settings()
    redis_client = create_redis_client(settings)
    try:
        await wait_for_redis(redis_client, settings)
        await run_command(args, redis_client)
    finally:
        await redis_client.aclose()


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(_main(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
