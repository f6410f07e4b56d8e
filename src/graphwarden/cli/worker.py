"""Entry point for running crawl, queue and maintenance workers.

Usage:
    graphwarden-worker friend --workers 4
    graphwarden-worker queue
"""

import argparse
import asyncio

from graphwarden.main.config import get_settings
from graphwarden.main.logging import get_logger
from graphwarden.worker.factory import WorkerType
from graphwarden.worker.runner import run_workers

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graphwarden-worker",
        description="Run graphwarden polling workers",
    )
    subparsers = parser.add_subparsers(dest="worker_type", required=True)

    descriptions = {
        WorkerType.FRIEND: "Walk friend lists of known users",
        WorkerType.GROUP: "Walk group member rosters",
        WorkerType.QUEUE: "Process users submitted to the priority queue",
        WorkerType.MAINTENANCE: "Re-check known users for platform bans",
    }
    for worker_type, help_text in descriptions.items():
        sub = subparsers.add_parser(worker_type.value, help=help_text)
        sub.add_argument(
            "-w",
            "--workers",
            type=int,
            default=1,
            help="Number of workers to start (default: 1)",
        )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.workers < 1:
        raise SystemExit("--workers must be at least 1")

    try:
        asyncio.run(run_workers(WorkerType(args.worker_type), args.workers, get_settings()))
    except KeyboardInterrupt:
        logger.info("Worker shutdown requested")
    except Exception as e:
        logger.exception(f"Worker failed: {e}")
        raise


if __name__ == "__main__":
    main()
