"""
Review reminder entry point.

Runs every installation's schedule until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import signal
from typing import Optional

from review_reminder.core.config import get_settings
from review_reminder.core.lifespan import lifespan


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="review-reminder",
        description="Personal, timezone-aware reminders about pending pull request reviews.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Generate reports without writing config or delivering anything",
    )
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    return parser.parse_args(argv)


async def run(dry_run: bool = False, log_level: Optional[str] = None) -> None:
    settings = get_settings()
    if dry_run:
        settings.runtime.dry_run = True
    if log_level:
        settings.logging.level = log_level

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with lifespan(settings):
        await stop.wait()


def main(argv=None) -> None:
    args = parse_args(argv)
    asyncio.run(run(dry_run=args.dry_run, log_level=args.log_level))


if __name__ == "__main__":
    main()
