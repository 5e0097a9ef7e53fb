"""
Process lifespan management.

Startup: logging, metrics endpoint, scheduler, GitHub client, registry and
all installations. Shutdown runs in reverse and flushes pending config
writes before anything is closed.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from prometheus_client import start_http_server

from review_reminder.core.config import Settings
from review_reminder.core.decorators import safe_external_call
from review_reminder.core.logging_config import LogConfig, setup_logging, stop_queue_listener
from review_reminder.core.rate_limiter import RateLimiter
from review_reminder.services.engine import InstallationEngine
from review_reminder.services.github_client import GitHubClient
from review_reminder.services.installation_registry import InstallationRegistry

logger = logging.getLogger("main")


@safe_external_call("list installations", default_return=[], log_level="error")
async def load_installations(github: GitHubClient):
    return await github.list_installations()


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncIterator[InstallationRegistry]:
    """Run the engine for every installation until the context exits."""
    setup_logging(LogConfig(**settings.logging.log_config))
    logger.info("🚀 Starting review reminder...")
    if settings.runtime.dry_run:
        logger.info("Dry run: no config writes, no deliveries")

    if settings.runtime.metrics_port:
        start_http_server(settings.runtime.metrics_port)
        logger.info(f"✅ Metrics exposed on :{settings.runtime.metrics_port}")

    scheduler = AsyncIOScheduler()
    scheduler.start()

    limiter = RateLimiter.per_minute(
        settings.rate_limit.per_minute,
        timeout=settings.rate_limit.query_timeout_seconds,
    )
    github = GitHubClient(settings.github, limiter=limiter)
    registry = InstallationRegistry(
        lambda installation: InstallationEngine(installation, github, scheduler, settings)
    )

    count = await registry.bootstrap(await load_installations(github))
    logger.info(f"✅ {count} installation(s) running")

    scheduler.add_job(
        registry.check_local_offset,
        trigger=IntervalTrigger(minutes=settings.scheduler.offset_check_minutes),
        id="local_offset_watch",
        name="Rebuild triggers after local UTC offset changes",
        replace_existing=True,
        misfire_grace_time=60,
    )

    try:
        yield registry
    finally:
        logger.info("🛑 Shutting down review reminder...")
        await registry.shutdown()
        scheduler.shutdown(wait=False)
        await github.close()
        stop_queue_listener()
