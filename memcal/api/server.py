"""aiohttp server wiring: storage, sync scheduler and HTTP routes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from dataclasses import dataclass
from typing import Optional

from aiohttp import web

from memcal.calendar.fetcher import ICSFetcher
from memcal.config_loader import Config
from memcal.core.health_tracker import HealthTracker
from memcal.core.http_client import close_all_clients
from memcal.core.id_generator import SnowflakeIdGenerator
from memcal.feed_service import FeedService
from memcal.storage.database import DatabaseManager
from memcal.sync.orchestrator import SyncOrchestrator, TextFetcher
from memcal.sync.scheduler import SyncScheduler

from .middleware import access_log_middleware, correlation_id_middleware
from .routes import register_feed_routes, register_status_routes

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived objects shared by the HTTP layer and the scheduler."""

    store: DatabaseManager
    health_tracker: HealthTracker
    orchestrator: SyncOrchestrator
    scheduler: SyncScheduler
    feed_service: FeedService


def build_services(config: Config, fetcher: Optional[TextFetcher] = None) -> Services:
    """Construct the service graph from configuration.

    Args:
        config: Loaded configuration
        fetcher: Upstream fetcher; defaults to an ICSFetcher on the shared client
    """
    store = DatabaseManager(config.database_path)
    health_tracker = HealthTracker(config.sync_interval_seconds)
    orchestrator = SyncOrchestrator(store, fetcher or ICSFetcher(config), health_tracker)
    scheduler = SyncScheduler(
        store, orchestrator, config.sync_interval_seconds, health_tracker=health_tracker
    )
    feed_service = FeedService(store, orchestrator, SnowflakeIdGenerator(config.machine_id))
    return Services(store, health_tracker, orchestrator, scheduler, feed_service)


def make_app(config: Config, services: Services) -> web.Application:
    """Create the aiohttp application with middleware and routes."""
    app = web.Application(middlewares=[correlation_id_middleware, access_log_middleware])
    register_status_routes(app, services.health_tracker)
    register_feed_routes(app, services.feed_service, public_url=config.public_url)
    logger.debug("Web application created with %d routes", len(app.router.routes()))
    return app


async def _serve(config: Config) -> None:
    """Run the HTTP server and background sweep until signalled to stop."""
    stop_event = asyncio.Event()
    services = build_services(config)
    await services.store.initialize()

    app = make_app(config, services)
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()

    site = web.TCPSite(runner, host=config.server_bind, port=config.server_port)
    try:
        await site.start()
    except OSError:
        logger.exception("Failed to start server on %s:%d", config.server_bind, config.server_port)
        await runner.cleanup()
        raise
    logger.info(
        "memcal listening on %s:%d (pid %d, sync every %ds)",
        config.server_bind,
        config.server_port,
        os.getpid(),
        config.sync_interval_seconds,
    )

    sweeper = asyncio.create_task(services.scheduler.run(stop_event))

    loop = asyncio.get_running_loop()

    def _on_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.warning("Sweep task error during shutdown: %s", e)

    await runner.cleanup()
    await close_all_clients()
    logger.info("Server shutdown complete")


async def _sync_once(config: Config) -> int:
    services = build_services(config)
    await services.store.initialize()
    try:
        report = await services.scheduler.sweep()
    finally:
        await close_all_clients()
    for feed_id, error in report.failed.items():
        logger.error("Feed %d failed: %s", feed_id, error)
    return 1 if report.failed else 0


def start_server(config: Config) -> None:
    """Start the asyncio event loop and HTTP server."""
    asyncio.run(_serve(config))


def sync_once(config: Config) -> int:
    """Run a single sweep over all feeds and return a process exit code."""
    return asyncio.run(_sync_once(config))
