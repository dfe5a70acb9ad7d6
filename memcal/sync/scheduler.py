"""Periodic sweep over all feeds."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from memcal.calendar.exceptions import SyncError
from memcal.core.health_tracker import HealthTracker
from memcal.storage.database import DatabaseManager

from .orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    succeeded: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)


class SyncScheduler:
    """Drives the orchestrator for every known feed on a fixed interval."""

    def __init__(
        self,
        store: DatabaseManager,
        orchestrator: SyncOrchestrator,
        interval_seconds: int = 300,
        health_tracker: HealthTracker | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.health_tracker = health_tracker

    async def sweep(self) -> SweepReport:
        """Sync every feed once, one after another.

        A failing feed is logged and recorded; the sweep moves on to the next.
        """
        report = SweepReport()
        feeds = await self.store.list_feeds()
        logger.debug("Starting sweep over %d feeds", len(feeds))

        for feed in feeds:
            try:
                await self.orchestrator.synchronize(feed.id, feed.source_url)
            except SyncError as e:
                report.failed[feed.id] = f"{type(e).__name__}: {e}"
            except Exception as e:
                logger.exception("Unexpected error syncing feed %d", feed.id)
                report.failed[feed.id] = f"{type(e).__name__}: {e}"
            else:
                report.succeeded.append(feed.id)

        if self.health_tracker is not None:
            self.health_tracker.record_sweep_complete()
        logger.info(
            "Sweep complete: %d ok, %d failed", len(report.succeeded), len(report.failed)
        )
        return report

    async def run(self, stop_event: asyncio.Event) -> None:
        """Background loop: immediate sweep, then one every interval until stopped."""
        logger.info("Sync scheduler starting with interval %d seconds", self.interval_seconds)
        while not stop_event.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.exception("Sweep failed")

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
        logger.info("Sync scheduler stopped")
