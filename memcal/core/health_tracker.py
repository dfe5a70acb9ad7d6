"""In-memory sync health tracking for the memcal server."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Any, Optional

STALE_SWEEP_FACTOR = 3  # sweeps older than this many intervals are "degraded"


@dataclass
class FeedSyncState:
    """Outcome of the most recent sync attempt for one feed."""

    last_attempt: float
    last_success: Optional[float] = None
    last_error: Optional[str] = None
    event_count: int = 0


@dataclass
class HealthStatus:
    status: str  # "ok" or "degraded"
    uptime_seconds: int
    pid: int
    last_sweep_age_seconds: Optional[int]
    sweep_count: int
    feeds_ok: int
    feeds_failed: int
    failing_feeds: list[dict[str, Any]] = field(default_factory=list)


class HealthTracker:
    """Records sweep and per-feed sync outcomes for the /health endpoint."""

    def __init__(self, sync_interval_seconds: int = 300) -> None:
        self._start_time = time.time()
        self._sync_interval = sync_interval_seconds
        self._last_sweep_complete: Optional[float] = None
        self._sweep_count = 0
        self._feeds: dict[int, FeedSyncState] = {}

    def record_feed_success(self, feed_id: int, event_count: int) -> None:
        now = time.time()
        state = self._feeds.setdefault(feed_id, FeedSyncState(last_attempt=now))
        state.last_attempt = now
        state.last_success = now
        state.last_error = None
        state.event_count = event_count

    def record_feed_failure(self, feed_id: int, error: BaseException) -> None:
        now = time.time()
        state = self._feeds.setdefault(feed_id, FeedSyncState(last_attempt=now))
        state.last_attempt = now
        state.last_error = f"{type(error).__name__}: {error}"

    def forget_feed(self, feed_id: int) -> None:
        self._feeds.pop(feed_id, None)

    def record_sweep_complete(self) -> None:
        self._last_sweep_complete = time.time()
        self._sweep_count += 1

    def get_feed_state(self, feed_id: int) -> Optional[FeedSyncState]:
        return self._feeds.get(feed_id)

    def get_uptime_seconds(self) -> int:
        return int(time.time() - self._start_time)

    def get_last_sweep_age_seconds(self) -> Optional[int]:
        if self._last_sweep_complete is None:
            return None
        return int(time.time() - self._last_sweep_complete)

    def determine_overall_status(self) -> str:
        """Degraded until the first sweep completes, or when sweeps go stale."""
        age = self.get_last_sweep_age_seconds()
        if age is None:
            return "degraded"
        if age > self._sync_interval * STALE_SWEEP_FACTOR:
            return "degraded"
        return "ok"

    def get_health_status(self) -> HealthStatus:
        failing = [
            {"feed_id": str(feed_id), "error": state.last_error}
            for feed_id, state in self._feeds.items()
            if state.last_error is not None
        ]
        return HealthStatus(
            status=self.determine_overall_status(),
            uptime_seconds=self.get_uptime_seconds(),
            pid=os.getpid(),
            last_sweep_age_seconds=self.get_last_sweep_age_seconds(),
            sweep_count=self._sweep_count,
            feeds_ok=len(self._feeds) - len(failing),
            feeds_failed=len(failing),
            failing_feeds=failing,
        )
