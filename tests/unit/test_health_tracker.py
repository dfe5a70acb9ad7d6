"""Tests for sync health tracking."""

from unittest.mock import patch

import pytest

from memcal.calendar.exceptions import FetchError
from memcal.core.health_tracker import HealthTracker

pytestmark = [pytest.mark.unit, pytest.mark.fast]


def test_status_when_no_sweep_yet_then_degraded() -> None:
    tracker = HealthTracker(sync_interval_seconds=60)

    status = tracker.get_health_status()

    assert status.status == "degraded"
    assert status.last_sweep_age_seconds is None
    assert status.sweep_count == 0


def test_status_when_sweep_recent_then_ok() -> None:
    tracker = HealthTracker(sync_interval_seconds=60)
    tracker.record_sweep_complete()

    assert tracker.determine_overall_status() == "ok"


def test_status_when_sweep_stale_then_degraded() -> None:
    tracker = HealthTracker(sync_interval_seconds=60)
    with patch("memcal.core.health_tracker.time.time", return_value=1000.0):
        tracker.record_sweep_complete()

    with patch("memcal.core.health_tracker.time.time", return_value=1000.0 + 181):
        assert tracker.determine_overall_status() == "degraded"


def test_feed_state_when_failure_then_success_then_error_cleared() -> None:
    tracker = HealthTracker()
    tracker.record_feed_failure(5, FetchError("HTTP 502 from upstream", status_code=502))

    failing = tracker.get_health_status()
    tracker.record_feed_success(5, event_count=12)
    recovered = tracker.get_health_status()

    assert failing.feeds_failed == 1
    assert failing.failing_feeds == [{"feed_id": "5", "error": "FetchError: HTTP 502 from upstream"}]
    assert recovered.feeds_failed == 0
    assert recovered.feeds_ok == 1
    assert tracker.get_feed_state(5).event_count == 12


def test_forget_feed_when_called_then_state_removed() -> None:
    tracker = HealthTracker()
    tracker.record_feed_success(5, event_count=1)

    tracker.forget_feed(5)

    assert tracker.get_feed_state(5) is None
