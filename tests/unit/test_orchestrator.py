"""Tests for single-feed synchronization and merge semantics."""

import asyncio

import pytest

from memcal.calendar.exceptions import (
    FetchError,
    InvalidTemporalValue,
    MissingRequiredField,
    ParseError,
    StorageError,
)
from memcal.sync.orchestrator import SyncOrchestrator
from tests.conftest import FEED_URL, FakeFetcher
from tests.fixtures.ics_samples import ICSSampleFactory

pytestmark = [pytest.mark.unit]


class TestMerge:
    async def test_synchronize_when_first_sync_then_metadata_and_events_stored(
        self, orchestrator, store, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())

        result = await orchestrator.synchronize(feed.id, feed.source_url)

        assert result.feed_id == feed.id
        assert result.event_count == 1
        metadata = await store.get_calendar_metadata(feed.id)
        assert metadata.display_name == "Team"
        assert metadata.timezone_id == "America/New_York"
        events = await store.get_events_for_feed(feed.id)
        assert [e.summary for e in events] == ["Standup"]

    async def test_synchronize_when_repeated_unchanged_then_idempotent(
        self, orchestrator, store, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await orchestrator.synchronize(feed.id, feed.source_url)
        before = await store.get_events_for_feed(feed.id)

        await orchestrator.synchronize(feed.id, feed.source_url)

        assert await store.get_events_for_feed(feed.id) == before

    async def test_synchronize_when_fields_change_then_updated_in_place(
        self, orchestrator, store, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await orchestrator.synchronize(feed.id, feed.source_url)
        original_id = (await store.get_events_for_feed(feed.id))[0].id

        fake_fetcher.set(
            FEED_URL,
            ICSSampleFactory.standup(summary="Standup (moved room)", extra_lines=["LOCATION:Room 7"]),
        )
        await orchestrator.synchronize(feed.id, feed.source_url)

        events = await store.get_events_for_feed(feed.id)
        assert len(events) == 1
        assert events[0].id == original_id
        assert events[0].summary == "Standup (moved room)"
        assert events[0].location == "Room 7"

    async def test_synchronize_when_event_removed_upstream_then_kept(
        self, orchestrator, store, feed, fake_fetcher
    ) -> None:
        """Standup is synced, renamed, then dropped upstream; the renamed copy remains."""
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await orchestrator.synchronize(feed.id, feed.source_url)

        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup(summary="Standup v2"))
        await orchestrator.synchronize(feed.id, feed.source_url)

        fake_fetcher.set(FEED_URL, ICSSampleFactory.calendar([]))
        result = await orchestrator.synchronize(feed.id, feed.source_url)

        assert result.event_count == 0
        events = await store.get_events_for_feed(feed.id)
        assert [e.summary for e in events] == ["Standup v2"]

    async def test_synchronize_when_time_moves_then_new_event_and_old_kept(
        self, orchestrator, store, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await orchestrator.synchronize(feed.id, feed.source_url)

        fake_fetcher.set(
            FEED_URL, ICSSampleFactory.standup(start="20240101T120000", end="20240101T130000")
        )
        await orchestrator.synchronize(feed.id, feed.source_url)

        events = await store.get_events_for_feed(feed.id)
        assert [e.start.local.hour for e in events] == [12, 10]

    async def test_synchronize_when_calendar_renamed_then_metadata_replaced(
        self, orchestrator, store, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await orchestrator.synchronize(feed.id, feed.source_url)

        fake_fetcher.set(
            FEED_URL, ICSSampleFactory.calendar([ICSSampleFactory.event()], name=None, vtimezone=None)
        )
        await orchestrator.synchronize(feed.id, feed.source_url)

        metadata = await store.get_calendar_metadata(feed.id)
        assert metadata.display_name is None
        assert metadata.daylight is None
        assert metadata.timezone_id == "Etc/UTC"


class TestFailedSync:
    @pytest.mark.parametrize(
        "document,error",
        [
            (ICSSampleFactory.standup(start="not-a-date"), InvalidTemporalValue),
            (ICSSampleFactory.standup(dtstamp=None), MissingRequiredField),
            ("<html>Sign in</html>", ParseError),
        ],
    )
    async def test_synchronize_when_document_invalid_then_prior_state_untouched(
        self, orchestrator, store, feed, fake_fetcher, document, error
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await orchestrator.synchronize(feed.id, feed.source_url)
        metadata_before = await store.get_calendar_metadata(feed.id)
        events_before = await store.get_events_for_feed(feed.id)

        fake_fetcher.set(FEED_URL, document)
        with pytest.raises(error):
            await orchestrator.synchronize(feed.id, feed.source_url)

        assert await store.get_calendar_metadata(feed.id) == metadata_before
        assert await store.get_events_for_feed(feed.id) == events_before

    async def test_synchronize_when_one_event_invalid_then_valid_siblings_not_written(
        self, orchestrator, store, feed, fake_fetcher
    ) -> None:
        document = ICSSampleFactory.calendar(
            [ICSSampleFactory.event(uid="ok"), ICSSampleFactory.event(uid="bad", end="garbage")]
        )
        fake_fetcher.set(FEED_URL, document)

        with pytest.raises(InvalidTemporalValue):
            await orchestrator.synchronize(feed.id, feed.source_url)

        assert await store.count_events(feed.id) == 0
        assert await store.get_calendar_metadata(feed.id) is None

    async def test_synchronize_when_fetch_fails_then_nothing_written(
        self, orchestrator, store, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, FetchError("Service Unavailable", status_code=503))

        with pytest.raises(FetchError):
            await orchestrator.synchronize(feed.id, feed.source_url)

        assert await store.get_calendar_metadata(feed.id) is None

    async def test_synchronize_when_failed_then_health_records_error(
        self, orchestrator, feed, fake_fetcher, health_tracker
    ) -> None:
        fake_fetcher.set(FEED_URL, FetchError("boom", status_code=500))

        with pytest.raises(FetchError):
            await orchestrator.synchronize(feed.id, feed.source_url)

        state = health_tracker.get_feed_state(feed.id)
        assert state is not None
        assert state.last_error == "FetchError: boom"
        assert state.last_success is None

    async def test_synchronize_when_store_fails_then_storage_error_propagates(
        self, orchestrator, store, feed, fake_fetcher, monkeypatch
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())

        async def broken_merge(*args, **kwargs):
            raise StorageError("disk full")

        monkeypatch.setattr(store, "merge_calendar", broken_merge)

        with pytest.raises(StorageError):
            await orchestrator.synchronize(feed.id, feed.source_url)


class TestEnsureSynchronized:
    async def test_ensure_when_metadata_exists_then_no_fetch(
        self, orchestrator, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await orchestrator.synchronize(feed.id, feed.source_url)
        fake_fetcher.calls.clear()

        assert await orchestrator.ensure_synchronized(feed.id, feed.source_url) is None
        assert fake_fetcher.calls == []

    async def test_ensure_when_concurrent_callers_then_single_fetch(
        self, store, feed, health_tracker
    ) -> None:
        fetcher = FakeFetcher(delay=0.05)
        fetcher.set(FEED_URL, ICSSampleFactory.standup())
        orchestrator = SyncOrchestrator(store, fetcher, health_tracker)

        results = await asyncio.gather(
            *(orchestrator.ensure_synchronized(feed.id, feed.source_url) for _ in range(5))
        )

        assert fetcher.calls == [FEED_URL]
        assert sum(result is not None for result in results) == 1
        assert await store.count_events(feed.id) == 1

    async def test_ensure_when_first_attempt_fails_then_next_caller_retries(
        self, orchestrator, store, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, FetchError("timeout"))
        with pytest.raises(FetchError):
            await orchestrator.ensure_synchronized(feed.id, feed.source_url)

        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        result = await orchestrator.ensure_synchronized(feed.id, feed.source_url)

        assert result is not None
        assert await store.get_calendar_metadata(feed.id) is not None

    async def test_forget_when_called_then_health_state_dropped(
        self, orchestrator, feed, fake_fetcher, health_tracker
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await orchestrator.synchronize(feed.id, feed.source_url)

        await orchestrator.forget(feed.id)

        assert health_tracker.get_feed_state(feed.id) is None

    async def test_forget_when_feed_deleted_mid_sync_then_not_reported_again(
        self, store, feed, health_tracker
    ) -> None:
        fetcher = FakeFetcher(delay=0.05)
        fetcher.set(FEED_URL, ICSSampleFactory.standup())
        orchestrator = SyncOrchestrator(store, fetcher, health_tracker)
        in_flight = asyncio.create_task(orchestrator.synchronize(feed.id, feed.source_url))
        await asyncio.sleep(0.01)

        await store.delete_feed(feed.id)
        await orchestrator.forget(feed.id)

        assert in_flight.done()
        assert isinstance(in_flight.exception(), StorageError)
        assert health_tracker.get_feed_state(feed.id) is None
        assert health_tracker.get_health_status().failing_feeds == []
