"""Tests for feed lifecycle operations."""

import pytest

from memcal.calendar.exceptions import (
    EventNotFoundError,
    FeedNotFoundError,
    FetchError,
    InvalidFeedURLError,
    NotAuthorizedError,
    SyncError,
)
from memcal.calendar.generator import CONTENT_TYPE
from memcal.core.id_generator import SnowflakeIdGenerator
from memcal.feed_service import FeedService
from tests.conftest import FEED_URL
from tests.fixtures.ics_samples import ICSSampleFactory

pytestmark = [pytest.mark.unit]


@pytest.fixture
def service(store, orchestrator) -> FeedService:
    return FeedService(store, orchestrator, SnowflakeIdGenerator(machine_id=1))


class TestCreateFeed:
    async def test_create_feed_when_valid_url_then_stored_with_secret(self, service, store) -> None:
        feed = await service.create_feed("  https://calendar.example.com/a.ics ")

        assert feed.source_url == "https://calendar.example.com/a.ics"
        assert len(feed.manage_secret) == 36
        assert await store.get_feed(feed.id) == feed

    async def test_create_feed_when_called_twice_then_distinct_ids_and_secrets(self, service) -> None:
        first = await service.create_feed(FEED_URL)
        second = await service.create_feed(FEED_URL)

        assert first.id != second.id
        assert first.manage_secret != second.manage_secret

    @pytest.mark.parametrize("url", ["", "calendar.ics", "ftp://example.com/a.ics"])
    async def test_create_feed_when_invalid_url_then_rejected(self, service, store, url) -> None:
        with pytest.raises(InvalidFeedURLError):
            await service.create_feed(url)

        assert await store.list_feeds() == []


class TestAuthorization:
    async def test_authorize_when_token_matches_then_feed_returned(self, service, feed) -> None:
        assert await service.authorize(feed.id, "secret-token") == feed

    @pytest.mark.parametrize("token", ["wrong", "", "secret-token-extra"])
    async def test_authorize_when_token_wrong_then_not_authorized(self, service, feed, token) -> None:
        with pytest.raises(NotAuthorizedError):
            await service.authorize(feed.id, token)

    async def test_authorize_when_feed_unknown_then_not_found(self, service) -> None:
        with pytest.raises(FeedNotFoundError):
            await service.authorize(424242, "secret-token")


class TestDeletion:
    async def test_delete_feed_when_authorized_then_removed(self, service, store, feed, fake_fetcher) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await service.generate_document(feed.id)

        await service.delete_feed(feed.id, "secret-token")

        assert await store.get_feed(feed.id) is None
        assert await store.count_events(feed.id) == 0

    async def test_delete_feed_when_bad_token_then_kept(self, service, store, feed) -> None:
        with pytest.raises(NotAuthorizedError):
            await service.delete_feed(feed.id, "nope")

        assert await store.get_feed(feed.id) == feed

    async def test_delete_event_when_authorized_then_only_that_event_removed(
        self, service, store, feed, fake_fetcher
    ) -> None:
        document = ICSSampleFactory.calendar(
            [
                ICSSampleFactory.event(uid="a"),
                ICSSampleFactory.event(uid="b", start="20240102T100000", end="20240102T110000"),
            ]
        )
        fake_fetcher.set(FEED_URL, document)
        await service.generate_document(feed.id)
        target = (await service.feed_events(feed.id))[0]

        await service.delete_event(feed.id, target.id, "secret-token")

        assert [e.uid for e in await service.feed_events(feed.id)] == ["a"]

    async def test_delete_event_when_unknown_then_event_not_found(self, service, feed) -> None:
        with pytest.raises(EventNotFoundError):
            await service.delete_event(feed.id, 99, "secret-token")


class TestGenerateDocument:
    async def test_generate_when_never_synced_then_syncs_on_demand(
        self, service, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())

        content_type, body = await service.generate_document(feed.id)

        assert content_type == CONTENT_TYPE
        assert b"SUMMARY:Standup" in body
        assert fake_fetcher.calls == [FEED_URL]

    async def test_generate_when_already_synced_then_served_from_store(
        self, service, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, ICSSampleFactory.standup())
        await service.generate_document(feed.id)
        fake_fetcher.set(FEED_URL, FetchError("down", status_code=503))

        _, body = await service.generate_document(feed.id)

        assert b"SUMMARY:Standup" in body
        assert fake_fetcher.calls == [FEED_URL]

    async def test_generate_when_on_demand_sync_fails_then_sync_error(
        self, service, feed, fake_fetcher
    ) -> None:
        fake_fetcher.set(FEED_URL, FetchError("down", status_code=503))

        with pytest.raises(SyncError):
            await service.generate_document(feed.id)

    async def test_generate_when_feed_unknown_then_not_found(self, service, fake_fetcher) -> None:
        with pytest.raises(FeedNotFoundError):
            await service.generate_document(31337)

        assert fake_fetcher.calls == []
