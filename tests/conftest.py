"""Shared fixtures for memcal tests."""

import asyncio
from collections.abc import AsyncIterator, Generator
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Optional, Union

import pytest

from memcal.calendar.exceptions import FetchError
from memcal.calendar.models import Feed
from memcal.core.health_tracker import HealthTracker
from memcal.core.http_client import close_all_clients
from memcal.storage.database import DatabaseManager
from memcal.sync.orchestrator import SyncOrchestrator
from tests.fixtures.ics_samples import ICSSampleFactory

FEED_URL = "https://calendar.example.com/team.ics"


class FakeFetcher:
    """In-memory stand-in for ICSFetcher.

    Responses are looked up by URL; an Exception value is raised instead of
    returned. ``delay`` makes each fetch suspend so concurrency can be observed.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.responses: dict[str, Union[str, Exception]] = {}
        self.calls: list[str] = []
        self.delay = delay

    def set(self, url: str, response: Union[str, Exception]) -> None:
        self.responses[url] = response

    async def fetch_text(self, url: str) -> str:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.get(url)
        if response is None:
            raise FetchError(f"No fake response for {url}", status_code=404)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def ics() -> type[ICSSampleFactory]:
    return ICSSampleFactory


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Minimal fetcher settings with fast retries."""
    return SimpleNamespace(fetch_timeout=5, fetch_max_retries=2, retry_backoff_factor=0.0)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "memcal.db"


@pytest.fixture
async def store(db_path: Path) -> DatabaseManager:
    manager = DatabaseManager(db_path)
    await manager.initialize()
    return manager


@pytest.fixture
async def feed(store: DatabaseManager) -> Feed:
    created = Feed(id=1001, source_url=FEED_URL, manage_secret="secret-token")
    await store.create_feed(created)
    return created


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def health_tracker() -> HealthTracker:
    return HealthTracker(sync_interval_seconds=60)


@pytest.fixture
def orchestrator(
    store: DatabaseManager, fake_fetcher: FakeFetcher, health_tracker: HealthTracker
) -> SyncOrchestrator:
    return SyncOrchestrator(store, fake_fetcher, health_tracker)


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, Any, None]:
    """Keep developer MEMCAL_* and legacy variables out of tests."""
    for name in (
        "MEMCAL_DATABASE_PATH",
        "DATABASE_URL",
        "MEMCAL_SERVER_BIND",
        "MEMCAL_SERVER_PORT",
        "PORT",
        "MEMCAL_SYNC_INTERVAL",
        "SYNC_INTERVAL",
        "MEMCAL_FETCH_TIMEOUT",
        "MEMCAL_FETCH_MAX_RETRIES",
        "MEMCAL_MACHINE_ID",
        "MEMCAL_PUBLIC_URL",
        "MEMCAL_LOG_LEVEL",
        "MEMCAL_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
async def shared_client_cleanup() -> AsyncIterator[None]:
    yield
    await close_all_clients()


def make_feed(feed_id: int, url: Optional[str] = None) -> Feed:
    return Feed(id=feed_id, source_url=url or f"https://example.com/{feed_id}.ics", manage_secret=f"s{feed_id}")
