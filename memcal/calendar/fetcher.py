"""HTTP retrieval of upstream calendar documents."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from memcal.core.http_client import (
    DEFAULT_HEADERS,
    get_shared_client,
    record_client_error,
    record_client_success,
)

from .exceptions import FetchError, FetchTimeoutError

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3


def is_valid_source_url(url: str) -> bool:
    """Accept only absolute http(s) URLs with a hostname."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


class ICSFetcher:
    """Downloads ICS text with a bounded timeout and transport-error retries."""

    def __init__(self, settings: Any, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize fetcher.

        Args:
            settings: Object exposing ``fetch_timeout``, ``fetch_max_retries``
                and ``retry_backoff_factor``; missing attributes use defaults
            client: Client to use instead of the shared pool
        """
        self.settings = settings
        self._client = client
        self._client_id = "upstream"
        self.timeout = float(getattr(settings, "fetch_timeout", 30))
        self.max_retries = int(getattr(settings, "fetch_max_retries", 2))
        self.backoff_factor = float(getattr(settings, "retry_backoff_factor", 1.5))

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_shared_client(self._client_id)

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with random jitter, capped at MAX_BACKOFF_SECONDS."""
        base = min(self.backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base  # nosec B311
        return base + jitter

    async def fetch_text(self, url: str) -> str:
        """Fetch the document at ``url`` as text.

        Args:
            url: Upstream http(s) URL

        Returns:
            Response body decoded per its charset (UTF-8 by default)

        Raises:
            FetchTimeoutError: Every attempt timed out
            FetchError: Invalid URL, non-success status, or transport failure
        """
        if not is_valid_source_url(url):
            raise FetchError(f"Refusing to fetch invalid URL: {url!r}")

        client = await self._get_client()
        attempt = 0
        while True:
            try:
                logger.debug("Fetching %s (attempt %d)", url, attempt + 1)
                response = await client.get(url, headers=DEFAULT_HEADERS, timeout=self.timeout)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                # Status errors are not retried
                status = e.response.status_code
                logger.warning("Upstream %s answered HTTP %d", url, status)
                raise FetchError(f"HTTP {status} from upstream", status_code=status) from e
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if self._client is None:
                    await record_client_error(self._client_id)
                if attempt >= self.max_retries:
                    logger.exception("All %d fetch attempts failed for %s", attempt + 1, url)
                    if isinstance(e, httpx.TimeoutException):
                        raise FetchTimeoutError(f"Timed out fetching {url}") from e
                    raise FetchError(f"Network error: {e}") from e

                backoff = self._calculate_backoff(attempt)
                logger.warning(
                    "Fetch failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1,
                    self.max_retries + 1,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                attempt += 1
                continue
            except httpx.HTTPError as e:
                raise FetchError(f"HTTP client error: {e}") from e

            if self._client is None:
                await record_client_success(self._client_id)
            logger.debug("Fetched %s: %d bytes", url, len(response.content))
            return response.text
