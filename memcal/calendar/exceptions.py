"""Exceptions raised while synchronizing and serving calendar feeds."""

from typing import Optional


class SyncError(Exception):
    """Base exception for any failure during one feed's synchronization."""


class FetchError(SyncError):
    """Upstream document could not be retrieved."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    """Upstream did not answer within the configured timeout."""


class ParseError(SyncError):
    """Upstream text is malformed or has no calendar root."""


class MissingRequiredField(SyncError):
    """A mandatory event property is absent."""

    def __init__(self, field_name: str, message: Optional[str] = None):
        super().__init__(message or f"Missing required property {field_name}")
        self.field_name = field_name


class InvalidTemporalValue(SyncError):
    """A date-time value could not be parsed."""

    def __init__(self, value: str, field_name: Optional[str] = None):
        label = f" for {field_name}" if field_name else ""
        super().__init__(f"Invalid date-time value{label}: {value!r}")
        self.value = value
        self.field_name = field_name


class StorageError(SyncError):
    """Persistence layer failure."""


class FeedError(Exception):
    """Base exception for feed lifecycle operations."""


class FeedNotFoundError(FeedError):
    """No feed exists with the requested id."""

    def __init__(self, feed_id: int):
        super().__init__(f"Feed {feed_id} not found")
        self.feed_id = feed_id


class EventNotFoundError(FeedError):
    """No event with the requested id exists in the feed."""


class NotAuthorizedError(FeedError):
    """Management token does not match the feed."""


class InvalidFeedURLError(FeedError):
    """Source URL is not an absolute http(s) URL."""
