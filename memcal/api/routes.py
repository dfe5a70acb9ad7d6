"""HTTP routes for feed subscription, serving and management."""

from __future__ import annotations

import logging
from typing import Any, Optional

from aiohttp import web

from memcal import __version__
from memcal.calendar.exceptions import (
    EventNotFoundError,
    FeedNotFoundError,
    InvalidFeedURLError,
    NotAuthorizedError,
    SyncError,
)
from memcal.calendar.models import CalendarMetadata, Event, Feed
from memcal.core.health_tracker import HealthTracker
from memcal.feed_service import FeedService

logger = logging.getLogger(__name__)

ROBOTS_TXT = "User-agent: *\nDisallow: /feed/\n"

# Ids are stored as SQLite INTEGER (signed 64-bit)
MAX_ROW_ID = 2**63 - 1


def _int_param(request: web.Request, name: str) -> int:
    try:
        value = int(request.match_info[name])
    except (KeyError, ValueError):
        raise web.HTTPNotFound(text="Not found") from None
    if not -MAX_ROW_ID - 1 <= value <= MAX_ROW_ID:
        raise web.HTTPNotFound(text="Not found")
    return value


def _base_url(request: web.Request, public_url: Optional[str]) -> str:
    if public_url:
        return public_url
    return f"{request.scheme}://{request.host}"


def _is_form(request: web.Request) -> bool:
    return request.content_type in ("application/x-www-form-urlencoded", "multipart/form-data")


def _event_to_api_model(event: Event) -> dict[str, Any]:
    return {
        "id": event.id,
        "uid": event.uid,
        "summary": event.summary,
        "description": event.description,
        "start": event.start.local.isoformat(),
        "start_zone": event.start.zone,
        "end": event.end.local.isoformat(),
        "end_zone": event.end.zone,
        "location": event.location,
        "organizer": event.organizer,
        "organizer_name": event.organizer_name,
        "sequence": event.sequence,
        "status": event.status,
    }


def _feed_to_api_model(feed: Feed, base_url: str) -> dict[str, Any]:
    return {
        "id": str(feed.id),
        "url": f"{base_url}/feed/{feed.id}",
        "source_url": feed.source_url,
        "manage_token": feed.manage_secret,
        "manage_url": f"{base_url}/feed/{feed.id}/{feed.manage_secret}",
    }


def _calendar_to_api_model(metadata: Optional[CalendarMetadata]) -> Optional[dict[str, Any]]:
    if metadata is None:
        return None
    return {
        "name": metadata.display_name,
        "timezone": metadata.timezone_id,
        "product_id": metadata.product_id,
    }


async def _read_delete_intent(request: web.Request) -> bool:
    """True for DELETE, or POST carrying ``_method=DELETE`` as a form field or JSON key.

    Returns whether the caller expects a redirect (form) rather than 204.
    """
    if request.method == "DELETE":
        return False
    if request.content_type == "application/json":
        try:
            body: Any = await request.json()
        except ValueError:
            raise web.HTTPBadRequest(text="Request body must be JSON or a form") from None
        method = body.get("_method", "") if isinstance(body, dict) else ""
        form_post = False
    else:
        method = (await request.post()).get("_method", "")
        form_post = True
    if str(method).upper() != "DELETE":
        raise web.HTTPMethodNotAllowed(request.method, ["DELETE"])
    return form_post


def register_feed_routes(
    app: web.Application,
    feed_service: FeedService,
    public_url: Optional[str] = None,
) -> None:
    """Register feed routes.

    Args:
        app: aiohttp web application
        feed_service: Feed lifecycle facade
        public_url: Base URL for links in responses; derived per request if None
    """

    async def create_feed(request: web.Request) -> web.StreamResponse:
        """Subscribe to an upstream URL; JSON gets 201, forms get a redirect."""
        form_post = _is_form(request)
        if form_post:
            data: Any = await request.post()
        else:
            try:
                data = await request.json()
            except ValueError:
                # JSONDecodeError and UnicodeDecodeError
                raise web.HTTPBadRequest(text="Request body must be JSON or a form") from None
        if not isinstance(data, dict) and not form_post:
            raise web.HTTPBadRequest(text="Request body must be a JSON object")

        try:
            feed = await feed_service.create_feed(str(data.get("url") or ""))
        except InvalidFeedURLError as e:
            raise web.HTTPBadRequest(text=str(e)) from e

        if form_post:
            raise web.HTTPSeeOther(location=f"/feed/{feed.id}/{feed.manage_secret}")
        return web.json_response(
            _feed_to_api_model(feed, _base_url(request, public_url)), status=201
        )

    async def feed_document(request: web.Request) -> web.StreamResponse:
        """Serve the accumulated calendar, syncing first if never synced."""
        feed_id = _int_param(request, "feed_id")
        try:
            content_type, body = await feed_service.generate_document(feed_id)
        except FeedNotFoundError:
            raise web.HTTPNotFound(text="Feed not found") from None
        except SyncError as e:
            logger.error("Cannot serve feed %d: %s", feed_id, e)
            raise web.HTTPInternalServerError(text="Failed to synchronize calendar") from e
        return web.Response(body=body, content_type=content_type, charset="utf-8")

    async def manage_feed(request: web.Request) -> web.StreamResponse:
        feed_id = _int_param(request, "feed_id")
        try:
            feed = await feed_service.authorize(feed_id, request.match_info["token"])
        except FeedNotFoundError:
            raise web.HTTPNotFound(text="Feed not found") from None
        except NotAuthorizedError:
            raise web.HTTPUnauthorized(text="Invalid token") from None

        try:
            metadata = await feed_service.calendar_metadata(feed)
        except SyncError as e:
            logger.error("Cannot show feed %d: %s", feed_id, e)
            raise web.HTTPInternalServerError(text="Failed to synchronize calendar") from e

        events = await feed_service.feed_events(feed_id)
        return web.json_response(
            {
                "feed": _feed_to_api_model(feed, _base_url(request, public_url)),
                "calendar": _calendar_to_api_model(metadata),
                "events": [_event_to_api_model(event) for event in events],
            }
        )

    async def delete_feed(request: web.Request) -> web.StreamResponse:
        feed_id = _int_param(request, "feed_id")
        form_post = await _read_delete_intent(request)
        try:
            await feed_service.delete_feed(feed_id, request.match_info["token"])
        except FeedNotFoundError:
            raise web.HTTPNotFound(text="Feed not found") from None
        except NotAuthorizedError:
            raise web.HTTPUnauthorized(text="Invalid token") from None

        if form_post:
            raise web.HTTPSeeOther(location="/")
        return web.Response(status=204)

    async def delete_event(request: web.Request) -> web.StreamResponse:
        feed_id = _int_param(request, "feed_id")
        event_id = _int_param(request, "event_id")
        token = request.match_info["token"]
        form_post = await _read_delete_intent(request)
        try:
            await feed_service.delete_event(feed_id, event_id, token)
        except (FeedNotFoundError, EventNotFoundError):
            raise web.HTTPNotFound(text="Not found") from None
        except NotAuthorizedError:
            raise web.HTTPUnauthorized(text="Invalid token") from None

        if form_post:
            raise web.HTTPSeeOther(location=f"/feed/{feed_id}/{token}")
        return web.Response(status=204)

    app.router.add_post("/feed", create_feed)
    app.router.add_get("/feed/{feed_id}", feed_document)
    app.router.add_get("/feed/{feed_id}/{token}", manage_feed)
    app.router.add_delete("/feed/{feed_id}/{token}", delete_feed)
    app.router.add_post("/feed/{feed_id}/{token}", delete_feed)
    app.router.add_delete("/feed/{feed_id}/{event_id}/{token}", delete_event)
    app.router.add_post("/feed/{feed_id}/{event_id}/{token}", delete_event)


def register_status_routes(app: web.Application, health_tracker: HealthTracker) -> None:
    """Register index, health and robots routes."""

    async def index(_request: web.Request) -> web.StreamResponse:
        return web.json_response(
            {
                "name": "memcal",
                "version": __version__,
                "description": "Calendar relay that remembers removed events",
            }
        )

    async def health_check(_request: web.Request) -> web.StreamResponse:
        status = health_tracker.get_health_status()
        return web.json_response(
            {
                "status": status.status,
                "server_status": {"uptime_s": status.uptime_seconds, "pid": status.pid},
                "sync_status": {
                    "last_sweep_age_s": status.last_sweep_age_seconds,
                    "sweep_count": status.sweep_count,
                    "feeds_ok": status.feeds_ok,
                    "feeds_failed": status.feeds_failed,
                    "failing_feeds": status.failing_feeds,
                },
            }
        )

    async def robots(_request: web.Request) -> web.StreamResponse:
        return web.Response(text=ROBOTS_TXT, content_type="text/plain")

    app.router.add_get("/", index)
    app.router.add_get("/health", health_check)
    app.router.add_get("/robots.txt", robots)
