"""
herald.api.routes.realtime — Live announcement channel (WebSocket)
===================================================================

    WS /announcements/ws?user_id=<id>

Frames are JSON objects in both directions::

    {"event": "<name>", "data": {...}}

Client → server events:

    subscribe_notifications    {categories?, types?, preferences?}
    unsubscribe_notifications  {}
    update_preferences         {real_time?, email?, push?, sms?}
    get_live_stats             {}
    track_engagement           {announcement_id, action, metadata?}

Every request gets a ``<name>_confirmed`` style reply or an ``error`` frame.
On connect the five most recent published announcements are pushed as
``recent_announcements``.  Notifications arrive as
``announcement_notification``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy import Engine
from starlette.websockets import WebSocketState

from herald.api.deps import get_cache, get_engine, get_registry, get_tracker
from herald.database.engine import run_db
from herald.database.models import utcnow
from herald.engine.cache import ContentCache
from herald.errors import HeraldError, TransientError
from herald.services import announcement_service
from herald.services.engagement_service import EngagementTracker
from herald.services.subscription_service import SubscriberRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

RECENT_ON_CONNECT = 5


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the registry's live handle shape."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    @property
    def connected(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if not self.connected:
            raise TransientError("Live connection is closed")
        await self.websocket.send_json({"event": event, "data": payload})


async def _handle(
    event: str,
    data: dict[str, Any],
    *,
    user_id: str,
    conn: WebSocketConnection,
    engine: Engine,
    cache: ContentCache,
    registry: SubscriberRegistry,
    tracker: EngagementTracker,
) -> None:
    now = utcnow().isoformat()

    if event == "subscribe_notifications":
        sub = registry.subscribe(
            user_id,
            categories=data.get("categories"),
            types=data.get("types"),
            preferences=data.get("preferences"),
        )
        await conn.send("subscription_confirmed", {**sub.to_dict(), "timestamp": now})

    elif event == "unsubscribe_notifications":
        existed = registry.unsubscribe(user_id)
        # unsubscribe drops the live handle too; this socket stays open
        registry.register_connection(user_id, conn)
        await conn.send("unsubscribe_confirmed", {"success": existed, "timestamp": now})

    elif event == "update_preferences":
        changes = {k: v for k, v in data.items() if k != "user_id"}
        sub = registry.update_preferences(user_id, **changes)
        if sub is None:
            await conn.send("error", {"event": event, "detail": "Not subscribed"})
            return
        await conn.send("preferences_updated", {**sub.to_dict(), "timestamp": now})

    elif event == "get_live_stats":
        count = await run_db(announcement_service.count_active_published, engine)
        await conn.send("live_stats", {
            "announcements": {"active_published": count},
            "notifications": registry.get_stats(),
            "timestamp": now,
        })

    elif event == "track_engagement":
        announcement_id = data.get("announcement_id")
        action = data.get("action")
        if not announcement_id or not action:
            await conn.send("error", {
                "event": event, "detail": "announcement_id and action are required",
            })
            return
        value = await announcement_service.record_engagement(
            engine,
            announcement_id,
            action,
            cache=cache,
            tracker=tracker,
            user_id=user_id,
            metadata=data.get("metadata"),
        )
        await conn.send("engagement_tracked", {
            "announcement_id": announcement_id,
            "action": action,
            "count": value,
            "timestamp": now,
        })

    else:
        await conn.send("error", {"event": event, "detail": f"Unknown event {event!r}"})


@router.websocket("/announcements/ws")
async def announcements_ws(
    websocket: WebSocket,
    user_id: str = Query(min_length=1),
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
    registry: SubscriberRegistry = Depends(get_registry),
    tracker: EngagementTracker = Depends(get_tracker),
):
    await websocket.accept()
    conn = WebSocketConnection(websocket)
    registry.register_connection(user_id, conn)
    logger.debug("User %s connected to announcements channel", user_id)

    try:
        recent = await run_db(
            announcement_service.list_published, engine, cache, RECENT_ON_CONNECT
        )
        await conn.send("recent_announcements", {
            "announcements": recent, "timestamp": utcnow().isoformat(),
        })

        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await conn.send("error", {"detail": "Expected {\"event\": ..., \"data\": {...}}"})
                continue
            data = frame.get("data") or {}
            if not isinstance(data, dict):
                await conn.send("error", {"event": frame["event"], "detail": "data must be an object"})
                continue

            registry.touch(user_id)
            try:
                await _handle(
                    frame["event"],
                    data,
                    user_id=user_id,
                    conn=conn,
                    engine=engine,
                    cache=cache,
                    registry=registry,
                    tracker=tracker,
                )
            except HeraldError as exc:
                await conn.send("error", {"event": frame["event"], **exc.to_dict()})
    except WebSocketDisconnect:
        logger.debug("User %s disconnected from announcements channel", user_id)
    finally:
        if registry.get_connection(user_id) is conn:
            registry.remove_connection(user_id)
