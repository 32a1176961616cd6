"""
herald.api.routes.announcements — Announcement CRUD & engagement endpoints
===========================================================================
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from herald.api.deps import get_cache, get_dispatcher, get_engine, get_tracker
from herald.database.engine import run_db
from herald.database.models import AnnouncementPriority, AnnouncementStatus, AnnouncementType
from herald.engine.cache import ContentCache
from herald.services import announcement_service
from herald.services.announcement_service import announcement_to_dict
from herald.services.engagement_service import EngagementTracker
from herald.services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/announcements", tags=["announcements"])

CounterAction = Literal["view", "like", "share", "click", "acknowledge"]


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AnnouncementCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    content: str = Field(min_length=1)
    summary: str | None = None
    type: AnnouncementType = AnnouncementType.GENERAL
    priority: AnnouncementPriority = AnnouncementPriority.NORMAL
    category: str | None = None
    tags: list[str] | None = None
    target_audience: list[str] | None = None
    is_published: bool = False
    is_featured: bool = False
    is_pinned: bool = False
    requires_acknowledgment: bool = False
    allow_comments: bool = True
    notify_users: bool = True
    scheduled_for: datetime | None = None
    event_date: datetime | None = None
    image_url: str | None = None
    created_by: str | None = None


class AnnouncementUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=300)
    content: str | None = Field(default=None, min_length=1)
    summary: str | None = None
    type: AnnouncementType | None = None
    priority: AnnouncementPriority | None = None
    status: AnnouncementStatus | None = None
    category: str | None = None
    tags: list[str] | None = None
    target_audience: list[str] | None = None
    is_active: bool | None = None
    is_published: bool | None = None
    is_featured: bool | None = None
    is_pinned: bool | None = None
    requires_acknowledgment: bool | None = None
    allow_comments: bool | None = None
    notify_users: bool | None = None
    scheduled_for: datetime | None = None
    event_date: datetime | None = None
    image_url: str | None = None


class EngagementBody(BaseModel):
    user_id: str | None = None
    metadata: dict[str, Any] | None = None


class BulkAction(BaseModel):
    ids: list[str] = Field(min_length=1, max_length=500)
    action: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("", status_code=201)
async def create_announcement(
    body: AnnouncementCreate,
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    row = await announcement_service.create_announcement(
        engine, body.model_dump(exclude_none=True), cache=cache, dispatcher=dispatcher
    )
    return announcement_to_dict(row)


@router.get("/published")
def list_published(
    limit: int = Query(default=20, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
):
    return announcement_service.list_published(engine, cache, limit)


@router.get("/featured")
def list_featured(
    limit: int = Query(default=10, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
):
    return announcement_service.list_featured(engine, cache, limit)


@router.get("/popular")
def list_popular(
    limit: int = Query(default=10, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
):
    return announcement_service.list_popular(engine, cache, limit)


@router.post("/bulk")
async def bulk_action(
    body: BulkAction,
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
):
    """Apply one action (publish, feature, pin, delete, ``<priority>-priority`` …)
    to many announcements in a single UPDATE."""
    affected = await run_db(announcement_service.bulk_action, engine, body.ids, body.action)
    cache.invalidate_announcement_cache()
    for announcement_id in body.ids:
        cache.delete(cache.generate_key("announcement", announcement_id))
    return {"action": body.action, "affected": affected}


@router.get("/{announcement_id}")
def get_announcement(
    announcement_id: str,
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
):
    return announcement_service.get_announcement_cached(engine, cache, announcement_id)


@router.patch("/{announcement_id}")
async def update_announcement(
    announcement_id: str,
    body: AnnouncementUpdate,
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    row = await announcement_service.update_announcement(
        engine,
        announcement_id,
        body.model_dump(exclude_unset=True),
        cache=cache,
        dispatcher=dispatcher,
    )
    return announcement_to_dict(row)


@router.delete("/{announcement_id}", status_code=204)
async def delete_announcement(
    announcement_id: str,
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
):
    await run_db(announcement_service.soft_delete, engine, announcement_id)
    cache.invalidate_announcement_cache(announcement_id)
    return Response(status_code=204)


@router.post("/{announcement_id}/restore")
async def restore_announcement(
    announcement_id: str,
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
):
    row = await run_db(announcement_service.restore, engine, announcement_id)
    cache.invalidate_announcement_cache(announcement_id)
    return announcement_to_dict(row)


@router.post("/{announcement_id}/{action}")
async def engage(
    announcement_id: str,
    action: CounterAction,
    body: EngagementBody | None = None,
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
    tracker: EngagementTracker = Depends(get_tracker),
):
    """Bump a counter (view, like, share, click, acknowledge)."""
    body = body or EngagementBody()
    value = await announcement_service.record_engagement(
        engine,
        announcement_id,
        action,
        cache=cache,
        tracker=tracker,
        user_id=body.user_id,
        metadata=body.metadata,
    )
    return {"id": announcement_id, "action": action, "count": value}
