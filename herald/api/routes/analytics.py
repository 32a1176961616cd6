"""
herald.api.routes.analytics — Engagement analytics & operational stats
=======================================================================
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from herald.api.deps import get_cache, get_engine, get_registry, get_tracker
from herald.constants import ENGAGEMENT_ACTIONS
from herald.database.engine import run_db
from herald.engine.cache import ContentCache
from herald.errors import ValidationError
from herald.services import announcement_service
from herald.services.engagement_service import RANKING_METRICS, EngagementTracker
from herald.services.subscription_service import SubscriberRegistry

router = APIRouter(prefix="/analytics", tags=["analytics"])


class TrackRequest(BaseModel):
    user_id: str
    announcement_id: str
    action: str
    metadata: dict[str, Any] | None = None


@router.post("/track", status_code=202)
async def track_engagement(
    body: TrackRequest,
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
    tracker: EngagementTracker = Depends(get_tracker),
):
    """Record an engagement event and bump the matching counter."""
    if body.action not in ENGAGEMENT_ACTIONS:
        raise ValidationError(
            f"Unknown engagement action: {body.action!r}",
            details={"allowed": sorted(ENGAGEMENT_ACTIONS)},
        )
    value = await announcement_service.record_engagement(
        engine,
        body.announcement_id,
        body.action,
        cache=cache,
        tracker=tracker,
        user_id=body.user_id,
        metadata=body.metadata,
    )
    return {"tracked": True, "count": value}


@router.get("/performance-report")
async def performance_report(
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    engine: Engine = Depends(get_engine),
    tracker: EngagementTracker = Depends(get_tracker),
):
    return await run_db(tracker.performance_report, engine, start, end, limit)


@router.get("/top-performing")
async def top_performing(
    metric: str = "views",
    timeframe: Literal["day", "week", "month"] = "week",
    limit: int = Query(default=10, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    tracker: EngagementTracker = Depends(get_tracker),
):
    if metric not in RANKING_METRICS:
        raise ValidationError(
            f"Unknown metric {metric!r}", details={"allowed": sorted(RANKING_METRICS)}
        )
    return await run_db(tracker.top_performing, engine, metric, timeframe, limit)


@router.get("/trends")
def trends(
    timeframe: Literal["hour", "day", "week", "month"] = "day",
    days: int = Query(default=30, ge=1, le=365),
    tracker: EngagementTracker = Depends(get_tracker),
):
    return tracker.trends(timeframe, days)


@router.get("/dashboard")
async def dashboard(
    engine: Engine = Depends(get_engine),
    tracker: EngagementTracker = Depends(get_tracker),
):
    return await run_db(tracker.dashboard, engine)


@router.get("/users/{user_id}/summary")
def user_summary(user_id: str, tracker: EngagementTracker = Depends(get_tracker)):
    return tracker.user_summary(user_id)


@router.get("/notifications/stats")
def notification_stats(registry: SubscriberRegistry = Depends(get_registry)):
    return registry.get_stats()


@router.get("/cache/stats")
def cache_stats(cache: ContentCache = Depends(get_cache)):
    return cache.stats()


@router.get("/{announcement_id}/metrics")
async def announcement_metrics(
    announcement_id: str,
    engine: Engine = Depends(get_engine),
    tracker: EngagementTracker = Depends(get_tracker),
):
    return await run_db(tracker.metrics, engine, announcement_id)
