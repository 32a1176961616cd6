"""
herald.services.engagement_service — Engagement Buffer & Analytics
===================================================================

Keeps the most recent engagement events (view, like, share, click,
acknowledge, comment) in a bounded ring buffer and derives analytics from
it.

The buffer is a *recent-activity index*, not the source of truth:
authoritative counters live on the ``announcements`` row and are bumped by
:func:`herald.services.announcement_service.increment_counter`.  Rates
mix the two:

    engagement_rate = non-view events in buffer / view_count
    conversion_rate = (click + acknowledge events in buffer) / view_count

with a ``view_count`` of 0 treated as 1.  Rates are ratios (0.25, not 25).

Capacity defaults to 10,000 events; the oldest event is dropped on
overflow.  Nothing is persisted.
"""

from __future__ import annotations

import calendar
import logging
import threading
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from herald.constants import ENGAGEMENT_ACTIONS, TIMEFRAMES
from herald.database.models import Announcement, utcnow
from herald.errors import ValidationError
from herald.services.announcement_service import (
    count_active_published,
    get_announcement,
)

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10_000

# metric name → key in the metrics dict used for ranking
RANKING_METRICS: dict[str, str] = {
    "views": "views",
    "likes": "likes",
    "shares": "shares",
    "engagement_rate": "engagement_rate",
    "engagement": "engagement_rate",
}


@dataclass(slots=True)
class EngagementEvent:
    user_id: str
    announcement_id: str
    action: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "announcement_id": self.announcement_id,
            "action": self.action,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def time_key(ts: datetime, timeframe: str) -> str:
    """Bucket key for *ts*: ``2024-03-15T10`` (hour), ``2024-03-15`` (day),
    the Sunday starting the week (week), ``2024-03`` (month)."""
    ts = _aware(ts).astimezone(UTC)
    if timeframe == "hour":
        return ts.strftime("%Y-%m-%dT%H")
    if timeframe == "week":
        start = ts.date() - timedelta(days=(ts.weekday() + 1) % 7)
        return start.isoformat()
    if timeframe == "month":
        return ts.strftime("%Y-%m")
    return ts.date().isoformat()


def _months_ago(ts: datetime, months: int) -> datetime:
    month_index = ts.month - 1 - months
    year = ts.year + month_index // 12
    month = month_index % 12 + 1
    day = min(ts.day, calendar.monthrange(year, month)[1])
    return ts.replace(year=year, month=month, day=day)


def timeframe_start(timeframe: str, now: datetime) -> datetime:
    """Start of the look-back window: one day, seven days, or one month."""
    if timeframe == "day":
        return now - timedelta(days=1)
    if timeframe == "week":
        return now - timedelta(days=7)
    if timeframe == "month":
        return _months_ago(now, 1)
    raise ValidationError(f"Unknown timeframe: {timeframe!r}")


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------
class EngagementTracker:
    """Thread-safe bounded engagement log plus derived analytics.

    Usage::

        tracker = EngagementTracker()
        tracker.track("u1", announcement_id, "view", metadata={"read_time": 42})
        tracker.metrics(engine, announcement_id)
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.capacity = capacity
        self._clock = clock
        self._events: deque[EngagementEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    # -------------------------------------------------------------------
    # Buffer
    # -------------------------------------------------------------------
    def track(
        self,
        user_id: str,
        announcement_id: str,
        action: str,
        *,
        metadata: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> EngagementEvent:
        if action not in ENGAGEMENT_ACTIONS:
            raise ValidationError(f"Unknown engagement action: {action!r}")
        event = EngagementEvent(
            user_id=user_id,
            announcement_id=announcement_id,
            action=action,
            timestamp=_aware(timestamp) if timestamp is not None else self._clock(),
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._events.append(event)
        logger.debug(
            "Tracked engagement: %s for announcement %s by user %s",
            action, announcement_id, user_id,
        )
        return event

    def events(
        self,
        *,
        announcement_id: str | None = None,
        user_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[EngagementEvent]:
        """Snapshot of buffered events, oldest first, optionally filtered."""
        with self._lock:
            snapshot = list(self._events)
        start = _aware(start) if start is not None else None
        end = _aware(end) if end is not None else None
        return [
            e for e in snapshot
            if (announcement_id is None or e.announcement_id == announcement_id)
            and (user_id is None or e.user_id == user_id)
            and (start is None or e.timestamp >= start)
            and (end is None or e.timestamp <= end)
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def size(self) -> int:
        return len(self)

    # -------------------------------------------------------------------
    # Per-announcement metrics
    # -------------------------------------------------------------------
    @staticmethod
    def _metrics_for(row: Announcement, events: list[EngagementEvent]) -> dict[str, Any]:
        views = row.view_count or 0
        denominator = views or 1
        actions = Counter(e.action for e in events)
        non_view = sum(n for action, n in actions.items() if action != "view")
        conversions = actions["click"] + actions["acknowledge"]

        read_times = [
            float(e.metadata["read_time"])
            for e in events
            if e.action == "view" and isinstance(e.metadata.get("read_time"), (int, float))
        ]
        return {
            "announcement_id": row.id,
            "views": views,
            "likes": row.like_count or 0,
            "shares": row.share_count or 0,
            "clicks": row.click_count or 0,
            "acknowledges": row.acknowledge_count or 0,
            "comments": actions["comment"],
            "read_time": sum(read_times) / len(read_times) if read_times else 0.0,
            "engagement_rate": non_view / denominator,
            "conversion_rate": conversions / denominator,
        }

    def metrics(self, engine: Engine, announcement_id: str) -> dict[str, Any]:
        """Authoritative counters plus buffer-derived rates.

        Raises :class:`~herald.errors.NotFoundError` for unknown ids.
        """
        row = get_announcement(engine, announcement_id)
        return self._metrics_for(row, self.events(announcement_id=announcement_id))

    def _audience_insights(self, events: list[EngagementEvent]) -> dict[str, Any]:
        by_hour = Counter(f"{_aware(e.timestamp).astimezone(UTC):%H}:00" for e in events)
        devices = Counter(str(e.metadata.get("device", "unknown")) for e in events)
        return {
            "unique_users": len({e.user_id for e in events}),
            "engagement_by_time_of_day": dict(sorted(by_hour.items())),
            "device_types": dict(devices),
        }

    # -------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------
    def performance_report(
        self,
        engine: Engine,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Published announcements (most viewed first) with metrics, trends
        and audience insights.  *start*/*end* filter on ``published_at``
        when both are given."""
        stmt = (
            select(Announcement)
            .where(
                Announcement.is_published.is_(True),
                Announcement.deleted_at.is_(None),
            )
            .order_by(Announcement.view_count.desc())
            .limit(limit)
        )
        if start is not None and end is not None:
            stmt = stmt.where(Announcement.published_at.between(start, end))
        with Session(engine) as session:
            rows = list(session.scalars(stmt).all())
            session.expunge_all()

        report: list[dict[str, Any]] = []
        for row in rows:
            all_events = self.events(announcement_id=row.id)
            windowed = self.events(announcement_id=row.id, start=start, end=end)
            report.append({
                "id": row.id,
                "title": row.title,
                "type": row.type,
                "published_at": row.published_at.isoformat() if row.published_at else None,
                "metrics": self._metrics_for(row, all_events),
                "trends": {
                    "daily": self._bucket(windowed, "day"),
                    "weekly": self._bucket(windowed, "week"),
                    "monthly": self._bucket(windowed, "month"),
                },
                "audience_insights": self._audience_insights(windowed),
            })
        return report

    @staticmethod
    def _bucket(events: list[EngagementEvent], timeframe: str) -> dict[str, int]:
        return dict(Counter(time_key(e.timestamp, timeframe) for e in events))

    def top_performing(
        self,
        engine: Engine,
        metric: str = "views",
        timeframe: str = "week",
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Rank announcements published within *timeframe* by *metric*,
        highest first.  Ties keep the report's view-count order."""
        key = RANKING_METRICS.get(metric)
        if key is None:
            raise ValidationError(
                f"Unknown metric {metric!r}; expected one of {', '.join(RANKING_METRICS)}"
            )
        now = self._clock()
        report = self.performance_report(
            engine, timeframe_start(timeframe, now), now, limit * 2
        )
        report.sort(key=lambda item: item["metrics"][key], reverse=True)
        return report[:limit]

    def trends(self, timeframe: str = "day", days: int = 30) -> dict[str, dict[str, int]]:
        """Per-bucket action counts over the last *days* days."""
        if timeframe not in TIMEFRAMES:
            raise ValidationError(f"Unknown timeframe: {timeframe!r}")
        end = self._clock()
        start = end - timedelta(days=days)

        trends: dict[str, dict[str, int]] = {}
        for event in self.events(start=start, end=end):
            bucket = trends.setdefault(time_key(event.timestamp, timeframe), {
                "views": 0, "likes": 0, "shares": 0,
                "clicks": 0, "acknowledges": 0, "comments": 0,
            })
            bucket[f"{event.action}s"] += 1
        return dict(sorted(trends.items()))

    def user_summary(self, user_id: str) -> dict[str, Any]:
        """What *user_id* did, from the buffer only."""
        events = self.events(user_id=user_id)

        def distinct(action: str) -> int:
            return len({e.announcement_id for e in events if e.action == action})

        last = max((e.timestamp for e in events), default=None)
        hours = Counter(f"{_aware(e.timestamp).astimezone(UTC):%H}:00" for e in events)
        devices = Counter(e.metadata["device"] for e in events if "device" in e.metadata)
        return {
            "user_id": user_id,
            "total_engagements": len(events),
            "announcements_viewed": distinct("view"),
            "announcements_liked": distinct("like"),
            "announcements_shared": distinct("share"),
            "announcements_acknowledged": distinct("acknowledge"),
            "last_activity": last.isoformat() if last else None,
            "engagement_pattern": {
                "most_active_hour": hours.most_common(1)[0][0] if hours else None,
                "preferred_device": devices.most_common(1)[0][0] if devices else None,
            },
        }

    def dashboard(self, engine: Engine) -> dict[str, Any]:
        """Overview, top performers, recent trends and derived insights."""
        events = self.events()
        now = self._clock()
        actions = Counter(e.action for e in events)
        views = actions["view"]
        non_view = sum(n for a, n in actions.items() if a != "view")

        week_ago = now - timedelta(days=7)
        two_weeks_ago = now - timedelta(days=14)
        current = sum(1 for e in events if e.timestamp > week_ago)
        previous = sum(1 for e in events if two_weeks_ago < e.timestamp <= week_ago)
        if previous:
            growth = (current - previous) / previous * 100
        else:
            growth = 100.0 if current else 0.0

        top = self.top_performing(engine, "engagement_rate", "week", 5)
        return {
            "overview": {
                "total_engagements": len(events),
                "active_announcements": count_active_published(engine),
                "average_engagement_rate": non_view / views if views else 0.0,
                "growth_rate": growth,
            },
            "top_performing": top,
            "trends": self.trends("day", 7),
            "insights": self._insights(events, top),
        }

    @staticmethod
    def _insights(events: list[EngagementEvent], top: list[dict[str, Any]]) -> list[str]:
        if not events:
            return ["No engagement recorded yet"]
        insights: list[str] = []
        hours = Counter(f"{_aware(e.timestamp).astimezone(UTC):%H}:00" for e in events)
        peak_hour, peak_count = hours.most_common(1)[0]
        insights.append(f"Peak engagement at {peak_hour} UTC ({peak_count} events)")

        action, count = Counter(e.action for e in events).most_common(1)[0]
        insights.append(f"Most common action: {action} ({count} events)")

        if top:
            insights.append(f"Top announcement this week: {top[0]['title']}")
        return insights
