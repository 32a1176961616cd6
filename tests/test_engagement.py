"""
tests/test_engagement.py — EngagementTracker & Analytics Tests
===============================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from herald.errors import NotFoundError, ValidationError
from herald.services.announcement_service import increment_counter, insert_announcement
from herald.services.engagement_service import (
    EngagementTracker,
    time_key,
    timeframe_start,
)


def _published(engine, title="Spring Festival", views=0):
    row = insert_announcement(engine, {
        "title": title,
        "content": "Music and food.",
        "type": "event",
        "is_published": True,
    })
    for _ in range(views):
        increment_counter(engine, row.id, "view")
    return row


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
class TestTimeKeys:
    TS = datetime(2024, 3, 15, 10, 30, tzinfo=UTC)  # a Friday

    @pytest.mark.parametrize(
        "timeframe, expected",
        [("hour", "2024-03-15T10"), ("day", "2024-03-15"),
         ("week", "2024-03-10"), ("month", "2024-03")],
    )
    def test_time_key(self, timeframe, expected):
        assert time_key(self.TS, timeframe) == expected

    def test_sunday_starts_its_own_week(self):
        assert time_key(datetime(2024, 3, 10, tzinfo=UTC), "week") == "2024-03-10"

    def test_timeframe_start(self):
        now = datetime(2024, 3, 31, 12, tzinfo=UTC)
        assert timeframe_start("day", now) == now - timedelta(days=1)
        assert timeframe_start("week", now) == now - timedelta(days=7)
        assert timeframe_start("month", now) == datetime(2024, 2, 29, 12, tzinfo=UTC)

    def test_unknown_timeframe(self):
        with pytest.raises(ValidationError):
            timeframe_start("decade", datetime.now(UTC))


# ---------------------------------------------------------------------------
# Buffer
# ---------------------------------------------------------------------------
class TestBuffer:
    def test_unknown_action_rejected(self, tracker):
        with pytest.raises(ValidationError, match="Unknown engagement action"):
            tracker.track("u1", "a1", "poke")

    def test_capacity_drops_oldest(self):
        tracker = EngagementTracker(capacity=3)
        for i in range(5):
            tracker.track(f"u{i}", "a1", "view")
        assert tracker.size == 3
        assert [e.user_id for e in tracker.events()] == ["u2", "u3", "u4"]

    def test_event_filters(self, tracker, clock):
        tracker.track("u1", "a1", "view", timestamp=clock.now())
        tracker.track("u2", "a1", "like", timestamp=clock.now() + timedelta(hours=2))
        tracker.track("u1", "a2", "share", timestamp=clock.now() + timedelta(hours=4))

        assert len(tracker.events(announcement_id="a1")) == 2
        assert len(tracker.events(user_id="u1")) == 2
        window = tracker.events(
            start=clock.now() + timedelta(hours=1), end=clock.now() + timedelta(hours=3)
        )
        assert [e.action for e in window] == ["like"]


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------
class TestMetrics:
    def test_rates_are_ratios(self, db_engine, tracker):
        row = _published(db_engine, views=4)
        tracker.track("u1", row.id, "view", metadata={"read_time": 30})
        tracker.track("u2", row.id, "view", metadata={"read_time": 50})
        tracker.track("u1", row.id, "like")
        tracker.track("u1", row.id, "click")
        tracker.track("u2", row.id, "acknowledge")

        m = tracker.metrics(db_engine, row.id)
        assert m["views"] == 4
        assert m["engagement_rate"] == 0.75
        assert m["conversion_rate"] == 0.5
        assert m["read_time"] == 40.0

    def test_zero_views_uses_denominator_one(self, db_engine, tracker):
        row = _published(db_engine)
        tracker.track("u1", row.id, "like")
        assert tracker.metrics(db_engine, row.id)["engagement_rate"] == 1.0

    def test_unknown_announcement(self, db_engine, tracker):
        with pytest.raises(NotFoundError):
            tracker.metrics(db_engine, "missing")


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
class TestReports:
    def test_trends_bucket_by_day(self, clock):
        tracker = EngagementTracker(clock=clock.now)
        base = clock.now()
        tracker.track("u1", "a1", "view", timestamp=base - timedelta(days=1))
        tracker.track("u1", "a1", "like", timestamp=base - timedelta(days=1))
        tracker.track("u2", "a1", "view", timestamp=base)
        tracker.track("u3", "a1", "view", timestamp=base - timedelta(days=40))

        trends = tracker.trends("day", days=30)
        assert list(trends) == ["2024-03-14", "2024-03-15"]
        assert trends["2024-03-14"]["views"] == 1
        assert trends["2024-03-14"]["likes"] == 1
        assert trends["2024-03-15"]["views"] == 1

    def test_trends_unknown_timeframe(self, tracker):
        with pytest.raises(ValidationError):
            tracker.trends("fortnight")

    def test_top_performing_by_views(self, db_engine, tracker):
        low = _published(db_engine, "Low", views=1)
        high = _published(db_engine, "High", views=5)
        ranked = tracker.top_performing(db_engine, "views", "week", 10)
        assert [r["id"] for r in ranked] == [high.id, low.id]

    def test_top_performing_by_engagement(self, db_engine, tracker):
        quiet = _published(db_engine, "Quiet", views=10)
        lively = _published(db_engine, "Lively", views=2)
        tracker.track("u1", lively.id, "like")
        tracker.track("u2", lively.id, "share")
        ranked = tracker.top_performing(db_engine, "engagement", "week", 1)
        assert ranked[0]["id"] == lively.id
        assert quiet.id not in [r["id"] for r in ranked]

    def test_top_performing_unknown_metric(self, db_engine, tracker):
        with pytest.raises(ValidationError, match="Unknown metric"):
            tracker.top_performing(db_engine, "vibes")

    def test_performance_report_shape(self, db_engine, tracker):
        row = _published(db_engine, views=1)
        tracker.track("u1", row.id, "view", metadata={"device": "mobile"})
        report = tracker.performance_report(db_engine)
        entry = report[0]
        assert entry["id"] == row.id
        assert set(entry["trends"]) == {"daily", "weekly", "monthly"}
        assert entry["audience_insights"]["unique_users"] == 1
        assert entry["audience_insights"]["device_types"] == {"mobile": 1}

    def test_user_summary(self, tracker):
        tracker.track("u1", "a1", "view", metadata={"device": "desktop"})
        tracker.track("u1", "a1", "view")
        tracker.track("u1", "a2", "like")
        summary = tracker.user_summary("u1")
        assert summary["total_engagements"] == 3
        assert summary["announcements_viewed"] == 1
        assert summary["announcements_liked"] == 1
        assert summary["engagement_pattern"]["preferred_device"] == "desktop"

    def test_user_summary_empty(self, tracker):
        summary = tracker.user_summary("ghost")
        assert summary["total_engagements"] == 0
        assert summary["last_activity"] is None

    def test_dashboard(self, db_engine, tracker):
        row = _published(db_engine, views=2)
        tracker.track("u1", row.id, "view")
        tracker.track("u1", row.id, "like")
        board = tracker.dashboard(db_engine)
        assert board["overview"]["total_engagements"] == 2
        assert board["overview"]["active_announcements"] == 1
        assert board["overview"]["average_engagement_rate"] == 1.0
        assert board["overview"]["growth_rate"] == 100.0
        assert board["top_performing"][0]["id"] == row.id
        assert any("Most common action" in line for line in board["insights"])

    def test_dashboard_without_events(self, db_engine, tracker):
        board = tracker.dashboard(db_engine)
        assert board["overview"]["growth_rate"] == 0.0
        assert board["insights"] == ["No engagement recorded yet"]
