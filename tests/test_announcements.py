"""
tests/test_announcements.py — Announcement Service Tests
=========================================================

Persistence helpers, the async create / update / engagement flows, and
bulk actions.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from herald.errors import NotFoundError, ValidationError
from herald.services import announcement_service as svc
from conftest import FakeConnection, run_async

BASE = {"title": "Spring Festival", "content": "Music and food.", "type": "event"}


# ---------------------------------------------------------------------------
# Sync persistence
# ---------------------------------------------------------------------------
class TestPersistence:
    def test_insert_drops_unknown_keys(self, db_engine):
        row = svc.insert_announcement(db_engine, {**BASE, "usage_count": 3, "bogus": 1})
        assert row.status == "draft"
        assert row.view_count == 0

    def test_insert_published_sets_timestamp(self, db_engine):
        row = svc.insert_announcement(db_engine, {**BASE, "is_published": True})
        assert row.published_at is not None
        assert row.status == "published"

    @pytest.mark.parametrize(
        "payload, message",
        [
            ({"title": "", "content": "x"}, "Title must not be empty"),
            ({"title": "x" * 301, "content": "x"}, "must not exceed 300"),
            ({"title": "Hi", "content": "  "}, "Content must not be empty"),
            ({**BASE, "priority": "meh"}, "Invalid priority"),
        ],
    )
    def test_insert_validation(self, db_engine, payload, message):
        with pytest.raises(ValidationError, match=message):
            svc.insert_announcement(db_engine, payload)

    def test_priority_case_insensitive(self, db_engine):
        assert svc.insert_announcement(db_engine, {**BASE, "priority": "HIGH"}).priority == "high"

    def test_increment_counter_is_cumulative(self, db_engine):
        row = svc.insert_announcement(db_engine, BASE)
        assert svc.increment_counter(db_engine, row.id, "like") == 1
        assert svc.increment_counter(db_engine, row.id, "like") == 2
        assert svc.get_announcement(db_engine, row.id).like_count == 2

    def test_increment_unknown_announcement(self, db_engine):
        with pytest.raises(NotFoundError):
            svc.increment_counter(db_engine, "missing", "view")

    def test_increment_comment_has_no_counter(self, db_engine):
        row = svc.insert_announcement(db_engine, BASE)
        with pytest.raises(ValidationError):
            svc.increment_counter(db_engine, row.id, "comment")

    def test_soft_delete_and_restore(self, db_engine):
        row = svc.insert_announcement(db_engine, BASE)
        svc.soft_delete(db_engine, row.id)
        with pytest.raises(NotFoundError):
            svc.get_announcement(db_engine, row.id)
        restored = svc.restore(db_engine, row.id)
        assert restored.deleted_at is None
        assert svc.get_announcement(db_engine, row.id).title == BASE["title"]

    def test_apply_update_publish_transition(self, db_engine):
        row = svc.insert_announcement(db_engine, BASE)
        updated, newly = svc.apply_update(db_engine, row.id, {"is_published": True})
        assert newly is True
        assert updated.published_at is not None
        _, again = svc.apply_update(db_engine, row.id, {"title": "Renamed"})
        assert again is False
        unpublished, _ = svc.apply_update(db_engine, row.id, {"is_published": False})
        assert unpublished.published_at is None
        assert unpublished.status == "draft"

    def test_fetch_published_orders_pinned_first(self, db_engine):
        plain = svc.insert_announcement(db_engine, {**BASE, "is_published": True})
        pinned = svc.insert_announcement(
            db_engine, {**BASE, "is_published": True, "is_pinned": True}
        )
        svc.insert_announcement(db_engine, BASE)  # draft
        ids = [r["id"] for r in svc.fetch_published(db_engine)]
        assert ids == [pinned.id, plain.id]


class TestDatetimeFields:
    def test_offset_stored_as_utc(self, db_engine):
        plus_two = timezone(timedelta(hours=2))
        row = svc.insert_announcement(db_engine, {
            **BASE, "scheduled_for": datetime(2024, 3, 15, 13, 30, tzinfo=plus_two),
        })
        stored = svc.get_announcement(db_engine, row.id).scheduled_for
        assert stored.replace(tzinfo=None) == datetime(2024, 3, 15, 11, 30)

    def test_iso_string_parsed(self, db_engine):
        row = svc.insert_announcement(db_engine, {
            **BASE, "scheduled_for": "2030-01-01T00:00:00Z", "event_date": "2030-01-02",
        })
        stored = svc.get_announcement(db_engine, row.id)
        assert stored.status == "scheduled"
        assert stored.scheduled_for.replace(tzinfo=None) == datetime(2030, 1, 1)
        assert stored.event_date.replace(tzinfo=None) == datetime(2030, 1, 2)

    @pytest.mark.parametrize("value", ["next tuesday", 1700000000])
    def test_bad_datetime_rejected(self, db_engine, value):
        with pytest.raises(ValidationError, match="Invalid scheduled_for"):
            svc.insert_announcement(db_engine, {**BASE, "scheduled_for": value})

    def test_to_utc_naive_is_utc(self):
        assert svc.to_utc(datetime(2024, 3, 15, 9), "x") == datetime(2024, 3, 15, 9, tzinfo=UTC)


class TestNullFields:
    def test_update_rejects_null_flag(self, db_engine):
        row = svc.insert_announcement(db_engine, BASE)
        with pytest.raises(ValidationError, match="is_active") as exc_info:
            svc.apply_update(db_engine, row.id, {"is_active": None})
        assert exc_info.value.details == {"fields": ["is_active"]}
        assert svc.get_announcement(db_engine, row.id).is_active is True

    def test_nullable_fields_may_be_cleared(self, db_engine):
        row = svc.insert_announcement(db_engine, {**BASE, "category": "music"})
        updated, _ = svc.apply_update(db_engine, row.id, {"category": None})
        assert updated.category is None

    def test_validate_payload_writes_nothing(self, db_engine):
        values = svc.validate_payload({**BASE, "bogus": 1})
        assert "bogus" not in values
        assert svc.count_active_published(db_engine) == 0
        with pytest.raises(ValidationError):
            svc.validate_payload({"title": "Only a title"})


class TestBulk:
    def test_bulk_feature(self, db_engine):
        ids = [svc.insert_announcement(db_engine, BASE).id for _ in range(3)]
        assert svc.bulk_action(db_engine, ids[:2], "feature") == 2
        flags = [svc.get_announcement(db_engine, i).is_featured for i in ids]
        assert flags == [True, True, False]

    def test_bulk_publish_and_priority(self, db_engine):
        ids = [svc.insert_announcement(db_engine, BASE).id for _ in range(2)]
        svc.bulk_action(db_engine, ids, "publish")
        svc.bulk_action(db_engine, ids, "urgent-priority")
        for i in ids:
            row = svc.get_announcement(db_engine, i)
            assert row.is_published is True
            assert row.priority == "urgent"

    def test_bulk_delete(self, db_engine):
        row = svc.insert_announcement(db_engine, BASE)
        svc.bulk_action(db_engine, [row.id], "archive")
        with pytest.raises(NotFoundError):
            svc.get_announcement(db_engine, row.id)

    def test_unknown_bulk_action(self, db_engine):
        with pytest.raises(ValidationError, match="Unknown bulk action"):
            svc.bulk_action(db_engine, ["x"], "explode")

    def test_bulk_empty_ids(self, db_engine):
        assert svc.bulk_update(db_engine, [], {"is_featured": True}) == 0


# ---------------------------------------------------------------------------
# Cached reads
# ---------------------------------------------------------------------------
class TestCachedReads:
    def test_list_published_is_cached(self, db_engine, cache):
        svc.insert_announcement(db_engine, {**BASE, "is_published": True})
        first = svc.list_published(db_engine, cache)
        svc.insert_announcement(db_engine, {**BASE, "is_published": True})
        assert svc.list_published(db_engine, cache) == first
        cache.invalidate_announcement_cache()
        assert len(svc.list_published(db_engine, cache)) == 2

    def test_featured_listing(self, db_engine, cache):
        featured = svc.insert_announcement(
            db_engine, {**BASE, "is_published": True, "is_featured": True}
        )
        svc.insert_announcement(db_engine, {**BASE, "is_published": True})
        svc.insert_announcement(db_engine, {**BASE, "is_featured": True})  # draft
        assert [r["id"] for r in svc.list_featured(db_engine, cache)] == [featured.id]
        assert cache.get("featured:10") is not None

        cache.invalidate_announcement_cache()
        assert cache.get("featured:10") is None

    def test_popular_listing_orders_by_views(self, db_engine, cache):
        quiet = svc.insert_announcement(db_engine, {**BASE, "is_published": True})
        busy = svc.insert_announcement(db_engine, {**BASE, "is_published": True})
        for _ in range(3):
            svc.increment_counter(db_engine, busy.id, "view")
        ranked = svc.list_popular(db_engine, cache, limit=5)
        assert [r["id"] for r in ranked] == [busy.id, quiet.id]
        assert cache.get("popular:5") == ranked

    def test_get_announcement_cached(self, db_engine, cache):
        row = svc.insert_announcement(db_engine, BASE)
        assert svc.get_announcement_cached(db_engine, cache, row.id)["id"] == row.id
        assert cache.get(f"announcement:{row.id}")["title"] == BASE["title"]


# ---------------------------------------------------------------------------
# Async flows
# ---------------------------------------------------------------------------
class TestCreateFlow:
    def test_create_published_notifies_once(self, db_engine, cache):
        dispatcher = MagicMock()
        dispatcher.notify_published = AsyncMock()
        dispatcher.notify_urgent = AsyncMock()
        dispatcher.notify_featured = AsyncMock()

        run_async(svc.create_announcement(
            db_engine, {**BASE, "is_published": True}, cache=cache, dispatcher=dispatcher
        ))
        dispatcher.notify_published.assert_awaited_once()
        dispatcher.notify_urgent.assert_not_awaited()
        dispatcher.notify_featured.assert_not_awaited()

    def test_urgent_and_featured_routing(self, db_engine, cache):
        dispatcher = MagicMock()
        dispatcher.notify_published = AsyncMock()
        dispatcher.notify_urgent = AsyncMock()
        dispatcher.notify_featured = AsyncMock()

        run_async(svc.create_announcement(
            db_engine, {**BASE, "is_published": True, "priority": "critical"},
            cache=cache, dispatcher=dispatcher,
        ))
        run_async(svc.create_announcement(
            db_engine, {**BASE, "is_published": True, "is_featured": True},
            cache=cache, dispatcher=dispatcher,
        ))
        dispatcher.notify_urgent.assert_awaited_once()
        dispatcher.notify_featured.assert_awaited_once()
        dispatcher.notify_published.assert_not_awaited()

    def test_draft_is_not_notified(self, db_engine, cache):
        dispatcher = MagicMock()
        dispatcher.notify_published = AsyncMock()
        run_async(svc.create_announcement(db_engine, BASE, cache=cache, dispatcher=dispatcher))
        dispatcher.notify_published.assert_not_awaited()

    def test_notification_failure_does_not_fail_create(self, db_engine, cache):
        dispatcher = MagicMock()
        dispatcher.notify_published = AsyncMock(side_effect=RuntimeError("down"))
        row = run_async(svc.create_announcement(
            db_engine, {**BASE, "is_published": True}, cache=cache, dispatcher=dispatcher
        ))
        assert svc.get_announcement(db_engine, row.id).is_published is True

    def test_create_invalidates_lists(self, db_engine, cache, dispatcher):
        cache.set("published:20", [])
        run_async(svc.create_announcement(db_engine, BASE, cache=cache, dispatcher=dispatcher))
        assert cache.get("published:20") is None


class TestUpdateFlow:
    def test_publish_via_update_sends_new(self, db_engine, cache, registry, dispatcher):
        conn = FakeConnection()
        registry.subscribe("alice", types=["event"])
        registry.register_connection("alice", conn)
        row = svc.insert_announcement(db_engine, BASE)

        run_async(svc.update_announcement(
            db_engine, row.id, {"is_published": True}, cache=cache, dispatcher=dispatcher
        ))
        run_async(svc.update_announcement(
            db_engine, row.id, {"title": "Spring Festival (moved)"},
            cache=cache, dispatcher=dispatcher,
        ))
        kinds = [message["type"] for _, message in conn.sent]
        assert kinds == ["new_announcement", "updated_announcement"]

    def test_update_invalidates_detail_key(self, db_engine, cache, dispatcher):
        row = svc.insert_announcement(db_engine, BASE)
        svc.get_announcement_cached(db_engine, cache, row.id)
        run_async(svc.update_announcement(
            db_engine, row.id, {"title": "New"}, cache=cache, dispatcher=dispatcher
        ))
        assert cache.get(f"announcement:{row.id}") is None


class TestRecordEngagement:
    def test_counter_and_tracking(self, db_engine, cache, tracker):
        row = svc.insert_announcement(db_engine, BASE)
        cache.set(f"announcement:{row.id}", {"stale": True})

        value = run_async(svc.record_engagement(
            db_engine, row.id, "view", cache=cache, tracker=tracker, user_id="u1",
            metadata={"read_time": 12},
        ))
        assert value == 1
        assert cache.get(f"announcement:{row.id}") is None
        assert tracker.events(announcement_id=row.id)[0].metadata == {"read_time": 12}

    def test_anonymous_engagement_not_tracked(self, db_engine, cache, tracker):
        row = svc.insert_announcement(db_engine, BASE)
        run_async(svc.record_engagement(db_engine, row.id, "like", cache=cache, tracker=tracker))
        assert len(tracker) == 0
        assert svc.get_announcement(db_engine, row.id).like_count == 1

    def test_comment_tracked_without_counter(self, db_engine, cache, tracker):
        row = svc.insert_announcement(db_engine, BASE)
        value = run_async(svc.record_engagement(
            db_engine, row.id, "comment", cache=cache, tracker=tracker, user_id="u1"
        ))
        assert value is None
        assert len(tracker) == 1

    def test_unknown_action(self, db_engine, cache, tracker):
        with pytest.raises(ValidationError):
            run_async(svc.record_engagement(
                db_engine, "x", "poke", cache=cache, tracker=tracker
            ))

    def test_missing_announcement(self, db_engine, cache, tracker):
        with pytest.raises(NotFoundError):
            run_async(svc.record_engagement(
                db_engine, "missing", "comment", cache=cache, tracker=tracker
            ))
