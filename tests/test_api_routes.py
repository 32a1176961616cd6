"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================

Drives the HTTP and WebSocket surface through ``TestClient`` against the
in-memory fixtures from conftest.  Startup seeds the system templates.
"""

from __future__ import annotations

import pytest

from herald.database.seed import SYSTEM_TEMPLATES

FESTIVAL = {
    "name": "Festival",
    "category": "event",
    "type": "event",
    "priority": "high",
    "title_template": "\U0001f389 {{eventName}} - {{eventDate}}",
    "content_template": "Join {{eventName}} on {{eventDate}}.",
    "variables": {
        "eventName": {"type": "string", "required": True},
        "eventDate": {"type": "date", "required": True},
    },
    "default_settings": {"is_published": True},
}

SPRING = {"eventName": "Spring Festival", "eventDate": "2024-03-15"}


def _create_template(client, **overrides) -> dict:
    resp = client.post("/api/templates", json={**FESTIVAL, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _create_announcement(client, **overrides) -> dict:
    body = {"title": "Spring Festival", "content": "Music and food.", "type": "event"}
    resp = client.post("/api/announcements", json={**body, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()


# ===========================================================================
# Health
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Templates
# ===========================================================================
class TestTemplateRoutes:
    def test_system_templates_seeded_on_startup(self, client):
        resp = client.get("/api/templates")
        assert resp.status_code == 200
        assert len(resp.json()) == len(SYSTEM_TEMPLATES)
        assert client.post("/api/templates/initialize-system").json() == {"inserted": 0}

    def test_create_and_get(self, client):
        created = _create_template(client)
        resp = client.get(f"/api/templates/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Festival"

    def test_create_with_undefined_placeholder(self, client):
        resp = client.post("/api/templates", json={
            **FESTIVAL, "content_template": "{{venue}}",
        })
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_error"
        assert resp.json()["details"] == {"undefined": ["venue"]}

    def test_unknown_template_404(self, client):
        resp = client.get("/api/templates/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    def test_preview(self, client):
        created = _create_template(client)
        resp = client.post("/api/templates/preview", json={
            "template_id": created["id"], "variables": SPRING,
        })
        assert resp.status_code == 200
        assert resp.json()["title"] == "\U0001f389 Spring Festival - 2024-03-15"

    def test_generate_creates_announcement(self, client):
        created = _create_template(client)
        resp = client.post("/api/templates/generate", json={
            "template_id": created["id"], "variables": SPRING, "created_by": "u1",
        })
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["title"] == "\U0001f389 Spring Festival - 2024-03-15"
        assert body["is_published"] is True
        assert body["priority"] == "high"

        popular = client.get("/api/templates/popular", params={"limit": 1}).json()
        assert popular[0]["id"] == created["id"]
        assert popular[0]["usage_count"] == 1

    def test_generate_missing_variable(self, client):
        created = _create_template(client)
        resp = client.post("/api/templates/generate", json={
            "template_id": created["id"], "variables": {"eventName": "Gala"},
        })
        assert resp.status_code == 422

    def test_generate_with_scheduled_override(self, client):
        created = _create_template(client)
        resp = client.post("/api/templates/generate", json={
            "template_id": created["id"],
            "variables": SPRING,
            "overrides": {"is_published": False, "scheduled_for": "2030-01-01T00:00:00Z"},
        })
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["status"] == "scheduled"
        assert body["scheduled_for"].startswith("2030-01-01T00:00:00")

    def test_generate_bad_override_keeps_usage(self, client):
        created = _create_template(client)
        resp = client.post("/api/templates/generate", json={
            "template_id": created["id"],
            "variables": SPRING,
            "overrides": {"scheduled_for": "whenever"},
        })
        assert resp.status_code == 422
        assert client.get(f"/api/templates/{created['id']}").json()["usage_count"] == 0

    def test_patch_null_required_field(self, client):
        created = _create_template(client)
        resp = client.patch(f"/api/templates/{created['id']}", json={"is_active": None})
        assert resp.status_code == 422
        assert resp.json()["details"] == {"fields": ["is_active"]}

    def test_patch_system_template_conflicts(self, client):
        system = client.get("/api/templates", params={"search": "Welcome"}).json()[0]
        resp = client.patch(f"/api/templates/{system['id']}", json={"name": "Mine"})
        assert resp.status_code == 409
        assert client.delete(f"/api/templates/{system['id']}").status_code == 409

    def test_clone_then_edit(self, client):
        system = client.get("/api/templates", params={"search": "Welcome"}).json()[0]
        resp = client.post(f"/api/templates/{system['id']}/clone", json={"name": "Ours"})
        assert resp.status_code == 201
        clone = resp.json()
        assert clone["is_system"] is False
        patched = client.patch(f"/api/templates/{clone['id']}", json={"description": "x"})
        assert patched.status_code == 200
        assert client.delete(f"/api/templates/{clone['id']}").status_code == 204

    def test_categories_and_stats(self, client):
        assert "event" in client.get("/api/templates/categories").json()
        stats = client.get("/api/templates/stats").json()
        assert stats["system_templates"] == len(SYSTEM_TEMPLATES)


# ===========================================================================
# Announcements
# ===========================================================================
class TestAnnouncementRoutes:
    def test_create_and_get(self, client):
        created = _create_announcement(client)
        resp = client.get(f"/api/announcements/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["title"] == "Spring Festival"

    def test_invalid_body(self, client):
        resp = client.post("/api/announcements", json={"title": "", "content": "x"})
        assert resp.status_code == 422

    def test_published_listing(self, client):
        _create_announcement(client, is_published=True)
        _create_announcement(client)
        resp = client.get("/api/announcements/published")
        assert resp.status_code == 200
        assert len(resp.json()) == 1

    def test_counter_endpoint(self, client, tracker):
        created = _create_announcement(client)
        for _ in range(2):
            resp = client.post(
                f"/api/announcements/{created['id']}/view", json={"user_id": "u1"}
            )
        assert resp.status_code == 200
        assert resp.json()["count"] == 2
        assert len(tracker) == 2

        resp = client.post(f"/api/announcements/{created['id']}/like")
        assert resp.json()["count"] == 1

    def test_unknown_counter_action(self, client):
        created = _create_announcement(client)
        resp = client.post(f"/api/announcements/{created['id']}/poke")
        assert resp.status_code == 422

    def test_patch_publish(self, client):
        created = _create_announcement(client)
        resp = client.patch(
            f"/api/announcements/{created['id']}", json={"is_published": True}
        )
        assert resp.status_code == 200
        assert resp.json()["published_at"] is not None

    def test_patch_null_flag_rejected(self, client):
        created = _create_announcement(client)
        resp = client.patch(f"/api/announcements/{created['id']}", json={"is_active": None})
        assert resp.status_code == 422
        assert client.get(f"/api/announcements/{created['id']}").json()["is_active"] is True

    def test_create_with_offset_schedule(self, client):
        created = _create_announcement(client, scheduled_for="2030-01-01T02:00:00+02:00")
        assert created["status"] == "scheduled"
        assert created["scheduled_for"].startswith("2030-01-01T00:00:00")

    def test_featured_and_popular(self, client):
        featured = _create_announcement(client, is_published=True, is_featured=True)
        plain = _create_announcement(client, is_published=True)
        client.post(f"/api/announcements/{plain['id']}/view")

        resp = client.get("/api/announcements/featured")
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()] == [featured["id"]]
        popular = client.get("/api/announcements/popular").json()
        assert popular[0]["id"] == plain["id"]

    def test_delete_and_restore(self, client):
        created = _create_announcement(client)
        assert client.delete(f"/api/announcements/{created['id']}").status_code == 204
        assert client.get(f"/api/announcements/{created['id']}").status_code == 404
        resp = client.post(f"/api/announcements/{created['id']}/restore")
        assert resp.status_code == 200
        assert client.get(f"/api/announcements/{created['id']}").status_code == 200

    def test_bulk(self, client):
        ids = [_create_announcement(client)["id"] for _ in range(2)]
        resp = client.post("/api/announcements/bulk", json={"ids": ids, "action": "pin"})
        assert resp.status_code == 200
        assert resp.json()["affected"] == 2
        assert client.get(f"/api/announcements/{ids[0]}").json()["is_pinned"] is True

        bad = client.post("/api/announcements/bulk", json={"ids": ids, "action": "nuke"})
        assert bad.status_code == 422


# ===========================================================================
# Analytics
# ===========================================================================
class TestAnalyticsRoutes:
    def test_track_and_metrics(self, client):
        created = _create_announcement(client, is_published=True)
        resp = client.post("/api/analytics/track", json={
            "user_id": "u1", "announcement_id": created["id"], "action": "view",
        })
        assert resp.status_code == 202
        client.post("/api/analytics/track", json={
            "user_id": "u1", "announcement_id": created["id"], "action": "like",
        })

        metrics = client.get(f"/api/analytics/{created['id']}/metrics").json()
        assert metrics["views"] == 1
        assert metrics["likes"] == 1
        assert metrics["engagement_rate"] == 1.0

    def test_track_unknown_action(self, client):
        resp = client.post("/api/analytics/track", json={
            "user_id": "u1", "announcement_id": "x", "action": "poke",
        })
        assert resp.status_code == 422

    @pytest.mark.parametrize(
        "path",
        [
            "/api/analytics/performance-report",
            "/api/analytics/top-performing",
            "/api/analytics/trends",
            "/api/analytics/dashboard",
            "/api/analytics/users/u1/summary",
            "/api/analytics/notifications/stats",
            "/api/analytics/cache/stats",
        ],
    )
    def test_read_endpoints_respond(self, client, path):
        assert client.get(path).status_code == 200

    def test_top_performing_unknown_metric(self, client):
        resp = client.get("/api/analytics/top-performing", params={"metric": "vibes"})
        assert resp.status_code == 422

    def test_metrics_unknown_announcement(self, client):
        assert client.get("/api/analytics/missing/metrics").status_code == 404


# ===========================================================================
# Realtime channel
# ===========================================================================
class TestRealtimeChannel:
    def test_subscribe_and_receive_notification(self, client):
        with client.websocket_connect("/api/announcements/ws?user_id=alice") as ws:
            hello = ws.receive_json()
            assert hello["event"] == "recent_announcements"

            ws.send_json({"event": "subscribe_notifications",
                          "data": {"types": ["event"]}})
            confirmed = ws.receive_json()
            assert confirmed["event"] == "subscription_confirmed"
            assert confirmed["data"]["types"] == ["event"]

            _create_announcement(client, is_published=True)
            pushed = ws.receive_json()
            assert pushed["event"] == "announcement_notification"
            assert pushed["data"]["announcement"]["title"] == "Spring Festival"


    def test_bad_preferences_reply_error(self, client):
        with client.websocket_connect("/api/announcements/ws?user_id=bob") as ws:
            ws.receive_json()
            ws.send_json({"event": "subscribe_notifications", "data": {}})
            ws.receive_json()
            ws.send_json({"event": "update_preferences", "data": {"fax": True}})
            reply = ws.receive_json()
            assert reply["event"] == "error"
            assert reply["data"]["code"] == "validation_error"

    def test_track_engagement_over_socket(self, client, tracker):
        created = _create_announcement(client)
        with client.websocket_connect("/api/announcements/ws?user_id=carol") as ws:
            ws.receive_json()
            ws.send_json({"event": "track_engagement", "data": {
                "announcement_id": created["id"], "action": "share",
            }})
            reply = ws.receive_json()
            assert reply["event"] == "engagement_tracked"
            assert reply["data"]["count"] == 1
        assert tracker.events(user_id="carol")[0].action == "share"

    def test_unknown_event(self, client):
        with client.websocket_connect("/api/announcements/ws?user_id=dave") as ws:
            ws.receive_json()
            ws.send_json({"event": "dance", "data": {}})
            assert ws.receive_json()["event"] == "error"
