"""
herald.services.notification_service — Targeting & Per-Channel Fan-out
=======================================================================

Matches an announcement against every subscription in the
:class:`SubscriberRegistry` and delivers it on each channel the subscriber
enabled:

* **realtime** — pushed through the user's live connection, if connected.
* **email** / **push** — appended to an in-memory outbox.  No provider is
  wired up; the outboxes are the hand-off point for one.

Targeting, in order:

1. ``announcement.type`` must be in the subscriber's types.
2. If the announcement has a category and the subscriber filters by
   category, it must be in the subscriber's categories.
3. If the payload names a target audience without ``"all"``, the
   subscriber must belong to at least one listed segment according to the
   :class:`AudienceResolver`.

Each subscriber and channel is delivered independently: one failure is
logged and counted, never propagated.  :meth:`NotificationDispatcher.notify`
does not raise.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from herald.constants import (
    AUDIENCE_ALL,
    EVENT_NOTIFICATION,
    NOTIFICATION_KINDS,
    SUMMARY_PREVIEW_CHARS,
)
from herald.database.models import Announcement, AnnouncementPriority, utcnow
from herald.services.subscription_service import SubscriberRegistry, Subscription

logger = logging.getLogger(__name__)

_PRIORITY_MAP: dict[str, str] = {
    AnnouncementPriority.LOW: "low",
    AnnouncementPriority.NORMAL: "medium",
    AnnouncementPriority.HIGH: "high",
    AnnouncementPriority.URGENT: "urgent",
    AnnouncementPriority.CRITICAL: "urgent",
}


def map_priority(priority: str | None) -> str:
    """Announcement priority → notification priority (default ``medium``)."""
    return _PRIORITY_MAP.get(str(priority or "").lower(), "medium")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def format_for_notification(announcement: Announcement) -> dict[str, Any]:
    """The slice of an announcement that goes out in a notification."""
    summary = announcement.summary
    if not summary:
        content = announcement.content or ""
        summary = content
        if len(content) > SUMMARY_PREVIEW_CHARS:
            summary = content[:SUMMARY_PREVIEW_CHARS] + "..."
    return {
        "id": announcement.id,
        "title": announcement.title,
        "summary": summary,
        "type": announcement.type,
        "priority": announcement.priority,
        "published_at": _iso(announcement.published_at),
        "image_url": announcement.image_url,
        "event_date": _iso(announcement.event_date),
    }


# ---------------------------------------------------------------------------
# Audience segments
# ---------------------------------------------------------------------------
class AudienceResolver(Protocol):
    def matches(self, user_id: str, segment: str) -> bool: ...


class StaticAudienceResolver:
    """Segment membership from an explicit ``segment → user ids`` mapping.

    ``"all"`` matches everyone; an unknown segment matches no one.
    """

    def __init__(self, segments: Mapping[str, Iterable[str]] | None = None) -> None:
        self._segments: dict[str, frozenset[str]] = {
            name: frozenset(members) for name, members in (segments or {}).items()
        }

    def matches(self, user_id: str, segment: str) -> bool:
        if segment == AUDIENCE_ALL:
            return True
        return user_id in self._segments.get(segment, frozenset())


# ---------------------------------------------------------------------------
# Payload / result
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class NotificationPayload:
    kind: str
    announcement: Announcement
    priority: str = "medium"
    target_audience: list[str] | None = None
    metadata: dict[str, Any] | None = None


@dataclass(slots=True)
class DispatchResult:
    kind: str
    announcement_id: str | None
    targeted: int = 0
    realtime: int = 0
    email: int = 0
    push: int = 0
    failed: int = 0
    recipients: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
class NotificationDispatcher:
    """Fans announcement notifications out to matching subscribers.

    Usage::

        dispatcher = NotificationDispatcher(registry, audience=resolver)
        await dispatcher.notify(NotificationPayload(
            kind="new_announcement", announcement=row, priority="high",
        ))
    """

    def __init__(
        self,
        registry: SubscriberRegistry,
        *,
        audience: AudienceResolver | None = None,
        outbox_capacity: int = 1_000,
    ) -> None:
        self.registry = registry
        self.audience: AudienceResolver = audience or StaticAudienceResolver()
        self.email_outbox: deque[tuple[str, dict[str, Any]]] = deque(maxlen=outbox_capacity)
        self.push_outbox: deque[tuple[str, dict[str, Any]]] = deque(maxlen=outbox_capacity)

    # -------------------------------------------------------------------
    # Targeting
    # -------------------------------------------------------------------
    def _in_audience(self, user_id: str, audience: list[str] | None) -> bool:
        if not audience or AUDIENCE_ALL in audience:
            return True
        for segment in audience:
            try:
                if self.audience.matches(user_id, segment):
                    return True
            except Exception:
                logger.exception(
                    "Audience check failed for user %s, segment %s", user_id, segment
                )
        return False

    def target_subscribers(self, payload: NotificationPayload) -> list[Subscription]:
        """Subscribers that should receive *payload*."""
        announcement = payload.announcement
        ann_type = str(announcement.type or "").lower()
        category = announcement.category

        targets: list[Subscription] = []
        for sub in self.registry.subscriptions():
            if ann_type not in sub.types:
                continue
            if category and sub.categories and category not in sub.categories:
                continue
            if not self._in_audience(sub.user_id, payload.target_audience):
                continue
            targets.append(sub)
        return targets

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------
    async def notify(self, payload: NotificationPayload) -> DispatchResult:
        """Deliver *payload* to every matching subscriber.  Never raises."""
        announcement_id = getattr(payload.announcement, "id", None)
        result = DispatchResult(kind=payload.kind, announcement_id=announcement_id)
        try:
            if payload.kind not in NOTIFICATION_KINDS:
                logger.warning("Unknown notification kind %r", payload.kind)
            targets = self.target_subscribers(payload)
            result.targeted = len(targets)
            logger.debug(
                "Sending %s notification for %s to %d users",
                payload.kind, announcement_id, len(targets),
            )

            message = {
                "type": payload.kind,
                "announcement": format_for_notification(payload.announcement),
                "priority": payload.priority,
                "timestamp": utcnow().isoformat(),
            }
            if payload.metadata:
                message["metadata"] = payload.metadata

            for sub in targets:
                await self._deliver(sub, message, result)

            logger.info(
                "Notified %d users about announcement %s "
                "(realtime=%d email=%d push=%d failed=%d)",
                result.targeted, announcement_id,
                result.realtime, result.email, result.push, result.failed,
            )
        except Exception:
            logger.exception("Failed to send notifications for %s", announcement_id)
        return result

    async def _deliver(
        self, sub: Subscription, message: dict[str, Any], result: DispatchResult
    ) -> None:
        prefs = sub.preferences
        delivered = False

        if prefs.real_time:
            try:
                handle = self.registry.get_connection(sub.user_id)
                if handle is not None and handle.connected:
                    await handle.send(EVENT_NOTIFICATION, message)
                    result.realtime += 1
                    delivered = True
            except Exception:
                result.failed += 1
                logger.exception("Realtime notification to user %s failed", sub.user_id)

        if prefs.email:
            try:
                self.email_outbox.append((sub.user_id, message))
                result.email += 1
                delivered = True
            except Exception:
                result.failed += 1
                logger.exception("Email notification to user %s failed", sub.user_id)

        if prefs.push:
            try:
                self.push_outbox.append((sub.user_id, message))
                result.push += 1
                delivered = True
            except Exception:
                result.failed += 1
                logger.exception("Push notification to user %s failed", sub.user_id)

        if delivered:
            result.recipients.append(sub.user_id)

    # -------------------------------------------------------------------
    # Convenience wrappers
    # -------------------------------------------------------------------
    async def notify_published(
        self, announcement: Announcement, *, kind: str = "new_announcement"
    ) -> DispatchResult:
        return await self.notify(NotificationPayload(
            kind=kind,
            announcement=announcement,
            priority=map_priority(announcement.priority),
            target_audience=announcement.target_audience,
        ))

    async def notify_urgent(self, announcement: Announcement) -> DispatchResult:
        return await self.notify(NotificationPayload(
            kind="urgent_announcement",
            announcement=announcement,
            priority="urgent",
            target_audience=announcement.target_audience or [AUDIENCE_ALL],
        ))

    async def notify_featured(self, announcement: Announcement) -> DispatchResult | None:
        """Notify about a featured announcement; no-op unless ``is_featured``."""
        if not announcement.is_featured:
            return None
        return await self.notify(NotificationPayload(
            kind="featured_announcement",
            announcement=announcement,
            priority="high",
            target_audience=announcement.target_audience or [AUDIENCE_ALL],
        ))
