"""
herald.services.subscription_service — Subscriber Registry
===========================================================

Keeps per-user notification preferences and interest filters, plus the
live connection handle (if any) used for realtime delivery.

All state is in memory and guarded by one :class:`threading.Lock`.
Readers always get copies, so a caller iterating over subscriptions never
sees a half-applied ``subscribe``.  Nothing survives a restart; clients
re-subscribe when their live connection comes back.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timedelta
from typing import Any, Protocol

from herald.database.models import AnnouncementType, utcnow
from herald.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: frozenset[str] = frozenset({"general"})
DEFAULT_TYPES: frozenset[AnnouncementType] = frozenset({AnnouncementType.GENERAL})


class LiveConnection(Protocol):
    """A realtime delivery channel (e.g. a WebSocket) for one user."""

    @property
    def connected(self) -> bool: ...

    async def send(self, event: str, payload: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class NotificationPreferences:
    real_time: bool = True
    email: bool = False
    push: bool = False
    sms: bool = False


@dataclass(slots=True)
class Subscription:
    user_id: str
    categories: set[str] = field(default_factory=lambda: set(DEFAULT_CATEGORIES))
    types: set[AnnouncementType] = field(default_factory=lambda: set(DEFAULT_TYPES))
    preferences: NotificationPreferences = field(default_factory=NotificationPreferences)
    last_activity: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "categories": sorted(self.categories),
            "types": sorted(t.value for t in self.types),
            "preferences": asdict(self.preferences),
            "last_activity": self.last_activity.isoformat(),
        }


_PREFERENCE_KEYS = frozenset(f.name for f in fields(NotificationPreferences))


def normalize_types(types: Iterable[str]) -> set[AnnouncementType]:
    """Map type names to :class:`AnnouncementType`, case-insensitively."""
    result: set[AnnouncementType] = set()
    for raw in types:
        try:
            result.add(AnnouncementType(str(raw).lower()))
        except ValueError:
            raise ValidationError(f"Unknown announcement type: {raw!r}") from None
    return result


def _apply_preferences(
    base: NotificationPreferences, changes: Mapping[str, Any] | None
) -> NotificationPreferences:
    if not changes:
        return replace(base)
    unknown = set(changes) - _PREFERENCE_KEYS
    if unknown:
        raise ValidationError(f"Unknown preference(s): {', '.join(sorted(unknown))}")
    return replace(base, **{k: bool(v) for k, v in changes.items()})


def _snapshot(sub: Subscription) -> Subscription:
    return Subscription(
        user_id=sub.user_id,
        categories=set(sub.categories),
        types=set(sub.types),
        preferences=replace(sub.preferences),
        last_activity=sub.last_activity,
    )


class SubscriberRegistry:
    """Thread-safe map of user id → :class:`Subscription` and live handle.

    Usage::

        registry = SubscriberRegistry()
        registry.subscribe("u1", types=["event"], preferences={"email": True})
        registry.register_connection("u1", websocket_handle)
        active = registry.get_active_subscribers()
    """

    def __init__(
        self,
        *,
        active_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._active_window = active_window
        self._clock = clock
        self._lock = threading.Lock()
        self._subscriptions: dict[str, Subscription] = {}
        self._connections: dict[str, LiveConnection] = {}

    # -------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------
    def subscribe(
        self,
        user_id: str,
        *,
        categories: Iterable[str] | None = None,
        types: Iterable[str] | None = None,
        preferences: Mapping[str, Any] | None = None,
    ) -> Subscription:
        """Create or merge a subscription.

        Fields passed here win; omitted fields keep the existing record's
        value, or the default for a new subscriber (categories
        ``{"general"}``, types ``{general}``, realtime only).
        """
        new_types = normalize_types(types) if types is not None else None
        with self._lock:
            existing = self._subscriptions.get(user_id)
            base = existing or Subscription(user_id=user_id)
            sub = Subscription(
                user_id=user_id,
                categories=set(categories) if categories is not None else set(base.categories),
                types=new_types if new_types is not None else set(base.types),
                preferences=_apply_preferences(base.preferences, preferences),
                last_activity=self._clock(),
            )
            self._subscriptions[user_id] = sub
            result = _snapshot(sub)
        logger.debug("User %s subscribed to announcements", user_id)
        return result

    def unsubscribe(self, user_id: str) -> bool:
        """Drop the subscription and any live connection.  Returns
        ``True`` if a subscription existed."""
        with self._lock:
            existed = self._subscriptions.pop(user_id, None) is not None
            self._connections.pop(user_id, None)
        logger.debug("User %s unsubscribed from announcements", user_id)
        return existed

    def update_preferences(self, user_id: str, **changes: Any) -> Subscription | None:
        """Shallow-merge *changes* into the user's channel preferences.

        Returns ``None`` (and does nothing) if the user isn't subscribed.
        """
        with self._lock:
            sub = self._subscriptions.get(user_id)
            if sub is None:
                return None
            sub.preferences = _apply_preferences(sub.preferences, changes)
            sub.last_activity = self._clock()
            result = _snapshot(sub)
        logger.debug("Updated preferences for user %s", user_id)
        return result

    def get_subscription(self, user_id: str) -> Subscription | None:
        with self._lock:
            sub = self._subscriptions.get(user_id)
            return _snapshot(sub) if sub is not None else None

    def subscriptions(self) -> list[Subscription]:
        """Snapshot of every subscription."""
        with self._lock:
            return [_snapshot(s) for s in self._subscriptions.values()]

    def touch(self, user_id: str) -> None:
        """Mark the user as active now (no-op if not subscribed)."""
        with self._lock:
            sub = self._subscriptions.get(user_id)
            if sub is not None:
                sub.last_activity = self._clock()

    def get_active_subscribers(self) -> list[Subscription]:
        """Subscriptions with activity inside the active window (24 h)."""
        cutoff = self._clock() - self._active_window
        with self._lock:
            return [
                _snapshot(s) for s in self._subscriptions.values()
                if s.last_activity > cutoff
            ]

    # -------------------------------------------------------------------
    # Live connections
    # -------------------------------------------------------------------
    def register_connection(self, user_id: str, handle: LiveConnection) -> None:
        with self._lock:
            self._connections[user_id] = handle
            sub = self._subscriptions.get(user_id)
            if sub is not None:
                sub.last_activity = self._clock()
        logger.debug("Registered live connection for user %s", user_id)

    def remove_connection(self, user_id: str) -> bool:
        with self._lock:
            removed = self._connections.pop(user_id, None) is not None
        if removed:
            logger.debug("Removed live connection for user %s", user_id)
        return removed

    def get_connection(self, user_id: str) -> LiveConnection | None:
        with self._lock:
            return self._connections.get(user_id)

    # -------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------
    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = len(self._subscriptions)
            connections = len(self._connections)
            with_email = sum(1 for s in self._subscriptions.values() if s.preferences.email)
            with_push = sum(1 for s in self._subscriptions.values() if s.preferences.push)
        return {
            "total_subscribers": total,
            "active_connections": connections,
            "subscriptions_with_email": with_email,
            "subscriptions_with_push": with_push,
            "connection_rate": (connections / total * 100) if total else 0.0,
        }
