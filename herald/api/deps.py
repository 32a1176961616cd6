"""
herald.api.deps — FastAPI dependency injection
================================================

Process-wide singletons.  Tests swap any of them out through
``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache

from sqlalchemy import Engine

from herald.config import HeraldConfig, load_config
from herald.database.engine import create_db_engine
from herald.engine.cache import ContentCache
from herald.services.engagement_service import EngagementTracker
from herald.services.notification_service import (
    NotificationDispatcher,
    StaticAudienceResolver,
)
from herald.services.subscription_service import SubscriberRegistry

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> HeraldConfig:
    try:
        return load_config()
    except FileNotFoundError:
        logger.warning("No config.yaml found, using built-in defaults")
        return HeraldConfig()


@lru_cache(maxsize=1)
def get_cache() -> ContentCache:
    return ContentCache()


@lru_cache(maxsize=1)
def get_registry() -> SubscriberRegistry:
    cfg = get_config()
    return SubscriberRegistry(active_window=timedelta(hours=cfg.subscriber_active_hours))


@lru_cache(maxsize=1)
def get_dispatcher() -> NotificationDispatcher:
    cfg = get_config()
    return NotificationDispatcher(
        get_registry(),
        audience=StaticAudienceResolver(cfg.audience_segments),
        outbox_capacity=cfg.outbox_capacity,
    )


@lru_cache(maxsize=1)
def get_tracker() -> EngagementTracker:
    return EngagementTracker(get_config().engagement_buffer_capacity)
