"""
herald.services.scheduler — Scheduled → Published Promotion
============================================================

Every ``interval`` seconds (one minute by default) the scheduler promotes
announcements whose ``scheduled_for`` has passed:

    scheduled (is_published=false, scheduled_for=T)
        → published (is_published=true, published_at=now, scheduled_for=null)

Eligible rows are selected once and flipped with **one** bulk UPDATE.  The
UPDATE repeats the ``is_published = false`` guard, so a repeated or
overlapping tick can never publish a row twice.  A tick still running when
the next one is due is skipped, not queued.

After the DB work, list caches are invalidated and a notification goes out
per published announcement.  Errors are logged; the loop keeps running.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from herald.database.engine import run_db
from herald.database.models import Announcement, AnnouncementStatus, utcnow
from herald.engine.cache import ContentCache
from herald.services.announcement_service import notify_publication, to_utc
from herald.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60.0


def publish_due_announcements(engine: Engine, now: datetime | None = None) -> list[str]:
    """Publish every eligible scheduled announcement; return their ids.

    Eligible: ``scheduled_for <= now``, not published, active, not
    soft-deleted.
    """
    now = to_utc(now, "now") if now is not None else utcnow()
    with Session(engine) as session:
        ids = list(session.scalars(
            select(Announcement.id).where(
                Announcement.scheduled_for.is_not(None),
                Announcement.scheduled_for <= now,
                Announcement.is_published.is_(False),
                Announcement.is_active.is_(True),
                Announcement.deleted_at.is_(None),
            )
        ).all())
        if not ids:
            return []

        session.execute(
            update(Announcement)
            .where(Announcement.id.in_(ids), Announcement.is_published.is_(False))
            .values(
                is_published=True,
                published_at=now,
                scheduled_for=None,
                status=AnnouncementStatus.PUBLISHED.value,
            )
        )
        session.commit()

    logger.info("Published %d scheduled announcements", len(ids))
    return ids


def _load_many(engine: Engine, ids: list[str]) -> list[Announcement]:
    with Session(engine, expire_on_commit=False) as session:
        rows = list(session.scalars(
            select(Announcement).where(Announcement.id.in_(ids))
        ).all())
        session.expunge_all()
    return rows


class PublicationScheduler:
    """Background task that runs :func:`publish_due_announcements`.

    Usage::

        scheduler = PublicationScheduler(engine, cache=cache, dispatcher=dispatcher)
        scheduler.start(asyncio.get_running_loop())
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        engine: Engine,
        *,
        cache: ContentCache,
        dispatcher: NotificationDispatcher,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.dispatcher = dispatcher
        self.interval = interval
        self._busy = asyncio.Lock()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> list[str]:
        """Run one promotion pass.  Returns published ids; ``[]`` when the
        previous tick is still in progress or nothing was due."""
        if self._busy.locked():
            logger.warning("Previous publish tick still running, skipping")
            return []

        async with self._busy:
            ids = await run_db(publish_due_announcements, self.engine)
            if not ids:
                return []

            self.cache.invalidate_announcement_cache()
            try:
                rows = await run_db(_load_many, self.engine, ids)
            except Exception:
                logger.exception("Could not reload published announcements for notify")
                return ids
            for row in rows:
                await notify_publication(self.dispatcher, row, "new_announcement")
            return ids

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the background loop (no-op if already started)."""
        if self._task is not None:
            return

        async def _publish_loop() -> None:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.tick()
                except Exception:
                    logger.exception("Scheduled publish tick failed")

        self._task = loop.create_task(_publish_loop(), name="publish-scheduler")
        logger.info("Publication scheduler started (every %ss)", self.interval)

    def stop(self) -> None:
        """Cancel the background loop."""
        if self._task:
            self._task.cancel()
            self._task = None
            logger.info("Publication scheduler stopped")
