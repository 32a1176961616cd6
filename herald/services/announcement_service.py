"""
herald.services.announcement_service — Announcement Persistence & Publish Flow
===============================================================================

Two layers:

* **Sync persistence functions** (``insert_announcement``,
  ``apply_update``, ``increment_counter`` …) take the ``Engine`` first and
  own one short-lived session each.  Counters only ever change with
  ``col = col + 1`` UPDATEs.
* **Async flows** (``create_announcement``, ``update_announcement``,
  ``record_engagement``) push the sync work through
  :func:`~herald.database.engine.run_db` and then do the side effects:
  cache invalidation, notifications, engagement tracking.  Side-effect
  failures are logged and absorbed; the write has already committed.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from sqlalchemy import Engine, func, select, update
from sqlalchemy.orm import Session

from herald.constants import COUNTER_FIELDS, ENGAGEMENT_ACTIONS
from herald.database.engine import get_session, run_db
from herald.database.models import (
    Announcement,
    AnnouncementPriority,
    AnnouncementStatus,
    AnnouncementType,
    utcnow,
)
from herald.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from herald.engine.cache import ContentCache
    from herald.services.engagement_service import EngagementTracker
    from herald.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

# Columns a caller may set on create / update
ANNOUNCEMENT_FIELDS: frozenset[str] = frozenset({
    "title", "content", "summary", "type", "priority", "status", "category",
    "tags", "target_audience", "is_active", "is_published", "is_featured",
    "is_pinned", "requires_acknowledgment", "allow_comments", "notify_users",
    "scheduled_for", "event_date", "image_url", "created_by",
})

MAX_TITLE_LENGTH = 300

# Caller-settable datetime columns; stored as naive UTC by SQLite
DATETIME_FIELDS: tuple[str, ...] = ("scheduled_for", "event_date")

_NOT_NULL_FIELDS: frozenset[str] = frozenset(
    col.key for col in Announcement.__table__.columns if not col.nullable
) & ANNOUNCEMENT_FIELDS

# bulk action → (column, value) for simple flag toggles
BULK_FLAGS: dict[str, tuple[str, bool]] = {
    "activate": ("is_active", True),
    "deactivate": ("is_active", False),
    "feature": ("is_featured", True),
    "unfeature": ("is_featured", False),
    "pin": ("is_pinned", True),
    "unpin": ("is_pinned", False),
    "enable-comments": ("allow_comments", True),
    "disable-comments": ("allow_comments", False),
    "enable-notifications": ("notify_users", True),
    "disable-notifications": ("notify_users", False),
}

BULK_ACTIONS: frozenset[str] = frozenset(
    {"publish", "unpublish", "delete", "archive"}
    | set(BULK_FLAGS)
    | {f"{p.value}-priority" for p in AnnouncementPriority}
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def announcement_to_dict(row: Announcement) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for col in Announcement.__table__.columns:
        value = getattr(row, col.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        result[col.key] = value
    return result


def to_utc(value: Any, field: str) -> datetime:
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime.

    Naive values are taken to be UTC already.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Invalid {field}: {value!r}") from None
    if not isinstance(value, datetime):
        raise ValidationError(f"Invalid {field}: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _clean(values: dict[str, Any]) -> dict[str, Any]:
    cleaned = {k: v for k, v in values.items() if k in ANNOUNCEMENT_FIELDS}
    nulls = sorted(k for k in _NOT_NULL_FIELDS if k in cleaned and cleaned[k] is None)
    if nulls:
        raise ValidationError(
            f"Fields must not be null: {', '.join(nulls)}", details={"fields": nulls}
        )
    for key in DATETIME_FIELDS:
        if cleaned.get(key) is not None:
            cleaned[key] = to_utc(cleaned[key], key)
    for key, enum_cls in (
        ("type", AnnouncementType),
        ("priority", AnnouncementPriority),
        ("status", AnnouncementStatus),
    ):
        if cleaned.get(key) is not None:
            try:
                cleaned[key] = enum_cls(str(cleaned[key]).lower()).value
            except ValueError:
                raise ValidationError(f"Invalid {key}: {cleaned[key]!r}") from None
    if "title" in cleaned:
        title = (cleaned["title"] or "").strip()
        if not title:
            raise ValidationError("Title must not be empty")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must not exceed {MAX_TITLE_LENGTH} characters")
    if "content" in cleaned and not (cleaned["content"] or "").strip():
        raise ValidationError("Content must not be empty")
    return cleaned


def validate_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Check a creation payload without writing; return the cleaned values.

    Raises :class:`ValidationError` for anything :func:`insert_announcement`
    would reject.
    """
    values = _clean(payload)
    if not values.get("title") or not values.get("content"):
        raise ValidationError("Title and content are required")
    return values


def _load(session: Session, announcement_id: str, *, with_deleted: bool = False) -> Announcement:
    row = session.get(Announcement, announcement_id)
    if row is None or (row.deleted_at is not None and not with_deleted):
        raise NotFoundError(f"Announcement with ID {announcement_id} not found")
    return row


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_announcement(engine: Engine, announcement_id: str) -> Announcement:
    """Load one (non-deleted) announcement or raise :class:`NotFoundError`."""
    with Session(engine, expire_on_commit=False) as session:
        row = _load(session, announcement_id)
        session.expunge(row)
    return row


def fetch_published(engine: Engine, limit: int = 20) -> list[dict[str, Any]]:
    """Published, active announcements: pinned first, then newest."""
    stmt = (
        select(Announcement)
        .where(
            Announcement.is_published.is_(True),
            Announcement.is_active.is_(True),
            Announcement.deleted_at.is_(None),
        )
        .order_by(Announcement.is_pinned.desc(), Announcement.published_at.desc())
        .limit(limit)
    )
    with Session(engine) as session:
        return [announcement_to_dict(r) for r in session.scalars(stmt).all()]


def list_published(engine: Engine, cache: ContentCache, limit: int = 20) -> list[dict[str, Any]]:
    """Cache-aside wrapper around :func:`fetch_published`."""
    key = cache.generate_key("published", limit)
    return cache.get_or_set(key, lambda: fetch_published(engine, limit))


def _visible() -> tuple[Any, ...]:
    return (
        Announcement.is_published.is_(True),
        Announcement.is_active.is_(True),
        Announcement.deleted_at.is_(None),
    )


def fetch_featured(engine: Engine, limit: int = 10) -> list[dict[str, Any]]:
    stmt = (
        select(Announcement)
        .where(*_visible(), Announcement.is_featured.is_(True))
        .order_by(Announcement.is_pinned.desc(), Announcement.published_at.desc())
        .limit(limit)
    )
    with Session(engine) as session:
        return [announcement_to_dict(r) for r in session.scalars(stmt).all()]


def fetch_popular(engine: Engine, limit: int = 10) -> list[dict[str, Any]]:
    """Most viewed visible announcements, likes breaking ties."""
    stmt = (
        select(Announcement)
        .where(*_visible())
        .order_by(Announcement.view_count.desc(), Announcement.like_count.desc())
        .limit(limit)
    )
    with Session(engine) as session:
        return [announcement_to_dict(r) for r in session.scalars(stmt).all()]


def list_featured(engine: Engine, cache: ContentCache, limit: int = 10) -> list[dict[str, Any]]:
    key = cache.generate_key("featured", limit)
    return cache.get_or_set(key, lambda: fetch_featured(engine, limit))


def list_popular(engine: Engine, cache: ContentCache, limit: int = 10) -> list[dict[str, Any]]:
    key = cache.generate_key("popular", limit)
    return cache.get_or_set(key, lambda: fetch_popular(engine, limit))


def get_announcement_cached(
    engine: Engine, cache: ContentCache, announcement_id: str
) -> dict[str, Any]:
    key = cache.generate_key("announcement", announcement_id)
    return cache.get_or_set(
        key, lambda: announcement_to_dict(get_announcement(engine, announcement_id))
    )


def count_active_published(engine: Engine) -> int:
    stmt = select(func.count(Announcement.id)).where(
        Announcement.is_published.is_(True),
        Announcement.is_active.is_(True),
        Announcement.deleted_at.is_(None),
    )
    with Session(engine) as session:
        return session.scalar(stmt) or 0


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def insert_announcement(engine: Engine, payload: dict[str, Any]) -> Announcement:
    """Persist a new announcement from a creation payload.

    Unknown keys are dropped.  A published payload gets ``published_at``
    set to now; an unpublished payload with ``scheduled_for`` becomes
    ``scheduled``.
    """
    values = validate_payload(payload)

    now = utcnow()
    if values.get("is_published"):
        values["published_at"] = now
        values["status"] = AnnouncementStatus.PUBLISHED.value
    elif values.get("scheduled_for") is not None:
        values.setdefault("status", AnnouncementStatus.SCHEDULED.value)

    row = Announcement(id=str(uuid4()), **values)
    with Session(engine, expire_on_commit=False) as session:
        session.add(row)
        session.commit()
        session.refresh(row)
        session.expunge(row)

    logger.info("Created announcement %s (%s)", row.id, row.title)
    return row


def apply_update(
    engine: Engine, announcement_id: str, changes: dict[str, Any]
) -> tuple[Announcement, bool]:
    """Apply *changes*; return ``(row, newly_published)``.

    Flipping ``is_published`` on stamps ``published_at`` and clears
    ``scheduled_for``; flipping it off clears ``published_at``.
    """
    values = _clean(changes)
    with Session(engine, expire_on_commit=False) as session:
        row = _load(session, announcement_id)
        was_published = row.is_published

        if "is_published" in values:
            if values["is_published"] and not was_published:
                values["published_at"] = utcnow()
                values["scheduled_for"] = None
                values.setdefault("status", AnnouncementStatus.PUBLISHED.value)
            elif not values["is_published"] and was_published:
                values["published_at"] = None
                values.setdefault("status", AnnouncementStatus.DRAFT.value)

        for key, value in values.items():
            setattr(row, key, value)
        session.commit()
        session.refresh(row)
        session.expunge(row)

    logger.info("Updated announcement %s", announcement_id)
    return row, row.is_published and not was_published


def increment_counter(engine: Engine, announcement_id: str, action: str) -> int:
    """Atomically bump the counter for *action*; return the new value."""
    column_name = COUNTER_FIELDS.get(action)
    if column_name is None:
        raise ValidationError(f"No counter for action {action!r}")
    column = getattr(Announcement, column_name)

    with Session(engine) as session:
        result = session.execute(
            update(Announcement)
            .where(Announcement.id == announcement_id, Announcement.deleted_at.is_(None))
            .values({column: column + 1})
        )
        if result.rowcount == 0:
            session.rollback()
            raise NotFoundError(f"Announcement with ID {announcement_id} not found")
        session.commit()
        return session.scalar(
            select(column).where(Announcement.id == announcement_id)
        ) or 0


def bulk_update(engine: Engine, ids: list[str], values: dict[str, Any]) -> int:
    """One UPDATE for every id in *ids*; returns rows affected."""
    if not ids:
        return 0
    with Session(engine) as session:
        result = session.execute(
            update(Announcement).where(Announcement.id.in_(ids)).values(**values)
        )
        session.commit()
    logger.info("Bulk updated %d announcements", result.rowcount)
    return result.rowcount


def _bulk_values(action: str) -> dict[str, Any]:
    if action not in BULK_ACTIONS:
        raise ValidationError(
            f"Unknown bulk action: {action!r}",
            details={"allowed": sorted(BULK_ACTIONS)},
        )
    if action == "publish":
        return {
            "is_published": True,
            "published_at": utcnow(),
            "scheduled_for": None,
            "status": AnnouncementStatus.PUBLISHED.value,
        }
    if action == "unpublish":
        return {
            "is_published": False,
            "published_at": None,
            "status": AnnouncementStatus.DRAFT.value,
        }
    if action in ("delete", "archive"):
        return {"deleted_at": utcnow()}
    if action.endswith("-priority"):
        return {"priority": action.removesuffix("-priority")}
    column, value = BULK_FLAGS[action]
    return {column: value}


def bulk_action(engine: Engine, ids: list[str], action: str) -> int:
    """Apply a named bulk action (``publish``, ``feature``, ``high-priority`` …)."""
    return bulk_update(engine, ids, _bulk_values(action))


def soft_delete(engine: Engine, announcement_id: str) -> None:
    with get_session(engine) as session:
        row = _load(session, announcement_id)
        row.deleted_at = utcnow()
    logger.info("Soft deleted announcement %s", announcement_id)


def restore(engine: Engine, announcement_id: str) -> Announcement:
    with get_session(engine) as session:
        row = _load(session, announcement_id, with_deleted=True)
        row.deleted_at = None
    logger.info("Restored announcement %s", announcement_id)
    return row


# ---------------------------------------------------------------------------
# Async flows
# ---------------------------------------------------------------------------
async def notify_publication(
    dispatcher: NotificationDispatcher, row: Announcement, kind: str
) -> None:
    """Send one notification per publish: urgent, else featured, else plain."""
    if not row.notify_users:
        return
    try:
        if kind == "new_announcement" and row.priority in (
            AnnouncementPriority.URGENT, AnnouncementPriority.CRITICAL,
        ):
            await dispatcher.notify_urgent(row)
        elif kind == "new_announcement" and row.is_featured:
            await dispatcher.notify_featured(row)
        else:
            await dispatcher.notify_published(row, kind=kind)
    except Exception:
        logger.exception("Notification for announcement %s failed", row.id)


async def create_announcement(
    engine: Engine,
    payload: dict[str, Any],
    *,
    cache: ContentCache,
    dispatcher: NotificationDispatcher,
) -> Announcement:
    """Persist, invalidate list caches, and notify if published."""
    row = await run_db(insert_announcement, engine, payload)
    cache.invalidate_announcement_cache()
    if row.is_published:
        await notify_publication(dispatcher, row, "new_announcement")
    return row


async def update_announcement(
    engine: Engine,
    announcement_id: str,
    changes: dict[str, Any],
    *,
    cache: ContentCache,
    dispatcher: NotificationDispatcher,
) -> Announcement:
    """Apply changes, invalidate caches, and notify on publish.

    A publish transition sends ``new_announcement``; an edit to an already
    published announcement sends ``updated_announcement``.
    """
    row, newly_published = await run_db(apply_update, engine, announcement_id, changes)
    cache.invalidate_announcement_cache(announcement_id)
    if newly_published:
        await notify_publication(dispatcher, row, "new_announcement")
    elif row.is_published and changes:
        await notify_publication(dispatcher, row, "updated_announcement")
    return row


async def record_engagement(
    engine: Engine,
    announcement_id: str,
    action: str,
    *,
    cache: ContentCache,
    tracker: EngagementTracker,
    user_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> int | None:
    """Bump the authoritative counter and log the event for analytics.

    Returns the new counter value (``None`` for actions without a
    counter, such as ``comment``).
    """
    if action not in ENGAGEMENT_ACTIONS:
        raise ValidationError(f"Unknown engagement action: {action!r}")
    value = None
    if action in COUNTER_FIELDS:
        value = await run_db(increment_counter, engine, announcement_id, action)
    else:
        await run_db(get_announcement, engine, announcement_id)

    if user_id:
        try:
            tracker.track(user_id, announcement_id, action, metadata=metadata)
        except Exception:
            logger.exception("Engagement tracking failed for %s", announcement_id)
    cache.delete(cache.generate_key("announcement", announcement_id))
    return value
