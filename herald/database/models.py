"""
herald.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- announcement_templates — Named content patterns with typed variables
- announcements          — Published / scheduled / draft announcements

Cache entries, subscriptions and engagement events are deliberately *not*
tables: they are process-local and lost on restart.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Herald ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class AnnouncementType(enum.StrEnum):
    EVENT = "event"
    COMPETITION = "competition"
    MAINTENANCE = "maintenance"
    UPDATE = "update"
    GENERAL = "general"
    PROMOTION = "promotion"
    COMMUNITY = "community"
    PARTNERSHIP = "partnership"
    ACHIEVEMENT = "achievement"
    NOTICE = "notice"


class AnnouncementPriority(enum.StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    CRITICAL = "critical"


class AnnouncementStatus(enum.StrEnum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    EXPIRED = "expired"


class TemplateCategory(enum.StrEnum):
    EVENT = "event"
    UPDATE = "update"
    MAINTENANCE = "maintenance"
    PROMOTION = "promotion"
    WELCOME = "welcome"
    NEWSLETTER = "newsletter"
    URGENT = "urgent"
    SEASON = "season"
    ACHIEVEMENT = "achievement"
    CUSTOM = "custom"


# ---------------------------------------------------------------------------
# AnnouncementTemplate
# ---------------------------------------------------------------------------
class AnnouncementTemplate(Base):
    """A named content pattern with ``{{name}}`` placeholders.

    ``variables`` maps each placeholder name to its schema::

        {"eventName": {"type": "string", "required": True,
                       "validation": {"min": 3, "max": 80}}}

    ``is_system`` rows are seeded at startup and are immutable.
    ``usage_count`` only ever moves up, one atomic UPDATE per generate.
    """
    __tablename__ = "announcement_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TemplateCategory.CUSTOM
    )
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AnnouncementType.GENERAL
    )
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=AnnouncementPriority.NORMAL
    )
    title_template: Mapped[str] = mapped_column(String(300), nullable=False)
    content_template: Mapped[str] = mapped_column(Text, nullable=False)
    summary_template: Mapped[str | None] = mapped_column(String(500), nullable=True)
    variables: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    default_settings: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    styling: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    __table_args__ = (
        Index("ix_announcement_templates_category", "category"),
        Index("ix_announcement_templates_name_system", "name", "is_system"),
    )

    def __repr__(self) -> str:
        return f"<AnnouncementTemplate id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Announcement
# ---------------------------------------------------------------------------
class Announcement(Base):
    """A piece of published, scheduled or draft content.

    Counters (``view_count`` … ``acknowledge_count``) are authoritative and
    only ever changed with ``col = col + 1`` UPDATEs.  The publish
    transition (``is_published`` false → true) is one-directional for the
    scheduler; only an explicit update can unpublish.
    """
    __tablename__ = "announcements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(String(500), nullable=True)
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AnnouncementType.GENERAL
    )
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=AnnouncementPriority.NORMAL
    )
    status: Mapped[str] = mapped_column(
        String(12), nullable=False, default=AnnouncementStatus.DRAFT
    )
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    target_audience: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_acknowledgment: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    allow_comments: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_users: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    scheduled_for: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    event_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    share_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    acknowledge_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        # Scheduler selection: scheduled_for <= now AND NOT is_published …
        Index(
            "ix_announcements_schedule",
            "is_published", "is_active", "scheduled_for",
        ),
        Index("ix_announcements_published_at", "published_at"),
        Index("ix_announcements_type", "type"),
    )

    def __repr__(self) -> str:
        return (
            f"<Announcement id={self.id} title={self.title!r} "
            f"published={self.is_published}>"
        )
