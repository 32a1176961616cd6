"""
herald.constants — Shared Constants
=====================================

Single source of truth for the placeholder grammar, variable types,
engagement actions and notification kinds.  Import from here instead of
duplicating literals in services and routes.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Template grammar
# ---------------------------------------------------------------------------
PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")

VARIABLE_TYPES: frozenset[str] = frozenset({
    "string", "number", "date", "boolean", "url", "email",
})

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
URL_RE = re.compile(r"^https?://.+")

# Fields of a template that callers may change through update_template()
ALLOWED_TEMPLATE_FIELDS: set[str] = {
    "name", "description", "category", "type", "priority",
    "title_template", "content_template", "summary_template",
    "variables", "default_settings", "styling", "tags", "is_active",
}

# ---------------------------------------------------------------------------
# Engagement
# ---------------------------------------------------------------------------
ENGAGEMENT_ACTIONS: frozenset[str] = frozenset({
    "view", "like", "share", "click", "acknowledge", "comment",
})

# action → authoritative counter column on Announcement
COUNTER_FIELDS: dict[str, str] = {
    "view": "view_count",
    "like": "like_count",
    "share": "share_count",
    "click": "click_count",
    "acknowledge": "acknowledge_count",
}

TIMEFRAMES: tuple[str, ...] = ("hour", "day", "week", "month")

# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
NOTIFICATION_KINDS: frozenset[str] = frozenset({
    "new_announcement",
    "updated_announcement",
    "featured_announcement",
    "urgent_announcement",
})

# Realtime event names pushed over live connections
EVENT_NOTIFICATION = "announcement_notification"

AUDIENCE_ALL = "all"
SUMMARY_PREVIEW_CHARS = 200
