"""
herald.database.seed — Built-in System Templates
==================================================

Templates seeded on startup so a fresh install can generate common
announcements immediately.  Seeded rows carry ``is_system=True`` and are
immutable through the service layer.

Seeding itself lives in
:func:`herald.services.template_service.initialize_system_templates` and
is idempotent: a definition is only inserted when no system template with
the same name exists.
"""

from __future__ import annotations

from typing import Any

from herald.database.models import (
    AnnouncementPriority,
    AnnouncementType,
    TemplateCategory,
)

# ---------------------------------------------------------------------------
# System template catalogue
# ---------------------------------------------------------------------------
SYSTEM_TEMPLATES: list[dict[str, Any]] = [
    {
        "name": "Event Announcement",
        "description": "Template for announcing events",
        "category": TemplateCategory.EVENT,
        "type": AnnouncementType.EVENT,
        "priority": AnnouncementPriority.HIGH,
        "title_template": "\U0001f389 {{eventName}} - {{eventDate}}",  # 🎉
        "content_template": (
            "We're excited to announce {{eventName}}!\n"
            "\n"
            "\U0001f4c5 Date: {{eventDate}}\n"
            "\U0001f550 Time: {{eventTime}}\n"
            "\U0001f4cd Location: {{location}}\n"
            "\n"
            "{{description}}\n"
            "\n"
            "{{registrationInfo}}\n"
            "\n"
            "We look forward to seeing you there!"
        ),
        "summary_template": "Join us for {{eventName}} on {{eventDate}}",
        "variables": {
            "eventName": {"type": "string", "required": True,
                          "description": "Name of the event"},
            "eventDate": {"type": "date", "required": True,
                          "description": "Event date"},
            "eventTime": {"type": "string", "required": True,
                          "description": "Event time"},
            "location": {"type": "string", "required": True,
                         "description": "Event location"},
            "description": {"type": "string", "required": True,
                            "description": "Event description"},
            "registrationInfo": {"type": "string", "required": False,
                                 "default_value": "",
                                 "description": "Registration instructions"},
        },
        "default_settings": {
            "is_featured": True,
            "notify_users": True,
            "target_audience": ["all"],
        },
    },
    {
        "name": "Maintenance Notice",
        "description": "Template for maintenance announcements",
        "category": TemplateCategory.MAINTENANCE,
        "type": AnnouncementType.MAINTENANCE,
        "priority": AnnouncementPriority.HIGH,
        "title_template": "\U0001f527 Scheduled Maintenance - {{maintenanceDate}}",  # 🔧
        "content_template": (
            "We will be performing scheduled maintenance on our system.\n"
            "\n"
            "⏰ Start Time: {{startTime}}\n"
            "⏰ End Time: {{endTime}}\n"
            "\U0001f4c5 Date: {{maintenanceDate}}\n"
            "\n"
            "During this time, {{affectedServices}} may be temporarily unavailable.\n"
            "\n"
            "We apologize for any inconvenience and appreciate your patience."
        ),
        "summary_template": None,
        "variables": {
            "maintenanceDate": {"type": "date", "required": True,
                                "description": "Maintenance date"},
            "startTime": {"type": "string", "required": True,
                          "description": "Start time"},
            "endTime": {"type": "string", "required": True,
                        "description": "End time"},
            "affectedServices": {"type": "string", "required": True,
                                 "description": "Affected services"},
        },
        "default_settings": {
            "is_pinned": True,
            "requires_acknowledgment": True,
            "notify_users": True,
        },
    },
    {
        "name": "Welcome Message",
        "description": "Template for welcoming new users",
        "category": TemplateCategory.WELCOME,
        "type": AnnouncementType.GENERAL,
        "priority": AnnouncementPriority.NORMAL,
        "title_template": "\U0001f44b Welcome to {{platformName}}, {{userName}}!",  # 👋
        "content_template": (
            "Welcome to {{platformName}}, {{userName}}!\n"
            "\n"
            "We're thrilled to have you join our community. "
            "Here's what you can do to get started:\n"
            "\n"
            "✅ Complete your profile\n"
            "✅ Explore our features\n"
            "✅ Join the community discussions\n"
            "✅ Check out our getting started guide\n"
            "\n"
            "If you have any questions, don't hesitate to reach out to our "
            "support team.\n"
            "\n"
            "Happy exploring!"
        ),
        "summary_template": None,
        "variables": {
            "platformName": {"type": "string", "required": True,
                             "description": "Platform name"},
            "userName": {"type": "string", "required": True,
                         "description": "User name"},
        },
        "default_settings": {
            "target_audience": ["new-users"],
            "allow_comments": True,
        },
    },
]
