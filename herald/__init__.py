"""
Herald — Announcement Content & Distribution Engine
=====================================================
Renders announcements from typed templates, caches derived listings,
promotes scheduled announcements on a timer, fans notifications out to
interested subscribers, and keeps a short-lived engagement log for
analytics.

Package layout::

    herald/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Shared regexes, enums of allowed values
    ├── errors.py          # HeraldError taxonomy (validation / not found / conflict)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # Templates + announcements
    │   └── seed.py        # Built-in system templates
    ├── engine/
    │   ├── templating.py  # Variable schemas, placeholder rendering
    │   └── cache.py       # TTL content cache with category policies
    ├── services/
    │   ├── template_service.py      # Template CRUD, generate, preview, clone
    │   ├── announcement_service.py  # Announcement persistence + publish flow
    │   ├── subscription_service.py  # Subscriber registry
    │   ├── notification_service.py  # Targeting + per-channel fan-out
    │   ├── scheduler.py             # Scheduled → published promotion
    │   └── engagement_service.py    # Engagement buffer + analytics
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Singletons for DI
        └── routes/        # Templates, announcements, analytics, realtime
"""

__version__ = "0.1.0"
