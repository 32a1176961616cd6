"""
herald.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for runtime tuning (scheduler period, buffer sizes,
audience segments).  Infrastructure secrets such as ``DATABASE_URL`` stay
in the environment (``.env``, loaded by :mod:`herald.api.main`).

Usage::

    from herald.config import load_config

    cfg = load_config()                     # reads ./config.yaml by default
    print(cfg.scheduler_interval_seconds)   # 60
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class HeraldConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every key is optional; a missing key keeps the default below.
    """

    # Publication scheduler
    scheduler_interval_seconds: float = 60.0
    scheduler_enabled: bool = True

    # Engagement tracker
    engagement_buffer_capacity: int = 10_000

    # Subscriber registry
    subscriber_active_hours: int = 24

    # Notification dispatcher: stub outbox size per channel
    outbox_capacity: int = 1_000

    # Audience segment → user ids (see StaticAudienceResolver)
    audience_segments: dict[str, list[str]] = field(default_factory=dict)

    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> HeraldConfig:
    """Read *path* and return a :class:`HeraldConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to
        ``$HERALD_CONFIG`` or ``config.yaml`` in the working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value has the wrong shape (e.g. a non-numeric interval).
    """
    if path is None:
        path = os.getenv("HERALD_CONFIG", "config.yaml")
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = HeraldConfig()
    segments = raw.get("audience_segments") or {}
    if not isinstance(segments, dict):
        raise ValueError("audience_segments must be a mapping of segment → user ids")

    return HeraldConfig(
        scheduler_interval_seconds=float(
            raw.get("scheduler_interval_seconds", defaults.scheduler_interval_seconds)
        ),
        scheduler_enabled=bool(raw.get("scheduler_enabled", defaults.scheduler_enabled)),
        engagement_buffer_capacity=int(
            raw.get("engagement_buffer_capacity", defaults.engagement_buffer_capacity)
        ),
        subscriber_active_hours=int(
            raw.get("subscriber_active_hours", defaults.subscriber_active_hours)
        ),
        outbox_capacity=int(raw.get("outbox_capacity", defaults.outbox_capacity)),
        audience_segments={
            str(name): [str(uid) for uid in (members or [])]
            for name, members in segments.items()
        },
        log_level=str(raw.get("log_level", defaults.log_level)).upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install the project-wide log format on the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
