"""
herald.services.template_service — Template CRUD, Generate, Preview, Clone
===========================================================================

Every function takes the SQLAlchemy ``Engine`` first and opens its own
short-lived session.  Returned ORM objects are expunged, so callers can
read them after the session is gone.

Validation (variable schema, placeholder coverage, supplied values) is
delegated to :mod:`herald.engine.templating`; this module owns the rules
about *when* it runs:

* create — always.
* update — only when a template string or the variable schema changes.
* generate / preview — supplied values are checked on every call.

System templates (``is_system=True``) cannot be updated or deleted.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import Engine, func, or_, select, update
from sqlalchemy.orm import Session

from herald.constants import ALLOWED_TEMPLATE_FIELDS
from herald.database.models import (
    AnnouncementPriority,
    AnnouncementTemplate,
    AnnouncementType,
    TemplateCategory,
)
from herald.database.seed import SYSTEM_TEMPLATES
from herald.engine.templating import (
    check_placeholders_defined,
    parse_variable_schema,
    render,
    validate_variables,
)
from herald.errors import ConflictError, NotFoundError, ValidationError
from herald.services.announcement_service import validate_payload

logger = logging.getLogger(__name__)

# Template fields whose change forces schema / placeholder re-validation
_CONTENT_FIELDS = frozenset({
    "title_template", "content_template", "summary_template", "variables",
})

_NOT_NULL_FIELDS = frozenset(
    col.key for col in AnnouncementTemplate.__table__.columns if not col.nullable
)

# Copied by clone_template(); identity, timestamps and counters are not
_CLONED_FIELDS: tuple[str, ...] = (
    "description", "category", "type", "priority",
    "title_template", "content_template", "summary_template",
    "variables", "default_settings", "styling", "tags", "is_active",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def template_to_dict(template: AnnouncementTemplate) -> dict[str, Any]:
    """Serialize a template row for JSON responses."""
    result: dict[str, Any] = {}
    for col in AnnouncementTemplate.__table__.columns:
        value = getattr(template, col.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        result[col.key] = value
    return result


def _coerce(enum_cls: type[enum.StrEnum], value: Any, field: str) -> str:
    try:
        return enum_cls(str(value).lower()).value
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}") from None


def _validate_definition(
    title_template: str,
    content_template: str,
    summary_template: str | None,
    variables: dict[str, Any] | None,
) -> None:
    if not title_template or not title_template.strip():
        raise ValidationError("title_template must not be empty")
    if not content_template or not content_template.strip():
        raise ValidationError("content_template must not be empty")
    schema = parse_variable_schema(variables)
    check_placeholders_defined(
        (title_template, content_template, summary_template), schema
    )


def _render(template: AnnouncementTemplate, variables: dict[str, Any] | None) -> dict[str, Any]:
    """Validate *variables* against *template* and substitute them."""
    schema = parse_variable_schema(template.variables)
    values = validate_variables(schema, variables)
    rendered: dict[str, Any] = {
        "title": render(template.title_template, values),
        "content": render(template.content_template, values),
    }
    if template.summary_template:
        rendered["summary"] = render(template.summary_template, values)
    return rendered


def _load(session: Session, template_id: str) -> AnnouncementTemplate:
    template = session.get(AnnouncementTemplate, template_id)
    if template is None:
        raise NotFoundError(f"Template with ID {template_id} not found")
    return template


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
def create_template(
    engine: Engine,
    *,
    name: str,
    title_template: str,
    content_template: str,
    category: str = TemplateCategory.CUSTOM,
    type: str = AnnouncementType.GENERAL,
    priority: str = AnnouncementPriority.NORMAL,
    summary_template: str | None = None,
    variables: dict[str, Any] | None = None,
    default_settings: dict[str, Any] | None = None,
    styling: dict[str, Any] | None = None,
    tags: list[str] | None = None,
    description: str | None = None,
    created_by: str | None = None,
) -> AnnouncementTemplate:
    """Validate and persist a new (non-system) template.

    Raises
    ------
    ValidationError
        Bad variable schema, undefined placeholder, empty template text,
        or an unknown category / type / priority.
    """
    if not name or not name.strip():
        raise ValidationError("Template name must not be empty")
    _validate_definition(title_template, content_template, summary_template, variables)

    template = AnnouncementTemplate(
        id=str(uuid4()),
        name=name.strip(),
        description=description,
        category=_coerce(TemplateCategory, category, "category"),
        type=_coerce(AnnouncementType, type, "type"),
        priority=_coerce(AnnouncementPriority, priority, "priority"),
        title_template=title_template,
        content_template=content_template,
        summary_template=summary_template,
        variables=variables or {},
        default_settings=default_settings or {},
        styling=styling,
        tags=tags or [],
        is_active=True,
        is_system=False,
        usage_count=0,
        created_by=created_by,
        updated_by=created_by,
    )
    with Session(engine, expire_on_commit=False) as session:
        session.add(template)
        session.commit()
        session.refresh(template)
        session.expunge(template)

    logger.info("Created template %s (%s)", template.id, template.name)
    return template


def list_templates(
    engine: Engine,
    *,
    category: str | None = None,
    type: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    created_by: str | None = None,
) -> list[AnnouncementTemplate]:
    """Return templates matching every given filter, most used first."""
    stmt = select(AnnouncementTemplate)
    if category:
        stmt = stmt.where(AnnouncementTemplate.category == category)
    if type:
        stmt = stmt.where(AnnouncementTemplate.type == type)
    if is_active is not None:
        stmt = stmt.where(AnnouncementTemplate.is_active == is_active)
    if created_by:
        stmt = stmt.where(AnnouncementTemplate.created_by == created_by)
    if search:
        needle = f"%{search.lower()}%"
        stmt = stmt.where(or_(
            func.lower(AnnouncementTemplate.name).like(needle),
            func.lower(AnnouncementTemplate.description).like(needle),
            func.lower(AnnouncementTemplate.title_template).like(needle),
        ))
    stmt = stmt.order_by(
        AnnouncementTemplate.usage_count.desc(),
        AnnouncementTemplate.updated_at.desc(),
    )
    with Session(engine, expire_on_commit=False) as session:
        rows = list(session.scalars(stmt).all())
        session.expunge_all()
    return rows


def get_template(engine: Engine, template_id: str) -> AnnouncementTemplate:
    """Load one template.  Raises :class:`NotFoundError` if absent."""
    with Session(engine, expire_on_commit=False) as session:
        template = _load(session, template_id)
        session.expunge(template)
    return template


def update_template(
    engine: Engine,
    template_id: str,
    *,
    updated_by: str | None = None,
    **changes: Any,
) -> AnnouncementTemplate:
    """Apply *changes* to a user template.

    Keys outside the editable field set are ignored.  When a template
    string or the variable schema changes, the merged result is validated
    again before anything is written.

    Raises
    ------
    NotFoundError
        Unknown id.
    ConflictError
        The template is a system template.
    ValidationError
        The merged template no longer validates.
    """
    changes = {k: v for k, v in changes.items() if k in ALLOWED_TEMPLATE_FIELDS}
    nulls = sorted(k for k, v in changes.items() if v is None and k in _NOT_NULL_FIELDS)
    if nulls:
        raise ValidationError(
            f"Fields must not be null: {', '.join(nulls)}", details={"fields": nulls}
        )
    with Session(engine, expire_on_commit=False) as session:
        template = _load(session, template_id)
        if template.is_system:
            raise ConflictError("System templates cannot be modified")

        if _CONTENT_FIELDS & changes.keys():
            _validate_definition(
                changes.get("title_template", template.title_template),
                changes.get("content_template", template.content_template),
                changes.get("summary_template", template.summary_template),
                changes.get("variables", template.variables),
            )
        for key, enum_cls in (
            ("category", TemplateCategory),
            ("type", AnnouncementType),
            ("priority", AnnouncementPriority),
        ):
            if key in changes:
                changes[key] = _coerce(enum_cls, changes[key], key)
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("Template name must not be empty")

        for key, value in changes.items():
            setattr(template, key, value)
        if updated_by is not None:
            template.updated_by = updated_by
        session.commit()
        session.refresh(template)
        session.expunge(template)

    logger.info("Updated template %s (%s)", template.id, template.name)
    return template


def delete_template(engine: Engine, template_id: str) -> None:
    """Delete a user template.  System templates raise :class:`ConflictError`."""
    with Session(engine) as session:
        template = _load(session, template_id)
        if template.is_system:
            raise ConflictError("System templates cannot be deleted")
        name = template.name
        session.delete(template)
        session.commit()
    logger.info("Deleted template %s (%s)", template_id, name)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------
def generate_from_template(
    engine: Engine,
    template_id: str,
    variables: dict[str, Any] | None,
    *,
    overrides: dict[str, Any] | None = None,
    created_by: str | None = None,
) -> dict[str, Any]:
    """Render a template into an announcement creation payload.

    Precedence, lowest first: the template's ``default_settings``, then
    *overrides*, then the generated fields (title, content, summary, type,
    priority, created_by).  ``usage_count`` goes up by exactly one with a
    single ``usage_count + 1`` UPDATE.  Nothing else is persisted.

    Raises
    ------
    NotFoundError
        Unknown id.
    ValidationError
        Template inactive, *variables* fail the schema, or the merged
        payload would not make a valid announcement (checked before the
        usage increment).
    """
    with Session(engine, expire_on_commit=False) as session:
        template = _load(session, template_id)
        if not template.is_active:
            raise ValidationError("Template is not active", code="template_inactive")

        rendered = _render(template, variables)
        payload: dict[str, Any] = {
            **(template.default_settings or {}),
            **(overrides or {}),
            **rendered,
            "type": template.type,
            "priority": template.priority,
            "created_by": created_by,
        }
        validate_payload(payload)

        session.execute(
            update(AnnouncementTemplate)
            .where(AnnouncementTemplate.id == template.id)
            .values(usage_count=AnnouncementTemplate.usage_count + 1)
        )
        session.commit()

    logger.info("Generated announcement payload from template %s", template_id)
    return payload


def preview_template(
    engine: Engine, template_id: str, variables: dict[str, Any] | None
) -> dict[str, Any]:
    """Render title / content / summary without side effects.

    Same value validation as :func:`generate_from_template`; no usage
    increment and no default / override merge.  Inactive templates can be
    previewed.
    """
    template = get_template(engine, template_id)
    return _render(template, variables)


def clone_template(
    engine: Engine,
    template_id: str,
    new_name: str,
    *,
    created_by: str | None = None,
) -> AnnouncementTemplate:
    """Copy a template (system or not) into a new editable template."""
    if not new_name or not new_name.strip():
        raise ValidationError("Template name must not be empty")
    with Session(engine, expire_on_commit=False) as session:
        source = _load(session, template_id)
        clone = AnnouncementTemplate(
            id=str(uuid4()),
            name=new_name.strip(),
            is_system=False,
            usage_count=0,
            created_by=created_by,
            updated_by=created_by,
            **{field: getattr(source, field) for field in _CLONED_FIELDS},
        )
        session.add(clone)
        session.commit()
        session.refresh(clone)
        session.expunge(clone)

    logger.info("Cloned template %s to %s", template_id, clone.id)
    return clone


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------
def popular_templates(engine: Engine, limit: int = 10) -> list[AnnouncementTemplate]:
    """Active templates ordered by usage, highest first."""
    stmt = (
        select(AnnouncementTemplate)
        .where(AnnouncementTemplate.is_active.is_(True))
        .order_by(AnnouncementTemplate.usage_count.desc())
        .limit(limit)
    )
    with Session(engine, expire_on_commit=False) as session:
        rows = list(session.scalars(stmt).all())
        session.expunge_all()
    return rows


def template_categories() -> list[str]:
    return [c.value for c in TemplateCategory]


def template_stats(engine: Engine) -> dict[str, Any]:
    """Totals, the most used template, and counts per category and type."""
    templates = list_templates(engine)
    most_used = max(templates, key=lambda t: t.usage_count, default=None)

    by_category: dict[str, int] = {}
    by_type: dict[str, int] = {}
    for t in templates:
        by_category[t.category] = by_category.get(t.category, 0) + 1
        by_type[t.type] = by_type.get(t.type, 0) + 1

    return {
        "total_templates": len(templates),
        "active_templates": sum(1 for t in templates if t.is_active),
        "system_templates": sum(1 for t in templates if t.is_system),
        "most_used_template": (
            {"id": most_used.id, "name": most_used.name,
             "usage_count": most_used.usage_count}
            if most_used is not None else None
        ),
        "categories": by_category,
        "types": by_type,
    }


# ---------------------------------------------------------------------------
# System templates
# ---------------------------------------------------------------------------
def initialize_system_templates(engine: Engine) -> int:
    """Insert each built-in template that has no system row of the same name.

    Returns the number of templates inserted.  Safe to call on every
    startup.
    """
    inserted = 0
    with Session(engine) as session:
        existing = set(session.scalars(
            select(AnnouncementTemplate.name)
            .where(AnnouncementTemplate.is_system.is_(True))
        ).all())

        for definition in SYSTEM_TEMPLATES:
            if definition["name"] in existing:
                continue
            session.add(AnnouncementTemplate(
                id=str(uuid4()),
                is_system=True,
                is_active=True,
                usage_count=0,
                **definition,
            ))
            inserted += 1
            logger.info("Initialized system template: %s", definition["name"])
        session.commit()
    return inserted
