"""
herald.api.routes.templates — Announcement template endpoints
===============================================================

    GET    /templates                     — List (filters: category, type, is_active, search, created_by)
    POST   /templates                     — Create
    GET    /templates/categories          — Allowed template categories
    GET    /templates/popular             — Most used active templates
    GET    /templates/stats               — Totals and breakdowns
    POST   /templates/preview             — Render without side effects
    POST   /templates/generate            — Render, then create the announcement
    POST   /templates/initialize-system   — Seed built-in templates
    POST   /templates/{id}/clone          — Copy into an editable template
    GET    /templates/{id}
    PATCH  /templates/{id}
    DELETE /templates/{id}
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from herald.api.deps import get_cache, get_dispatcher, get_engine
from herald.database.models import AnnouncementPriority, AnnouncementType, TemplateCategory
from herald.database.engine import run_db
from herald.engine.cache import ContentCache
from herald.services import announcement_service, template_service
from herald.services.announcement_service import announcement_to_dict
from herald.services.notification_service import NotificationDispatcher
from herald.services.template_service import template_to_dict

router = APIRouter(tags=["templates"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    category: TemplateCategory = TemplateCategory.CUSTOM
    type: AnnouncementType = AnnouncementType.GENERAL
    priority: AnnouncementPriority = AnnouncementPriority.NORMAL
    title_template: str = Field(min_length=1, max_length=300)
    content_template: str = Field(min_length=1)
    summary_template: str | None = Field(default=None, max_length=500)
    variables: dict[str, dict[str, Any]] | None = None
    default_settings: dict[str, Any] | None = None
    styling: dict[str, Any] | None = None
    tags: list[str] | None = None
    created_by: str | None = None


class TemplateUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    category: TemplateCategory | None = None
    type: AnnouncementType | None = None
    priority: AnnouncementPriority | None = None
    title_template: str | None = Field(default=None, min_length=1, max_length=300)
    content_template: str | None = Field(default=None, min_length=1)
    summary_template: str | None = Field(default=None, max_length=500)
    variables: dict[str, dict[str, Any]] | None = None
    default_settings: dict[str, Any] | None = None
    styling: dict[str, Any] | None = None
    tags: list[str] | None = None
    is_active: bool | None = None
    updated_by: str | None = None


class TemplatePreview(BaseModel):
    template_id: str
    variables: dict[str, Any] = Field(default_factory=dict)


class TemplateGenerate(BaseModel):
    template_id: str
    variables: dict[str, Any] = Field(default_factory=dict)
    overrides: dict[str, Any] | None = None
    created_by: str | None = None


class TemplateClone(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    created_by: str | None = None


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------
@router.get("/templates")
def list_templates(
    category: TemplateCategory | None = None,
    type: AnnouncementType | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    created_by: str | None = None,
    engine: Engine = Depends(get_engine),
):
    rows = template_service.list_templates(
        engine,
        category=category,
        type=type,
        is_active=is_active,
        search=search,
        created_by=created_by,
    )
    return [template_to_dict(t) for t in rows]


@router.post("/templates", status_code=201)
def create_template(body: TemplateCreate, engine: Engine = Depends(get_engine)):
    template = template_service.create_template(engine, **body.model_dump())
    return template_to_dict(template)


@router.get("/templates/categories")
def template_categories():
    return template_service.template_categories()


@router.get("/templates/popular")
def popular_templates(
    limit: int = Query(default=10, ge=1, le=100),
    engine: Engine = Depends(get_engine),
):
    return [template_to_dict(t) for t in template_service.popular_templates(engine, limit)]


@router.get("/templates/stats")
def template_stats(engine: Engine = Depends(get_engine)):
    return template_service.template_stats(engine)


@router.post("/templates/preview")
def preview_template(body: TemplatePreview, engine: Engine = Depends(get_engine)):
    return template_service.preview_template(engine, body.template_id, body.variables)


@router.post("/templates/generate", status_code=201)
async def generate_from_template(
    body: TemplateGenerate,
    engine: Engine = Depends(get_engine),
    cache: ContentCache = Depends(get_cache),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Render the template and create the resulting announcement."""
    payload = await run_db(
        template_service.generate_from_template,
        engine,
        body.template_id,
        body.variables,
        overrides=body.overrides,
        created_by=body.created_by,
    )
    row = await announcement_service.create_announcement(
        engine, payload, cache=cache, dispatcher=dispatcher
    )
    return announcement_to_dict(row)


@router.post("/templates/initialize-system")
def initialize_system_templates(engine: Engine = Depends(get_engine)):
    return {"inserted": template_service.initialize_system_templates(engine)}


# ---------------------------------------------------------------------------
# Single template
# ---------------------------------------------------------------------------
@router.post("/templates/{template_id}/clone", status_code=201)
def clone_template(
    template_id: str, body: TemplateClone, engine: Engine = Depends(get_engine)
):
    clone = template_service.clone_template(
        engine, template_id, body.name, created_by=body.created_by
    )
    return template_to_dict(clone)


@router.get("/templates/{template_id}")
def get_template(template_id: str, engine: Engine = Depends(get_engine)):
    return template_to_dict(template_service.get_template(engine, template_id))


@router.patch("/templates/{template_id}")
def update_template(
    template_id: str, body: TemplateUpdate, engine: Engine = Depends(get_engine)
):
    changes = body.model_dump(exclude_unset=True)
    updated_by = changes.pop("updated_by", None)
    template = template_service.update_template(
        engine, template_id, updated_by=updated_by, **changes
    )
    return template_to_dict(template)


@router.delete("/templates/{template_id}", status_code=204)
def delete_template(template_id: str, engine: Engine = Depends(get_engine)):
    template_service.delete_template(engine, template_id)
    return Response(status_code=204)
