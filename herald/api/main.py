"""
herald.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn herald.api.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from herald.api.deps import (  # noqa: E402
    get_cache,
    get_config,
    get_dispatcher,
    get_engine,
)
from herald.api.routes.analytics import router as analytics_router  # noqa: E402
from herald.api.routes.announcements import router as announcements_router  # noqa: E402
from herald.api.routes.realtime import router as realtime_router  # noqa: E402
from herald.api.routes.templates import router as templates_router  # noqa: E402
from herald.config import configure_logging  # noqa: E402
from herald.database.engine import init_db, run_db  # noqa: E402
from herald.errors import HeraldError  # noqa: E402
from herald.services.scheduler import PublicationScheduler  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


def _resolve(app: FastAPI, dependency):
    """Call *dependency*, honouring ``app.dependency_overrides``."""
    return app.dependency_overrides.get(dependency, dependency)()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown: create tables, seed system templates, run the
    publication scheduler."""
    cfg = _resolve(app, get_config)
    configure_logging(cfg.log_level)

    engine = _resolve(app, get_engine)
    await run_db(init_db, engine)

    scheduler: PublicationScheduler | None = None
    if cfg.scheduler_enabled:
        scheduler = PublicationScheduler(
            engine,
            cache=_resolve(app, get_cache),
            dispatcher=_resolve(app, get_dispatcher),
            interval=cfg.scheduler_interval_seconds,
        )
        scheduler.start(asyncio.get_running_loop())
    app.state.scheduler = scheduler

    logger.info("Herald API started — engine ready (%s)", engine.url.database)
    yield
    if scheduler is not None:
        scheduler.stop()
    logger.info("Herald API shutting down")


app = FastAPI(
    title="Herald Announcements API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HeraldError)
async def herald_error_handler(request: Request, exc: HeraldError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Mount routers
app.include_router(templates_router, prefix="/api")
app.include_router(realtime_router, prefix="/api")
app.include_router(announcements_router, prefix="/api")
app.include_router(analytics_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
