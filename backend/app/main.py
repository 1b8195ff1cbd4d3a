from __future__ import annotations
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine

from .config import get_settings
from .db import Base, engine as default_engine
from .errors import register_exception_handlers
from .logging_config import RequestLoggingMiddleware, configure_logging
from .routers_auth import router as auth_router
from .routers_departments import router as departments_router
from .routers_journals import router as journals_router
from .routers_publications import router as publications_router
from .routers_statistics import router as statistics_router
from .routers_users import router as users_router

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


def create_app(engine: Engine | None = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    engine = engine or default_engine

    # Create DB tables (no migrations tool yet)
    Base.metadata.create_all(bind=engine)

    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=False,  # tokens, not cookies
        allow_methods=["*"],
        allow_headers=["*", "Authorization"],
        expose_headers=["X-Request-ID", "Content-Disposition"],
        max_age=600,
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    for router in (auth_router, users_router, departments_router, journals_router, publications_router, statistics_router):
        app.include_router(router, prefix=API_PREFIX)

    @app.get(f"{API_PREFIX}/health")
    def health():
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ok", "database": "ok"}

    @app.get("/")
    def root():
        return RedirectResponse(url="/docs")

    logger.info("%s started (database=%s)", settings.APP_NAME, engine.url.render_as_string(hide_password=True))
    return app


app = create_app()
